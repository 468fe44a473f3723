"""Tests for the export pipeline: planning, writing, index and round trip."""

import base64
from unittest.mock import patch

from trilium_sync.config_schema import ExportOptions, ImportOptions
from trilium_sync.transfer.errors import ErrorCode
from trilium_sync.transfer.exporter import (
    ExportPipeline,
    render_tree,
    sanitize_file_name,
    unique_directory,
    unique_path,
)
from trilium_sync.transfer.formats import DirectoryExport, DirectoryImport
from trilium_sync.transfer.models import OperationContext, OperationKind, ProgressKind

PNG = b"\x89PNG\r\n\x1a\n\x00\x00"


def _pipeline(client, output, progress_callback=None, **overrides):
    options = ExportOptions(output_path=str(output), **overrides)
    context = OperationContext.create(OperationKind.EXPORT, "directory")
    return DirectoryExport(client, options, context, progress_callback=progress_callback)


def _project(client):
    """Projects -> Alpha (with attachment), Dup, Dup."""
    projects = client.add_note("Projects", "<p>projects</p>")
    alpha = client.add_note("Alpha", "# Alpha\ntext", parent_id=projects)
    client.add_note("Dup", "<p>one</p>", parent_id=projects)
    client.add_note("Dup", "<p>two</p>", parent_id=projects)
    client.create_attachment(
        alpha, "diagram.png", base64.b64encode(PNG).decode("ascii"), "image/png"
    )
    client.calls.clear()
    return projects, alpha


class TestHelpers:
    def test_sanitize_file_name(self):
        assert sanitize_file_name('a/b:c?"d"') == "a_b_c__d_"
        assert sanitize_file_name("  ..hidden.  ") == "hidden"
        assert sanitize_file_name("") == "untitled"
        assert sanitize_file_name("...") == "untitled"
        assert len(sanitize_file_name("x" * 500)) == 200

    def test_unique_path(self):
        used = set()
        assert unique_path("d/a.md", used) == "d/a.md"
        assert unique_path("d/a.md", used) == "d/a_2.md"
        assert unique_path("d/a.md", used) == "d/a_3.md"
        assert unique_path("d/b", used) == "d/b"

    def test_unique_directory_ignores_files(self):
        used = {"d/a"}
        assert unique_directory("d/a", used) == "d/a"
        assert unique_directory("d/a", used) == "d/a_2"
        assert "d/a_2/" in used

    def test_render_tree(self):
        lines = render_tree(["b.md", "a/x.md", "a/y/z.md"])
        assert lines == [
            "├── a",
            "│   ├── x.md",
            "│   └── y",
            "│       └── z.md",
            "└── b.md",
        ]


class TestPlan:
    async def test_paths_and_collisions(self, fake_client, tmp_path):
        projects, alpha = _project(fake_client)
        entries = await _pipeline(fake_client, tmp_path / "out").plan([projects])

        assert [e.relative_path for e in entries] == [
            "Projects.html",
            "Projects/Alpha.md",
            "Projects/Alpha/attachments/diagram.png",
            "Projects/Dup.html",
            "Projects/Dup_2.html",
        ]
        attachment = entries[2]
        assert attachment.metadata.is_attachment
        assert attachment.metadata.note_id == alpha
        assert attachment.mime_type == "image/png"
        assert attachment.size == len(PNG)

    async def test_plan_is_read_only_and_stable(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        pipeline = _pipeline(fake_client, tmp_path / "out")
        first = await pipeline.plan([projects])
        second = await pipeline.plan([projects])

        assert [e.relative_path for e in first] == [e.relative_path for e in second]
        assert not fake_client.writes
        assert not (tmp_path / "out").exists()

    async def test_flat_layout(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        entries = await _pipeline(
            fake_client, tmp_path / "out", preserve_structure=False
        ).plan([projects])
        assert "attachments/diagram.png" in [e.relative_path for e in entries]
        assert all("/" not in e.relative_path or e.relative_path.startswith("attachments/")
                   for e in entries)

    async def test_max_depth_and_no_attachments(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        entries = await _pipeline(
            fake_client, tmp_path / "out", max_depth=0, include_attachments=False
        ).plan([projects])
        assert [e.relative_path for e in entries] == ["Projects.html"]

    async def test_extension_label_and_json_mime(self, fake_client, tmp_path):
        script = fake_client.add_note("run", "echo", labels={"file-extension": ".sh"})
        data = fake_client.add_note("cfg", "{}", mime="application/json")
        entries = await _pipeline(fake_client, tmp_path / "out").plan([script, data])
        assert [e.relative_path for e in entries] == ["run.sh", "cfg.json"]

    async def test_unreadable_root_left_out(self, fake_client, tmp_path):
        note = fake_client.add_note("Ok", "<p>x</p>")
        entries = await _pipeline(fake_client, tmp_path / "out").plan(["missing", note])
        assert [e.relative_path for e in entries] == ["Ok.html"]

    async def test_same_title_siblings_get_own_directories(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        second_dup = fake_client.notes[projects]["children"][-1]
        fake_client.add_note("Child", "<p>c</p>", parent_id=second_dup)
        entries = await _pipeline(fake_client, tmp_path / "out").plan([projects])

        paths = [e.relative_path for e in entries]
        assert "Projects/Dup_2.html" in paths
        assert "Projects/Dup_2/Child.html" in paths
        assert not any(p.startswith("Projects/Dup/") for p in paths)

    async def test_index_name_reserved(self, fake_client, tmp_path):
        note = fake_client.add_note("index", "# index note body")
        entries = await _pipeline(fake_client, tmp_path / "out", create_index=True).plan(
            [note]
        )
        assert [e.relative_path for e in entries] == ["index_2.md"]


class TestExport:
    async def test_writes_notes_and_attachments(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        out = tmp_path / "out"
        summary = await _pipeline(fake_client, out).export([projects])

        assert summary.successful_files == 5
        assert summary.output_path == str(out)
        assert (out / "Projects.html").read_text() == "<p>projects</p>"
        assert (out / "Projects/Dup_2.html").read_text() == "<p>two</p>"
        assert (out / "Projects/Alpha/attachments/diagram.png").read_bytes() == PNG
        assert len(summary.attachment_ids) == 1

    async def test_header_only_for_imported_notes(self, fake_client, tmp_path):
        note = fake_client.add_note(
            "Imported",
            "<p>body</p>",
            labels={"source": "directory", "original-path": "docs/imported.html"},
        )
        out = tmp_path / "out"
        await _pipeline(fake_client, out).export([note])

        text = (out / "Imported.html").read_text()
        lines = text.splitlines()
        assert lines[0] == "<!-- Source: directory -->"
        assert lines[1] == "<!-- Original path: docs/imported.html -->"
        assert lines[2].startswith("<!-- Exported from Trilium on ")
        assert text.endswith("\n\n<p>body</p>")

    async def test_dry_run_writes_nothing(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        out = tmp_path / "out"
        summary = await _pipeline(fake_client, out, dry_run=True, create_index=True).export(
            [projects]
        )
        assert summary.dry_run
        assert summary.successful_files == 5
        assert {r.reason for r in summary.results} == {"would export"}
        assert not out.exists()

    async def test_existing_file_kept_without_overwrite(self, fake_client, tmp_path):
        note = fake_client.add_note("Keep", "<p>new</p>")
        out = tmp_path / "out"
        out.mkdir()
        (out / "Keep.html").write_text("old")

        summary = await _pipeline(fake_client, out, overwrite=False).export([note])

        assert summary.skipped_files == 1
        assert summary.results[0].reason == "file exists"
        assert (out / "Keep.html").read_text() == "old"

    async def test_index_written_last(self, fake_client, tmp_path):
        projects, _ = _project(fake_client)
        out = tmp_path / "out"
        await _pipeline(fake_client, out, create_index=True).export([projects])

        index = (out / "index.md").read_text()
        assert index.startswith("# Export Index\n")
        assert "**Total files:** 5" in index
        assert "- [Alpha](Projects/Alpha.md)" in index
        assert "## Attachments" in index
        assert "└── Projects.html" in index

    async def test_index_skipped_when_a_file_fails(self, fake_client, tmp_path):
        note = fake_client.add_note("A", "<p>a</p>")
        out = tmp_path / "out"
        with patch(
            "trilium_sync.transfer.exporter.write_file_async",
            side_effect=OSError("disk full"),
        ):
            summary = await _pipeline(fake_client, out, create_index=True).export([note])

        assert summary.failed_files == 1
        assert summary.failed[0].error.code == ErrorCode.FILE_EXPORT_ERROR
        assert summary.warnings[0].code == ErrorCode.INDEX_ERROR
        assert not (out / "index.md").exists()

    async def test_note_titled_index_survives_index(self, fake_client, tmp_path):
        note = fake_client.add_note("index", "# index note body")
        other = fake_client.add_note("Other", "<p>x</p>")
        out = tmp_path / "out"
        summary = await _pipeline(fake_client, out, create_index=True).export(
            [note, other]
        )

        assert "index_2.md" in summary.exported_paths
        assert (out / "index_2.md").read_text() == "# index note body"
        assert (out / "index.md").read_text().startswith("# Export Index")

    async def test_one_event_per_file_when_a_write_fails(self, fake_client, tmp_path):
        a = fake_client.add_note("A", "<p>a</p>")
        b = fake_client.add_note("B", "<p>b</p>")
        events = []
        with patch(
            "trilium_sync.transfer.exporter.write_file_async",
            side_effect=[OSError("disk full"), 8],
        ):
            await _pipeline(
                fake_client, tmp_path / "out", progress_callback=events.append
            ).export([a, b])

        per_file = [(e.kind, e.message, e.current) for e in events[1:-1]]
        assert per_file == [
            (ProgressKind.ERROR, "A.html", 1),
            (ProgressKind.PROGRESS, "B.html", 2),
        ]
        assert events[0].kind == ProgressKind.START
        assert events[-1].kind == ProgressKind.COMPLETE

    async def test_round_trip_keeps_body(self, fake_client, tmp_path):
        note = fake_client.add_note(
            "Page",
            "<p>round trip</p>",
            labels={"source": "directory", "original-path": "elsewhere/page.html"},
        )
        out = tmp_path / "out"
        await _pipeline(fake_client, out).export([note])

        options = ImportOptions(source_path=str(out))
        context = OperationContext.create(OperationKind.IMPORT, "directory")
        summary = await DirectoryImport(fake_client, options, context).run()

        imported_id = summary.created_ids[0]
        assert imported_id != note
        assert fake_client.notes[imported_id]["content"] == "<p>round trip</p>"

    async def test_base_pipeline_is_directory_flavour(self):
        assert DirectoryExport.format_name == ExportPipeline.format_name == "directory"
