"""Tests for the Obsidian vault import and export handlers."""

import yaml

from trilium_sync.config_schema import ExportOptions, ObsidianImportOptions
from trilium_sync.transfer.formats import ObsidianExport, ObsidianImport
from trilium_sync.transfer.formats.obsidian import render_front_matter
from trilium_sync.transfer.models import OperationContext, OperationKind

PNG = b"\x89PNG\r\n\x1a\n\x00\x00"

VAULT = {
    "Home.md": (
        "---\ntags: [home]\naliases: [Start]\nstatus: active\n---\n"
        "# Home\nSee [[Project]] and ![[pic.png]]\n"
    ),
    "work/Project.md": "# Project\nBack to [[Home|home page]]\n",
    "attachments/pic.png": PNG,
    "attachments/orphan.png": PNG,
    "templates/daily.md": "# {{date}}\n",
    "archive/old.md": "# Old\n",
}


async def _import(client, vault, **overrides):
    overrides.setdefault("ignore_folders", [".obsidian", "archive"])
    options = ObsidianImportOptions(vault_path=str(vault), **overrides)
    context = OperationContext.create(OperationKind.IMPORT, "obsidian")
    return await ObsidianImport(client, options, context).run()


class TestObsidianImport:
    async def test_filters_ignored_and_template_folders(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        summary = await _import(fake_client, vault, dry_run=True)
        paths = sorted(r.path for r in summary.results)
        assert paths == [
            "Home.md",
            "attachments/orphan.png",
            "attachments/pic.png",
            "work/Project.md",
        ]

    async def test_templates_included_on_request(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        summary = await _import(fake_client, vault, dry_run=True, include_templates=True)
        assert "templates/daily.md" in [r.path for r in summary.results]

    async def test_front_matter_labels(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        await _import(fake_client, vault)

        labels = fake_client.labels_of(fake_client.find("Home"))
        assert labels["source"] == ["obsidian"]
        assert labels["original-path"] == ["Home.md"]
        assert labels["tag"] == ["home"]
        assert labels["obsidian-status"] == ["active"]
        assert labels["obsidian-aliases"] == ['["Start"]']
        assert "file-extension" not in labels

    async def test_front_matter_labels_disabled(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        await _import(fake_client, vault, process_front_matter=False)
        labels = fake_client.labels_of(fake_client.find("Home"))
        assert "obsidian-status" not in labels
        assert labels["tag"] == ["home"]

    async def test_attachments_follow_references(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        await _import(fake_client, vault)

        owners = {a["title"]: a["owner"] for a in fake_client.attachments.values()}
        assert owners["pic.png"] == fake_client.find("Home")
        assert owners["orphan.png"] == fake_client.find("attachments")

    async def test_wikilinks_rewritten_after_import(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        await _import(fake_client, vault)

        home_id = fake_client.find("Home")
        project_id = fake_client.find("Project")
        home = fake_client.notes[home_id]["content"]
        project = fake_client.notes[project_id]["content"]
        assert f'<a href="#root/{project_id}">Project</a>' in home
        assert "![[pic.png]]" in home
        assert f'<a href="#root/{home_id}">home page</a>' in project

    async def test_wikilinks_left_alone_when_disabled(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        await _import(fake_client, vault, convert_wikilinks=False)
        assert "[[Project]]" in fake_client.notes[fake_client.find("Home")]["content"]
        assert not [c for c in fake_client.writes if c[0] == "update_note_content"]

    async def test_reimport_with_skip_adds_no_attachments(self, fake_client, write_tree):
        vault = write_tree(VAULT, root_name="vault")
        await _import(fake_client, vault)
        writes = len(fake_client.writes)
        attachments = set(fake_client.attachments)

        summary = await _import(fake_client, vault)

        assert len(fake_client.writes) == writes
        assert set(fake_client.attachments) == attachments
        assert len(attachments) == 2
        assert all(r.skipped for r in summary.results)
        owners = {a["title"]: a["owner"] for a in fake_client.attachments.values()}
        assert owners["pic.png"] == fake_client.find("Home")


class TestObsidianExport:
    async def test_front_matter_heading_and_links(self, fake_client, tmp_path):
        project = fake_client.add_note("Project", "<p>plan</p>")
        home = fake_client.add_note(
            "Home",
            f'<p>See <a href="#root/{project}">Project</a></p>',
            labels={
                "obsidian-status": "active",
                "obsidian-aliases": '["Start"]',
                "tag": "home",
            },
            date_created="2024-01-01 10:00:00.000+0100",
        )
        out = tmp_path / "vault"
        options = ExportOptions(output_path=str(out))
        context = OperationContext.create(OperationKind.EXPORT, "obsidian")
        await ObsidianExport(fake_client, options, context).export([home, project])

        text = (out / "Home.md").read_text()
        _, front, body = text.split("---\n", 2)
        assert yaml.safe_load(front) == {
            "status": "active",
            "aliases": ["Start"],
            "tags": ["home"],
            "created": "2024-01-01 10:00:00.000+0100",
        }
        assert body == "\n# Home\n\nSee [[Project]]\n"
        assert (out / "Project.md").read_text() == "# Project\n\nplan\n"

    async def test_markdown_body_with_heading_kept(self, fake_client, tmp_path):
        note = fake_client.add_note("Raw", "# Raw\n\nalready markdown")
        out = tmp_path / "vault"
        options = ExportOptions(output_path=str(out))
        context = OperationContext.create(OperationKind.EXPORT, "obsidian")
        await ObsidianExport(fake_client, options, context).export([note])
        assert (out / "Raw.md").read_text() == "# Raw\n\nalready markdown\n"


def test_render_front_matter():
    assert render_front_matter({}) == ""
    assert render_front_matter({"a": 1, "b": ["x"]}) == "---\na: 1\nb:\n- x\n---\n\n"
