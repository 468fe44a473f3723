"""Tests for the git format handlers and GitSyncController."""

from datetime import datetime, timezone

import pytest
import yaml

from trilium_sync.config_schema import (
    ConflictResolution,
    ExportOptions,
    GitSyncOptions,
    SyncDirection,
)
from trilium_sync.transfer.errors import (
    ErrorCode,
    GitCommandError,
    RepositoryStateError,
    SecurityValidationError,
)
from trilium_sync.transfer.formats.git import (
    GitExport,
    GitSyncController,
    render_commit_message,
    resolve_conflicts,
)
from trilium_sync.transfer.models import GitStatus, OperationContext, OperationKind


class FakeRunner:
    """Records git operations instead of running them."""

    def __init__(self, branch="main", fail=None):
        self.branch = branch
        self.fail = fail or set()
        self.calls = []

    def _call(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail:
            raise GitCommandError(f"git {name} failed: boom", ["git", name])

    def status(self, remote="origin"):
        self._call("status", remote)
        return GitStatus(branch=self.branch)

    def switch_branch(self, branch, remote="origin"):
        self._call("switch_branch", branch, remote)

    def pull(self, remote, branch):
        self._call("pull", remote, branch)

    def commit(self, paths, message, author_name=None, author_email=None):
        self._call("commit", list(paths), message, author_name, author_email)
        return "abc123"

    def push(self, remote, branch):
        self._call("push", remote, branch)

    @property
    def names(self):
        return [c[0] for c in self.calls]


def _controller(client, repo, runner, **overrides):
    options = GitSyncOptions(repository_path=str(repo), **overrides)
    context = OperationContext.create(OperationKind.SYNC, "git")
    return GitSyncController(client, options, context, runner=runner)


def _git_note(client, repo, title, git_path, content="<p>body</p>"):
    return client.add_note(
        title,
        content,
        labels={
            "source": "git",
            "git-path": git_path,
            "git-repository": str(repo.resolve()),
        },
    )


class TestHelpers:
    def test_render_commit_message(self):
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        message = render_commit_message("Sync {count} notes at {timestamp}", 3, now)
        assert message == "Sync 3 notes at 2024-01-02T03:04:05+00:00"

    @pytest.mark.parametrize(
        "resolution, expected",
        [
            (ConflictResolution.MANUAL, (["a"], ["c"], ["b"])),
            (ConflictResolution.OURS, (["a"], ["b", "c"], [])),
            (ConflictResolution.THEIRS, (["a", "b"], ["c"], [])),
        ],
    )
    def test_resolve_conflicts(self, resolution, expected):
        assert resolve_conflicts(["a", "b"], ["b", "c"], resolution) == expected

    def test_no_overlap(self):
        assert resolve_conflicts(["a"], ["b"], ConflictResolution.MANUAL) == (
            ["a"],
            ["b"],
            [],
        )


class TestGitExport:
    async def test_writes_to_git_path_with_front_matter(self, fake_client, tmp_path):
        repo = tmp_path / "repo"
        note = _git_note(fake_client, repo, "Guide", "docs/guide.md")
        options = ExportOptions(output_path=str(repo))
        context = OperationContext.create(OperationKind.EXPORT, "git")
        summary = await GitExport(fake_client, options, context).export([note])

        assert summary.exported_paths == ["docs/guide.md"]
        text = (repo / "docs" / "guide.md").read_text()
        front, body = text.split("---\n", 2)[1:]
        data = yaml.safe_load(front)
        assert data["id"] == note
        assert data["title"] == "Guide"
        assert data["source"] == "git"
        assert "git-path" not in data
        assert body == "\n# Guide\n\nbody\n"

    async def test_note_without_path_uses_title(self, fake_client, tmp_path):
        note = fake_client.add_note("What; now?", "<p>x</p>")
        options = ExportOptions(output_path=str(tmp_path / "repo"))
        context = OperationContext.create(OperationKind.EXPORT, "git")
        entries = await GitExport(fake_client, options, context).plan([note])
        assert [e.relative_path for e in entries] == ["What_ now_.md"]

    async def test_repeated_labels_become_a_list(self, fake_client, tmp_path):
        repo = tmp_path / "repo"
        note = _git_note(fake_client, repo, "Tagged", "tagged.md")
        fake_client.notes[note]["labels"] += [("tag", "a"), ("tag", "b")]
        options = ExportOptions(output_path=str(repo))
        context = OperationContext.create(OperationKind.EXPORT, "git")
        data = GitExport(fake_client, options, context).front_matter(
            fake_client.get_note(note)
        )
        assert data["tag"] == ["a", "b"]
        assert data["source"] == "git"

    async def test_index_does_not_replace_a_note(self, fake_client, tmp_path):
        repo = tmp_path / "repo"
        note = _git_note(fake_client, repo, "Index", "index.md")
        options = ExportOptions(output_path=str(repo), create_index=True)
        context = OperationContext.create(OperationKind.EXPORT, "git")
        entries = await GitExport(fake_client, options, context).plan([note])
        assert [e.relative_path for e in entries] == ["index_2.md"]


class TestGitSyncController:
    async def test_bidirectional_conflict_blocks_commit(
        self, fake_client, write_tree
    ):
        repo = write_tree({"x.md": "# X\nbody"}, root_name="repo")
        runner = FakeRunner()
        summary = await _controller(fake_client, repo, runner).run()

        assert summary.git.conflicts == ["x.md"]
        assert summary.git.imported == []
        assert summary.git.exported == []
        assert summary.git.commit_hash is None
        assert "commit" not in runner.names
        assert summary.warnings[0].code == ErrorCode.GIT_ERROR
        assert summary.warnings[0].path == "x.md"
        labels = fake_client.labels_of(fake_client.find("X"))
        assert labels["git-path"] == ["x.md"]
        assert labels["git-repository"] == [str(repo.resolve())]

    async def test_export_commits_and_pushes(self, fake_client, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        _git_note(fake_client, repo, "Guide", "guide.md")
        _git_note(fake_client, tmp_path / "other", "Elsewhere", "else.md")
        runner = FakeRunner()

        summary = await _controller(
            fake_client,
            repo,
            runner,
            sync_direction=SyncDirection.EXPORT,
            push_after_export=True,
            pull_before_import=True,
            author_name="Sync Bot",
            author_email="bot@example.com",
            commit_message="Export {count} notes",
        ).run()

        assert runner.names == ["status", "commit", "push"]
        assert runner.calls[1] == (
            "commit",
            ["guide.md"],
            "Export 1 notes",
            "Sync Bot",
            "bot@example.com",
        )
        assert summary.git.commit_hash == "abc123"
        assert summary.git.pushed
        assert not summary.git.pulled
        assert not (repo / "else.md").exists()

    async def test_explicit_note_ids(self, fake_client, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        note = fake_client.add_note("Loose", "<p>x</p>")
        runner = FakeRunner()
        summary = await _controller(
            fake_client,
            repo,
            runner,
            sync_direction=SyncDirection.EXPORT,
            note_ids=[note],
        ).run()
        assert summary.git.exported == ["Loose.md"]

    async def test_branch_switch_and_pull_before_import(self, fake_client, write_tree):
        repo = write_tree({"a.md": "# A"}, root_name="repo")
        runner = FakeRunner(branch="main")
        summary = await _controller(
            fake_client,
            repo,
            runner,
            branch="notes",
            pull_before_import=True,
            sync_direction=SyncDirection.IMPORT,
        ).run()

        assert runner.calls[:3] == [
            ("status", "origin"),
            ("switch_branch", "notes", "origin"),
            ("pull", "origin", "notes"),
        ]
        assert summary.git.branch == "notes"
        assert summary.git.pulled
        assert summary.git.imported == ["a.md"]

    async def test_dry_run_leaves_tree_alone(self, fake_client, write_tree):
        repo = write_tree({"a.md": "# A"}, root_name="repo")
        runner = FakeRunner(branch="main")
        summary = await _controller(
            fake_client,
            repo,
            runner,
            branch="notes",
            pull_before_import=True,
            push_after_export=True,
            dry_run=True,
        ).run()

        assert runner.names == ["status"]
        assert summary.dry_run
        assert not fake_client.writes
        assert (repo / "a.md").read_text() == "# A"

    async def test_status_failure_raises(self, fake_client, tmp_path):
        runner = FakeRunner(fail={"status"})
        with pytest.raises(RepositoryStateError, match="repository status"):
            await _controller(fake_client, tmp_path, runner).run()

    async def test_commit_failure_aborts_remaining_stages(self, fake_client, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        _git_note(fake_client, repo, "Guide", "guide.md")
        runner = FakeRunner(fail={"commit"})

        summary = await _controller(
            fake_client,
            repo,
            runner,
            sync_direction=SyncDirection.EXPORT,
            push_after_export=True,
        ).run()

        assert summary.aborted
        assert "push" not in runner.names
        assert summary.errors[-1].code == ErrorCode.GIT_ERROR
        assert "commit failed" in summary.errors[-1].message
        # the exported file stays on disk
        assert (repo / "guide.md").exists()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"branch": "main; rm -rf /"},
            {"remote": "origin`x`"},
            {"commit_message": "sync $(whoami)"},
            {"author_email": "nobody"},
        ],
    )
    async def test_unsafe_options_rejected_before_git(
        self, fake_client, tmp_path, overrides
    ):
        runner = FakeRunner()
        with pytest.raises(SecurityValidationError):
            await _controller(fake_client, tmp_path, runner, **overrides).run()
        assert runner.calls == []
