"""Git repository format and synchronization controller.

``GitSyncController.run()`` moves through these stages, in order:

1. **StatusRead** (always): branch, porcelain status, recent log and
   remote URL. Failure raises ``RepositoryStateError``; nothing else runs.
2. **BranchSwitch**: only when the configured branch differs.
3. **Pull**: only when ``pull_before_import`` and direction is not export.
4. **Import / Export / Bidirectional**: bidirectional is import, then
   export. A path in both sets is a conflict (see ``resolve_conflicts``).
5. **Commit**: only when export wrote at least one file. Every path, the
   message and the author are validated before the first git call.
6. **Push**: only when ``push_after_export`` and a commit was made.

Branch, remote, author and the rendered message are validated before
StatusRead, so unsafe options never reach a subprocess. A failure after
StatusRead stops the remaining stages and is reported as one error on an
``aborted`` summary; files already imported or exported stay as they are.
Dry runs read status and plan both directions but never change the
working tree (no checkout, pull, commit or push).
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from trilium_sync.config_schema import ConflictResolution, GitSyncOptions, SyncDirection
from trilium_sync.converters import html_to_markdown
from trilium_sync.core.async_utils import run_sync
from trilium_sync.core.client import EtapiClient
from trilium_sync.core.models import Note
from trilium_sync.file_handler import validate_directory
from trilium_sync.validators import (
    validate_author_email,
    validate_author_name,
    validate_branch_name,
    validate_commit_message,
)

from ..duplicates import label_query
from ..errors import (
    ErrorCode,
    GitCommandError,
    ImportExportError,
    RepositoryStateError,
    ValidationError,
)
from ..exporter import ExportPipeline, sanitize_file_name, unique_path
from ..git_runner import GitRunner, require_safe
from ..importer import ImportPipeline
from ..models import (
    ContentInfo,
    FileInfo,
    FileResult,
    GitSyncResult,
    OperationContext,
    OperationSummary,
)
from ..progress import ErrorCollector, ProgressCallback, ProgressTracker, build_summary
from .obsidian import render_front_matter

logger = logging.getLogger(__name__)

GIT_PATH_LABEL = "git-path"
GIT_REPOSITORY_LABEL = "git-repository"

# Filenames must also pass the git path validator
_GIT_UNSAFE_FILE_CHARS = re.compile(r'[<>:"/\\|?*;&$`(){}\[\]\x00-\x1f\x7f]')
_HTML_BLOCK = re.compile(r"<(p|div|h[1-6]|ul|ol|br|pre|table|blockquote)\b", re.IGNORECASE)
_LEADING_H1 = re.compile(r"\A\s*# \S")


def render_commit_message(template: str, count: int, now: datetime | None = None) -> str:
    """Fill ``{timestamp}`` and ``{count}`` in a commit message template."""
    now = now or datetime.now(timezone.utc)
    return template.replace(
        "{timestamp}", now.isoformat(timespec="seconds")
    ).replace("{count}", str(count))


def resolve_conflicts(
    imported: list[str],
    exported: list[str],
    resolution: ConflictResolution,
) -> tuple[list[str], list[str], list[str]]:
    """Split paths touched in both directions out of the result lists.

    Only paths are compared, never content: a file imported and exported
    unchanged in one run still counts as touched on both sides.

    Returns:
        ``(imported, exported, conflicts)``.
    """
    both = set(imported) & set(exported)
    if not both:
        return imported, exported, []
    if resolution == ConflictResolution.OURS:
        return [p for p in imported if p not in both], exported, []
    if resolution == ConflictResolution.THEIRS:
        return imported, [p for p in exported if p not in both], []
    return (
        [p for p in imported if p not in both],
        [p for p in exported if p not in both],
        sorted(both),
    )


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


class GitImport(ImportPipeline):
    """Import repository files labelled with their repository path."""

    source_name = "git"
    path_label = GIT_PATH_LABEL

    def build_labels(
        self, info: FileInfo, content: ContentInfo
    ) -> list[dict[str, Any]]:
        labels = super().build_labels(info, content)
        labels.append(
            {
                "type": "label",
                "name": GIT_REPOSITORY_LABEL,
                "value": str(self.source_root),
            }
        )
        return labels


class GitExport(ExportPipeline):
    """Write notes back to their ``git-path`` as markdown with front matter."""

    format_name = "git"
    file_name_pattern = _GIT_UNSAFE_FILE_CHARS

    async def plan(self, note_ids: list[str]) -> list[FileInfo]:
        # One file per note at its recorded path; no descendants or attachments
        entries: list[FileInfo] = []
        used: set[str] = set()
        if self.options.create_index:
            used.add(self.options.index_file_name)
        for note_id in note_ids:
            try:
                note = await run_sync(self.client.get_note, note_id)
                content = await run_sync(self.client.get_note_content, note_id)
            except Exception as exc:
                logger.warning("Could not plan export for note %s: %s", note_id, exc)
                continue
            self._titles[note.note_id] = note.title
            relative = unique_path(self.target_path(note), used)
            directory = relative.rsplit("/", 1)[0] if "/" in relative else ""
            entries.append(self._note_entry(note, content, relative, directory))
        return entries

    def target_path(self, note: Note) -> str:
        path = note.label(GIT_PATH_LABEL)
        if path:
            return path.strip("/")
        return f"{sanitize_file_name(note.title, self.file_name_pattern)}.md"

    async def convert_note(self, note: Note, content: str, entry: FileInfo) -> str:
        body = content
        if _HTML_BLOCK.search(body):
            body = html_to_markdown(body).text
        if not _LEADING_H1.match(body):
            body = f"# {note.title}\n\n{body.lstrip()}"
        return render_front_matter(self.front_matter(note)) + body.rstrip() + "\n"

    def front_matter(self, note: Note) -> dict[str, Any]:
        data: dict[str, Any] = {"id": note.note_id, "title": note.title}
        if note.date_created:
            data["created"] = note.date_created
        if note.date_modified:
            data["modified"] = note.date_modified
        for attribute in note.attributes:
            if attribute.type != "label" or attribute.name.startswith("git-"):
                continue
            if attribute.name in data:
                continue
            values = note.labels(attribute.name)
            data[attribute.name] = values[0] if len(values) == 1 else values
        return data


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class GitSyncController:
    """Synchronize notes with a git working tree.

    Args:
        client: ETAPI client.
        options: Git sync options.
        context: Operation context for this run.
        progress_callback: Forwarded to the import and export pipelines.
        cancel_event: Forwarded to the import and export pipelines.
        runner: Git runner; defaults to one bound to the repository.
    """

    def __init__(
        self,
        client: EtapiClient,
        options: GitSyncOptions,
        context: OperationContext,
        progress_callback: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        runner: GitRunner | None = None,
    ) -> None:
        self.client = client
        self.options = options
        self.context = context
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.runner = runner
        self.collector = ErrorCollector()
        self.progress = ProgressTracker(context.operation_id, progress_callback)

    def preflight(self) -> None:
        """Validate every option that will reach a git command line.

        Raises:
            SecurityValidationError: On the first unsafe value.
        """
        opts = self.options
        if opts.branch:
            require_safe(validate_branch_name(opts.branch), "branch", opts.branch)
        require_safe(validate_branch_name(opts.remote), "remote", opts.remote)
        if opts.author_name:
            require_safe(
                validate_author_name(opts.author_name), "author name", opts.author_name
            )
        if opts.author_email:
            require_safe(
                validate_author_email(opts.author_email),
                "author email",
                opts.author_email,
            )
        message = render_commit_message(opts.commit_message, 0)
        require_safe(validate_commit_message(message), "commit message", message)

    async def run(self) -> OperationSummary:
        """Run the sync stages and return one combined summary.

        Raises:
            ValidationError: If the repository path is not a directory.
            SecurityValidationError: If an option is unsafe for git.
            RepositoryStateError: If the status cannot be read.
        """
        opts = self.options
        try:
            repository = validate_directory(opts.repository_path)
        except ValueError as exc:
            raise ValidationError(
                str(exc), details={"path": opts.repository_path}
            ) from exc
        self.preflight()
        runner = self.runner or GitRunner(repository)

        try:
            status = await run_sync(runner.status, opts.remote)
        except GitCommandError as exc:
            raise RepositoryStateError(
                f"Could not read repository status: {exc.message}",
                details={"path": str(repository)},
            ) from exc
        logger.info(
            "Git sync %s on %s (branch %s, clean=%s)",
            opts.sync_direction.value,
            repository,
            status.branch,
            status.is_clean,
        )
        self.progress.start(0, f"Syncing {repository}")

        branch = status.branch
        results: list[FileResult] = []
        imported: list[str] = []
        exported: list[str] = []
        created_ids: list[str] = []
        updated_ids: list[str] = []
        pulled = pushed = aborted = False
        commit_hash: str | None = None
        conflicts: list[str] = []

        try:
            if opts.branch and opts.branch != status.branch and not opts.dry_run:
                await self._stage("checkout", runner.switch_branch, opts.branch, opts.remote)
                branch = opts.branch

            if (
                opts.pull_before_import
                and opts.sync_direction != SyncDirection.EXPORT
                and not opts.dry_run
            ):
                await self._stage("pull", runner.pull, opts.remote, branch)
                pulled = True

            if opts.sync_direction in (SyncDirection.IMPORT, SyncDirection.BIDIRECTIONAL):
                summary = await self._import()
                aborted = summary.aborted
                results += summary.results
                created_ids += summary.created_ids
                updated_ids += summary.updated_ids
                imported = [r.path for r in summary.results if r.success and not r.skipped]

            if opts.sync_direction in (SyncDirection.EXPORT, SyncDirection.BIDIRECTIONAL):
                summary = await self._export(str(repository))
                aborted = aborted or summary.aborted
                results += summary.results
                exported = list(summary.exported_paths)

            imported, exported, conflicts = resolve_conflicts(
                imported, exported, opts.conflict_resolution
            )
            for path in conflicts:
                self.collector.add_warning(
                    ErrorCode.GIT_ERROR, "Changed in both directions", path=path
                )

            if exported and not opts.dry_run:
                message = render_commit_message(opts.commit_message, len(exported))
                commit_hash = await self._stage(
                    "commit",
                    runner.commit,
                    exported,
                    message,
                    opts.author_name,
                    opts.author_email,
                )
                logger.info("Committed %d files as %s", len(exported), commit_hash)

            if opts.push_after_export and commit_hash:
                await self._stage("push", runner.push, opts.remote, branch)
                pushed = True
        except ImportExportError as exc:
            aborted = True
            self.collector.add_error(exc.code, f"Git sync failed: {exc.message}")

        self.progress.complete("Git sync finished")
        return build_summary(
            self.context,
            results,
            self.collector,
            total_files=len(results),
            total_size=sum(r.size for r in results),
            dry_run=opts.dry_run,
            aborted=aborted,
            created_ids=created_ids,
            updated_ids=updated_ids,
            output_path=str(repository),
            exported_paths=exported,
            git=GitSyncResult(
                repository=str(repository),
                branch=branch,
                commit_hash=commit_hash,
                imported=imported,
                exported=exported,
                conflicts=conflicts,
                pulled=pulled,
                pushed=pushed,
            ),
        )

    async def _stage(self, name: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await run_sync(func, *args)
        except GitCommandError as exc:
            raise RepositoryStateError(
                f"{name} failed: {exc.message}", details={"stage": name}
            ) from exc

    async def _import(self) -> OperationSummary:
        pipeline = GitImport(
            self.client,
            self.options.to_import_options(),
            self.context,
            self.progress_callback,
            self.cancel_event,
        )
        summary = await pipeline.run()
        self.collector.extend(pipeline.collector)
        return summary

    async def _export(self, repository: str) -> OperationSummary:
        note_ids = list(self.options.note_ids) or await self._git_note_ids(repository)
        pipeline = GitExport(
            self.client,
            self.options.to_export_options(),
            self.context,
            self.progress_callback,
            self.cancel_event,
        )
        summary = await pipeline.export(note_ids)
        self.collector.extend(pipeline.collector)
        return summary

    async def _git_note_ids(self, repository: str) -> list[str]:
        """Notes imported from git, limited to this repository."""
        notes = await run_sync(self.client.search_notes, label_query("source", "git"))
        return [
            n.note_id
            for n in notes
            if n.label(GIT_REPOSITORY_LABEL) in (None, repository)
            and n.label("type") not in ("folder", "index")
        ]
