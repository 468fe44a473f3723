"""Export pipeline: note store -> file tree.

Export runs in two phases:

1. ``plan(note_ids)`` walks the requested notes, their descendants and
   their attachments and decides one output path per entry. It only
   reads from the store, so it can be called on its own for a preview
   and returns the same list every time the store is unchanged.
2. ``export(note_ids)`` re-runs the plan, converts each note for the
   destination convention, writes notes as text and attachments as
   bytes, and writes the index file last, only when every other write
   succeeded.

Filenames come from ``sanitize_file_name(title)`` plus an extension:
the note's ``file-extension`` label, ``.json`` for JSON notes, ``.md``
for markdown content, ``.html`` otherwise. Colliding paths get ``_2``,
``_3``... before the extension, in traversal order.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from trilium_sync.config_schema import ExportOptions
from trilium_sync.core.async_utils import run_sync
from trilium_sync.core.client import EtapiClient
from trilium_sync.core.models import Attachment, Note
from trilium_sync.file_handler import (
    validate_output_path,
    write_bytes_async,
    write_file_async,
)

from .errors import ErrorCode, error_from_exception
from .models import (
    ContentType,
    FileInfo,
    FileMetadata,
    FileResult,
    OperationContext,
    OperationSummary,
)
from .progress import ErrorCollector, ProgressCallback, ProgressTracker, build_summary

logger = logging.getLogger(__name__)

MAX_FILE_NAME = 200
WOULD_EXPORT = "would export"

_UNSAFE_FILE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_MARKDOWN_HEADING = re.compile(r"^#{1,6} ", re.MULTILINE)


def sanitize_file_name(title: str, pattern: re.Pattern[str] = _UNSAFE_FILE_CHARS) -> str:
    """Turn a note title into a safe file name stem."""
    name = pattern.sub("_", title).strip().strip(".")
    name = name[:MAX_FILE_NAME].strip()
    return name or "untitled"


def unique_path(path: str, used: set[str]) -> str:
    """Return ``path`` or the first free ``stem_n.ext`` variant, and reserve it."""
    if path not in used:
        used.add(path)
        return path
    pure = PurePosixPath(path)
    n = 2
    while True:
        candidate = str(pure.with_name(f"{pure.stem}_{n}{pure.suffix}"))
        if candidate not in used:
            used.add(candidate)
            return candidate
        n += 1


def _join(*parts: str) -> str:
    return "/".join(p for p in parts if p)


def unique_directory(path: str, used: set[str]) -> str:
    """Like ``unique_path`` for directories: ``name``, ``name_2``, ...

    Directories are reserved with a trailing ``/`` so they never clash
    with file entries in the same set.
    """
    candidate, n = path, 2
    while f"{candidate}/" in used:
        candidate = f"{path}_{n}"
        n += 1
    used.add(f"{candidate}/")
    return candidate


class ExportPipeline:
    """Export notes and attachments into a directory.

    Args:
        client: ETAPI client.
        options: Export options.
        context: Operation context for this run.
        progress_callback: Receives one progress event per planned file.
        cancel_event: When set, writing stops before the next file.
    """

    format_name = "directory"
    file_name_pattern = _UNSAFE_FILE_CHARS

    def __init__(
        self,
        client: EtapiClient,
        options: ExportOptions,
        context: OperationContext,
        progress_callback: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.client = client
        self.options = options
        self.context = context
        self.cancel_event = cancel_event
        self.collector = ErrorCollector()
        self.progress = ProgressTracker(context.operation_id, progress_callback)
        self.output_root = Path(
            options.output_path or context.temp_directory
        ).expanduser()
        self._titles: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    async def plan(self, note_ids: list[str]) -> list[FileInfo]:
        """Decide the output path of every note and attachment.

        Read-only: only ``get_*`` calls are made. Roots that cannot be
        read are logged and left out.
        """
        entries: list[FileInfo] = []
        used: set[str] = set()
        if self.options.create_index:
            # the index is written last and must not replace a note
            used.add(self.options.index_file_name)
        visited: set[str] = set()
        for note_id in note_ids:
            try:
                await self._plan_note(note_id, "", 0, entries, used, visited)
            except Exception as exc:
                logger.warning("Could not plan export for note %s: %s", note_id, exc)
        return entries

    async def _plan_note(
        self,
        note_id: str,
        directory: str,
        level: int,
        entries: list[FileInfo],
        used: set[str],
        visited: set[str],
    ) -> None:
        # Cloned notes appear under several parents; export them once
        if note_id in visited:
            return
        visited.add(note_id)

        note = await run_sync(self.client.get_note, note_id)
        content = await run_sync(self.client.get_note_content, note_id)
        self._titles[note.note_id] = note.title

        file_name = self.file_name(note, content)
        relative = unique_path(_join(directory, file_name), used)
        entries.append(self._note_entry(note, content, relative, directory))

        if self.options.preserve_structure:
            stem = sanitize_file_name(note.title, self.file_name_pattern)
            child_directory = unique_directory(_join(directory, stem), used)
        else:
            child_directory = directory

        if self.options.include_attachments:
            attachments = await run_sync(self.client.get_attachments, note_id)
            attachment_dir = (
                _join(child_directory, "attachments")
                if self.options.preserve_structure
                else "attachments"
            )
            for attachment in attachments:
                name = sanitize_file_name(attachment.title, self.file_name_pattern)
                path = unique_path(_join(attachment_dir, name), used)
                entries.append(self._attachment_entry(note, attachment, path))

        if level >= self.options.max_depth:
            return
        for child in await run_sync(self.client.get_child_notes, note_id):
            await self._plan_note(
                child.note_id, child_directory, level + 1, entries, used, visited
            )

    def _note_entry(
        self, note: Note, content: str, relative: str, directory: str
    ) -> FileInfo:
        path = PurePosixPath(relative)
        extension = path.suffix[1:].lower()
        return FileInfo(
            relative_path=relative,
            absolute_path=str(self.output_root / relative),
            name=path.name,
            extension=extension,
            size=len(content.encode("utf-8")),
            depth=relative.count("/"),
            mime_type=note.mime or "text/html",
            modified_at=note.utc_date_modified,
            metadata=FileMetadata(
                directory_path=directory,
                content_type=_content_type_for(extension),
                note_id=note.note_id,
                extra={"title": note.title},
            ),
        )

    def _attachment_entry(
        self, owner: Note, attachment: Attachment, relative: str
    ) -> FileInfo:
        path = PurePosixPath(relative)
        return FileInfo(
            relative_path=relative,
            absolute_path=str(self.output_root / relative),
            name=path.name,
            extension=path.suffix[1:].lower(),
            size=attachment.content_length or 0,
            depth=relative.count("/"),
            mime_type=attachment.mime or "application/octet-stream",
            modified_at=attachment.utc_date_modified,
            metadata=FileMetadata(
                directory_path=str(path.parent) if "/" in relative else "",
                content_type=ContentType.BINARY,
                is_attachment=True,
                note_id=owner.note_id,
                attachment_id=attachment.attachment_id,
                extra={"title": attachment.title},
            ),
        )

    def file_name(self, note: Note, content: str) -> str:
        """Output file name for a note."""
        stem = sanitize_file_name(note.title, self.file_name_pattern)
        extension = note.label("file-extension")
        if extension:
            return f"{stem}.{extension.lstrip('.')}"
        if note.mime == "application/json":
            return f"{stem}.json"
        if note.mime == "text/markdown" or _MARKDOWN_HEADING.search(content):
            return f"{stem}.md"
        return f"{stem}.html"

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export(self, note_ids: list[str]) -> OperationSummary:
        """Plan, then write every entry; the index goes last."""
        entries = await self.plan(note_ids)
        logger.info(
            "Exporting %d files to %s (dry_run=%s)",
            len(entries),
            self.output_root,
            self.options.dry_run,
        )

        results: list[FileResult] = []
        aborted = False
        self.progress.start(len(entries), f"Exporting {len(entries)} files")
        for entry in entries:
            if self.cancel_event is not None and self.cancel_event.is_set():
                aborted = True
                self.collector.add_warning(
                    ErrorCode.CANCELLED, f"Export cancelled before {entry.relative_path}"
                )
                break
            result = await self._write_entry(entry)
            results.append(result)
            self.progress.advance(entry.relative_path, failed=not result.success)

        if (
            self.options.create_index
            and not self.options.dry_run
            and not aborted
        ):
            if any(not r.success for r in results):
                self.collector.add_warning(
                    ErrorCode.INDEX_ERROR,
                    "Index not written because some files failed to export",
                )
            else:
                await self._write_index(entries)

        self.progress.complete(f"Exported {len(results)} files")
        return build_summary(
            self.context,
            results,
            self.collector,
            total_files=len(entries),
            total_size=sum(e.size for e in entries),
            dry_run=self.options.dry_run,
            aborted=aborted,
            output_path=str(self.output_root),
            exported_paths=[
                r.path for r in results if r.success and not r.skipped
            ],
            attachment_ids=[
                r.attachment_id for r in results if r.success and r.attachment_id
            ],
        )

    async def _write_entry(self, entry: FileInfo) -> FileResult:
        rel = entry.relative_path
        try:
            if self.options.dry_run:
                return FileResult(
                    path=rel, success=True, reason=WOULD_EXPORT, size=entry.size
                )
            target = validate_output_path(self.output_root / rel, self.output_root)
            if not self.options.overwrite and target.exists():
                return FileResult(
                    path=rel,
                    success=True,
                    skipped=True,
                    output_path=str(target),
                    reason="file exists",
                )
            if entry.metadata.is_attachment:
                data = await run_sync(
                    self.client.get_attachment_content, entry.metadata.attachment_id
                )
                size = await write_bytes_async(target, data)
                return FileResult(
                    path=rel,
                    success=True,
                    note_id=entry.metadata.note_id,
                    attachment_id=entry.metadata.attachment_id,
                    output_path=str(target),
                    created=True,
                    size=size,
                )
            note_id = entry.metadata.note_id or ""
            note = await run_sync(self.client.get_note, note_id)
            content = await run_sync(self.client.get_note_content, note_id)
            text = await self.convert_note(note, content, entry)
            size = await write_file_async(target, text)
            return FileResult(
                path=rel,
                success=True,
                note_id=note_id,
                output_path=str(target),
                created=True,
                size=size,
            )
        except Exception as exc:
            logger.error("Error exporting %s: %s", rel, exc)
            error = error_from_exception(exc, ErrorCode.FILE_EXPORT_ERROR, rel)
            self.collector.errors.append(error)
            return FileResult(path=rel, success=False, error=error)

    # ------------------------------------------------------------------
    # Hooks for format handlers
    # ------------------------------------------------------------------

    async def convert_note(self, note: Note, content: str, entry: FileInfo) -> str:
        """Prefix the note with a provenance header of HTML comments."""
        source = note.label("source")
        original_path = note.label("original-path")
        if not source and not original_path:
            return content
        lines = []
        if source:
            lines.append(f"<!-- Source: {source} -->")
        if original_path:
            lines.append(f"<!-- Original path: {original_path} -->")
        lines.append(
            f"<!-- Exported from Trilium on {datetime.now(timezone.utc).isoformat()} -->"
        )
        return "\n".join(lines) + "\n\n" + content

    def title_for(self, note_id: str) -> str | None:
        """Title of a note seen during planning."""
        return self._titles.get(note_id)

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    async def _write_index(self, entries: list[FileInfo]) -> None:
        try:
            target = validate_output_path(
                self.output_root / self.options.index_file_name, self.output_root
            )
            await write_file_async(target, self.index_content(entries))
            logger.info("Wrote export index %s", target)
        except Exception as exc:
            self.collector.add_warning(
                ErrorCode.INDEX_ERROR, f"Failed to create index file: {exc}"
            )

    def index_content(self, entries: list[FileInfo]) -> str:
        notes = [e for e in entries if not e.metadata.is_attachment]
        attachments = [e for e in entries if e.metadata.is_attachment]
        lines = [
            "# Export Index",
            "",
            f"**Export date:** {datetime.now(timezone.utc).isoformat()}",
            "",
            f"**Total files:** {len(entries)}",
            "",
        ]
        if notes:
            lines += ["## Notes", ""]
            for entry in notes:
                title = entry.metadata.extra.get("title", entry.name)
                lines.append(f"- [{title}]({entry.relative_path})")
            lines.append("")
        if attachments:
            lines += ["## Attachments", ""]
            for entry in attachments:
                lines.append(f"- [{entry.name}]({entry.relative_path})")
            lines.append("")
        lines += ["## File Structure", "", "```"]
        lines += render_tree([e.relative_path for e in entries])
        lines += ["```", ""]
        return "\n".join(lines)


def render_tree(paths: list[str]) -> list[str]:
    """Render relative paths as a ``├──``/``└──`` tree."""
    tree: dict = {}
    for path in paths:
        node = tree
        for part in path.split("/"):
            node = node.setdefault(part, {})

    lines: list[str] = []

    def _walk(node: dict, prefix: str) -> None:
        names = sorted(node)
        for index, name in enumerate(names):
            last = index == len(names) - 1
            lines.append(f"{prefix}{'└── ' if last else '├── '}{name}")
            _walk(node[name], prefix + ("    " if last else "│   "))

    _walk(tree, "")
    return lines


def _content_type_for(extension: str) -> ContentType:
    if extension in ("md", "markdown"):
        return ContentType.MARKDOWN
    if extension == "json":
        return ContentType.JSON
    if extension in ("html", "htm"):
        return ContentType.HTML
    return ContentType.TEXT
