"""Import pipeline: file tree -> note store.

The ``ImportPipeline`` runs one import end to end:

1. Validates the source directory (``ValidationError`` aborts).
2. Scans it with the ``Scanner``.
3. Reads samples and text bodies concurrently and classifies each file.
4. Creates folder notes shallow-to-deep via the ``HierarchyMapper``.
5. Processes files one at a time: resolve parent, check duplicates, then
   write either a note (text) or an attachment (binary).
6. Runs post-import hooks (wikilink rewriting) and the optional index.
7. Folds results into an ``OperationSummary``.

Error handling is per-file: a failing file becomes a ``FileResult`` with
``success=False`` and the loop moves on. Store writes are strictly
sequential; only the read-only scan phase runs in parallel.

Format handlers subclass the pipeline and override the hook methods
(``filter_files``, ``order_files``, ``build_labels``, ``note_content``,
``attachment_parent``, ``after_import``).
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from trilium_sync.config_schema import DuplicateHandling, ImportOptions
from trilium_sync.converters import escape_html, markdown_to_html
from trilium_sync.core.async_utils import gather_limited, run_sync
from trilium_sync.core.client import EtapiClient
from trilium_sync.file_handler import (
    decode_bytes,
    read_bytes_async,
    read_sample_async,
    validate_directory,
)

from .classifier import detect_content_type, parse_content
from .duplicates import DuplicateAction, DuplicateResolver
from .errors import ErrorCode, PerFileError, ValidationError, error_from_exception
from .hierarchy import HierarchyMapper
from .models import (
    ContentInfo,
    ContentType,
    FileInfo,
    FileResult,
    OperationContext,
    OperationSummary,
)
from .progress import (
    ErrorCollector,
    ProgressCallback,
    ProgressTracker,
    build_summary,
)
from .scanner import Scanner

logger = logging.getLogger(__name__)

WOULD_IMPORT = "would import"


@dataclass
class PreparedFile:
    """A scanned file after the read/classify phase."""

    info: FileInfo
    content_type: ContentType | None = None
    content: ContentInfo | None = None
    raw_text: str = ""
    error: Exception | None = None

    @property
    def is_binary(self) -> bool:
        return self.content_type == ContentType.BINARY


@dataclass
class ImportedNote:
    """A note written, or skipped as already imported, during this run."""

    note_id: str
    relative_path: str
    content: str
    content_type: ContentType
    source_text: str = ""


class ImportPipeline:
    """Import a directory tree into the note store.

    Args:
        client: ETAPI client.
        options: Import options.
        context: Operation context for this run.
        progress_callback: Receives one progress event per file.
        cancel_event: When set, processing stops before the next file.
    """

    source_name = "directory"
    path_label = "original-path"

    def __init__(
        self,
        client: EtapiClient,
        options: ImportOptions,
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
        self.resolver = DuplicateResolver(client, options.duplicate_handling)
        self.mapper = HierarchyMapper(
            client,
            self.resolver,
            options.parent_note_id,
            self.source_name,
            self.collector,
            dry_run=options.dry_run,
        )
        self.source_root: Path | None = None
        self.note_ids: dict[str, str] = {}
        self.imported: list[ImportedNote] = []
        # imported plus skipped notes, in file order
        self.sources: list[ImportedNote] = []
        self.results: list[FileResult] = []
        self.created_ids: list[str] = []
        self.updated_ids: list[str] = []
        self.attachment_ids: list[str] = []

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self) -> OperationSummary:
        """Execute the import.

        Returns:
            The summary, also when the run was cancelled part way.

        Raises:
            ValidationError: If the source path is not a usable directory.
        """
        try:
            self.source_root = validate_directory(self.options.source_path)
        except ValueError as exc:
            raise ValidationError(
                str(exc), details={"path": self.options.source_path}
            ) from exc

        scanner = self.make_scanner()
        files = self.filter_files(await scanner.scan_async(self.source_root))
        logger.info(
            "Importing %d files from %s (dry_run=%s)",
            len(files),
            self.source_root,
            self.options.dry_run,
        )

        prepared = await self.prepare(files)
        prepared = self.order_files(prepared)

        if self.options.preserve_structure:
            await self.mapper.build(p.info for p in prepared)
            self.created_ids.extend(self.mapper.created)

        self.progress.start(len(prepared), f"Importing {len(prepared)} files")
        aborted = False
        for item in prepared:
            if self.cancel_event is not None and self.cancel_event.is_set():
                aborted = True
                self.collector.add_warning(
                    ErrorCode.CANCELLED,
                    f"Import cancelled before {item.info.relative_path}",
                )
                break
            result = await self._process(item)
            self.results.append(result)
            self.progress.advance(
                item.info.relative_path, failed=not result.success
            )

        if not self.options.dry_run and not aborted:
            await self.after_import()
            if self.options.create_index:
                await self._write_index(prepared)

        self.progress.complete(f"Imported {len(self.results)} files")
        return build_summary(
            self.context,
            self.results,
            self.collector,
            total_files=len(prepared),
            total_size=sum(p.info.size for p in prepared),
            dry_run=self.options.dry_run,
            aborted=aborted,
            created_ids=self.created_ids,
            updated_ids=self.updated_ids,
            attachment_ids=self.attachment_ids,
        )

    # ------------------------------------------------------------------
    # Scan and classify
    # ------------------------------------------------------------------

    def make_scanner(self) -> Scanner:
        return Scanner.from_options(self.options)

    def filter_files(self, files: list[FileInfo]) -> list[FileInfo]:
        """Hook: drop files the format does not import."""
        return files

    def order_files(self, prepared: list[PreparedFile]) -> list[PreparedFile]:
        """Hook: processing order. Default is shallow-to-deep, then path."""
        return sorted(
            prepared, key=lambda p: (p.info.depth, p.info.relative_path)
        )

    async def prepare(self, files: list[FileInfo]) -> list[PreparedFile]:
        """Read and classify every file; reads run concurrently."""
        return await gather_limited(
            [self._prepare_one(info) for info in files],
            self.options.max_parallel_reads,
        )

    async def _prepare_one(self, info: FileInfo) -> PreparedFile:
        path = Path(info.absolute_path)
        try:
            sample = await read_sample_async(path)
            content_type = detect_content_type(sample, info.extension)
            info = info.with_metadata(
                content_type=content_type,
                is_attachment=content_type == ContentType.BINARY,
            )
            if content_type == ContentType.BINARY:
                return PreparedFile(info=info, content_type=content_type)
            raw = await read_bytes_async(path)
            text, _ = decode_bytes(raw)
            text = self.preprocess_text(text, info)
            return PreparedFile(
                info=info,
                content_type=content_type,
                content=parse_content(text, info, content_type),
                raw_text=text,
            )
        except Exception as exc:
            logger.debug("Could not read %s: %s", info.relative_path, exc)
            return PreparedFile(info=info, error=exc)

    def preprocess_text(self, text: str, info: FileInfo) -> str:
        """Hook: adjust decoded text before parsing."""
        return text

    # ------------------------------------------------------------------
    # Per-file processing
    # ------------------------------------------------------------------

    async def _process(self, item: PreparedFile) -> FileResult:
        rel = item.info.relative_path
        try:
            if item.error is not None:
                raise PerFileError(
                    f"Could not read {rel}: {item.error}",
                    details={"path": rel},
                ) from item.error
            if self.options.dry_run:
                return FileResult(
                    path=rel,
                    success=True,
                    reason=WOULD_IMPORT,
                    size=item.info.size,
                )
            if item.is_binary:
                return await self.import_attachment(item)
            return await self.import_note(item)
        except Exception as exc:
            logger.error("Error importing %s: %s", rel, exc)
            error = error_from_exception(exc, ErrorCode.FILE_IMPORT_ERROR, rel)
            self.collector.errors.append(error)
            return FileResult(path=rel, success=False, error=error)

    def parent_for(self, info: FileInfo) -> str:
        if self.options.preserve_structure:
            return self.mapper.parent_for(info.relative_path)
        return self.options.parent_note_id

    async def import_note(self, item: PreparedFile) -> FileResult:
        info = item.info
        content = item.content
        assert content is not None

        title = self.note_title(content, info)
        body = self.note_content(content, item)
        decision = await self.resolver.resolve(self.path_label, info.relative_path)

        if decision.action == DuplicateAction.SKIP:
            self.note_ids[info.relative_path] = decision.existing_id or ""
            self.sources.append(
                ImportedNote(
                    decision.existing_id or "",
                    info.relative_path,
                    body,
                    content.type,
                    item.raw_text,
                )
            )
            return FileResult(
                path=info.relative_path,
                success=True,
                skipped=True,
                note_id=decision.existing_id,
                reason="already imported",
            )

        if decision.action == DuplicateAction.OVERWRITE:
            note_id = decision.existing_id or ""
            await self.resolver.overwrite(note_id, title, body)
            self.updated_ids.append(note_id)
            created = False
        else:
            note_id = await run_sync(
                self.client.create_note,
                self.parent_for(info),
                title,
                body,
                "text",
                "text/html",
                self.build_labels(info, content),
            )
            self.created_ids.append(note_id)
            created = True

        self.note_ids[info.relative_path] = note_id
        imported = ImportedNote(
            note_id, info.relative_path, body, content.type, item.raw_text
        )
        self.imported.append(imported)
        self.sources.append(imported)
        logger.debug(
            "%s note %s for %s",
            "Created" if created else "Updated",
            note_id,
            info.relative_path,
        )
        return FileResult(
            path=info.relative_path,
            success=True,
            note_id=note_id,
            created=created,
            size=info.size,
        )

    async def import_attachment(self, item: PreparedFile) -> FileResult:
        info = item.info
        owner_id = await self.attachment_parent(info)
        data = await read_bytes_async(Path(info.absolute_path))
        mime = info.mime_type or "application/octet-stream"

        existing = await self._existing_attachment(owner_id, info.name)
        if existing is not None:
            if self.options.duplicate_handling == DuplicateHandling.SKIP:
                return FileResult(
                    path=info.relative_path,
                    success=True,
                    skipped=True,
                    attachment_id=existing,
                    note_id=owner_id,
                    reason="already imported",
                )
            await run_sync(self.client.update_attachment_content, existing, data)
            self.attachment_ids.append(existing)
            return FileResult(
                path=info.relative_path,
                success=True,
                attachment_id=existing,
                note_id=owner_id,
                size=info.size,
            )

        attachment_id = await run_sync(
            self.client.create_attachment,
            owner_id,
            info.name,
            base64.b64encode(data).decode("ascii"),
            mime,
            "image" if mime.startswith("image/") else "file",
        )
        self.attachment_ids.append(attachment_id)
        return FileResult(
            path=info.relative_path,
            success=True,
            attachment_id=attachment_id,
            note_id=owner_id,
            created=True,
            size=info.size,
        )

    async def _existing_attachment(self, owner_id: str, title: str) -> str | None:
        try:
            attachments = await run_sync(self.client.get_attachments, owner_id)
        except Exception as exc:
            logger.warning(
                "Attachment lookup on %s failed, treating as new: %s", owner_id, exc
            )
            return None
        for attachment in attachments:
            if attachment.title == title:
                return attachment.attachment_id
        return None

    # ------------------------------------------------------------------
    # Hooks for format handlers
    # ------------------------------------------------------------------

    def note_title(self, content: ContentInfo, info: FileInfo) -> str:
        return content.title.strip() or info.stem

    def note_content(self, content: ContentInfo, item: PreparedFile) -> str:
        """Transform parsed content into the note body."""
        if content.type == ContentType.MARKDOWN:
            if self.options.render_markdown:
                return markdown_to_html(content.body)
            return content.body
        if content.type == ContentType.HTML:
            return content.body
        if content.type == ContentType.JSON:
            try:
                pretty = json.dumps(json.loads(content.body), indent=2, ensure_ascii=False)
            except ValueError:
                pretty = content.body
            return f'<pre><code class="language-json">{escape_html(pretty)}</code></pre>'
        return f"<pre>{escape_html(content.body)}</pre>"

    def build_labels(
        self, info: FileInfo, content: ContentInfo
    ) -> list[dict[str, Any]]:
        """Labels written onto each imported note."""
        labels: list[dict[str, Any]] = [
            {"type": "label", "name": "source", "value": self.source_name},
            {"type": "label", "name": self.path_label, "value": info.relative_path},
            {"type": "label", "name": "original-name", "value": info.name},
        ]
        if info.extension:
            labels.append(
                {"type": "label", "name": "file-extension", "value": info.extension}
            )
        labels.append(
            {"type": "label", "name": "mime-type", "value": info.mime_type}
        )
        for tag in content.tags:
            labels.append({"type": "label", "name": "tag", "value": tag})
        for key, value in content.front_matter.items():
            if key in ("title", "tags"):
                continue
            labels.append(
                {
                    "type": "label",
                    "name": f"metadata-{key}",
                    "value": _label_value(value),
                }
            )
        return labels

    async def attachment_parent(self, info: FileInfo) -> str:
        """Hook: note that owns a binary file."""
        return self.parent_for(info)

    async def after_import(self) -> None:
        """Hook: runs once every file has been written."""

    # ------------------------------------------------------------------
    # Index note
    # ------------------------------------------------------------------

    async def _write_index(self, prepared: list[PreparedFile]) -> None:
        """Create the "Import Index" note; failures become warnings."""
        try:
            note_id = await run_sync(
                self.client.create_note,
                self.options.parent_note_id,
                "Import Index",
                self._index_content(prepared),
                "text",
                "text/html",
                [
                    {"type": "label", "name": "source", "value": self.source_name},
                    {"type": "label", "name": "type", "value": "index"},
                    {
                        "type": "label",
                        "name": "import-date",
                        "value": self.context.started_at,
                    },
                ],
            )
            self.created_ids.append(note_id)
        except Exception as exc:
            self.collector.add_warning(
                ErrorCode.INDEX_ERROR, f"Failed to create import index: {exc}"
            )

    def _index_content(self, prepared: list[PreparedFile]) -> str:
        succeeded = sum(1 for r in self.results if r.success and not r.skipped)
        failed = sum(1 for r in self.results if not r.success)
        skipped = sum(1 for r in self.results if r.skipped)
        items = []
        for p in prepared:
            note_id = self.note_ids.get(p.info.relative_path)
            label = escape_html(p.info.relative_path)
            if note_id:
                items.append(f'<li><a href="#root/{note_id}">{label}</a></li>')
            else:
                items.append(f"<li>{label}</li>")
        return (
            "<h1>Import Index</h1>\n"
            f"<p>Imported from: <code>{escape_html(str(self.source_root))}</code></p>\n"
            "<h2>Statistics</h2>\n"
            f"<ul><li>Total files: {len(prepared)}</li>"
            f"<li>Imported: {succeeded}</li>"
            f"<li>Skipped: {skipped}</li>"
            f"<li>Failed: {failed}</li></ul>\n"
            "<h2>File Structure</h2>\n"
            f"<ul>{''.join(items)}</ul>"
        )


def _label_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)
