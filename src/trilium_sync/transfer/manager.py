"""Entry point for import, export and git sync operations.

``TransferManager`` builds the ``OperationContext`` for each call, picks
the format handler, and guarantees a summary comes back: an
``ImportExportError`` raised mid-operation is folded into an ``aborted``
summary holding whatever results were recorded before it. The
operation's scratch directory is removed afterwards unless
``keep_temp`` is set.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Any

from trilium_sync.config_schema import (
    ExportOptions,
    GitSyncOptions,
    ImportOptions,
    ObsidianImportOptions,
    TransferConfig,
)
from trilium_sync.core.client import EtapiClient

from .errors import ImportExportError, ValidationError
from .formats import EXPORTERS, IMPORTERS, GitSyncController
from .git_runner import GitRunner
from .models import (
    FileInfo,
    FileResult,
    OperationContext,
    OperationKind,
    OperationSummary,
)
from .progress import ErrorCollector, ProgressCallback, build_summary

logger = logging.getLogger(__name__)

_IMPORT_OPTIONS: dict[str, type[ImportOptions]] = {
    "directory": ImportOptions,
    "obsidian": ObsidianImportOptions,
    "git": ImportOptions,
}


class TransferManager:
    """Run import, export and sync operations against one note store.

    Args:
        client: ETAPI client shared by every operation.
        settings: Scratch directory and read concurrency defaults.
    """

    def __init__(
        self,
        client: EtapiClient,
        settings: TransferConfig | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or TransferConfig()

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def _import_options(
        self, format: str, options: ImportOptions | dict[str, Any]
    ) -> ImportOptions:
        if isinstance(options, ImportOptions):
            return options
        model = _IMPORT_OPTIONS[format]
        data = {"max_parallel_reads": self.settings.max_parallel_reads, **options}
        return model.model_validate(data)

    @staticmethod
    def _check_format(format: str, registry: dict[str, Any]) -> None:
        if format not in registry:
            raise ValidationError(
                f"Unknown format '{format}'. Supported: {', '.join(sorted(registry))}",
                details={"format": format},
            )

    def _context(
        self, operation: OperationKind, format: str, options: Any
    ) -> OperationContext:
        return OperationContext.create(
            operation, format, options, temp_root=self.settings.temp_dir
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def import_(
        self,
        format: str,
        options: ImportOptions | dict[str, Any],
        progress_callback: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> OperationSummary:
        """Import a directory, vault or repository into the note store.

        Args:
            format: ``directory``, ``obsidian`` or ``git``.
            options: Options model, or a dict validated against the
                format's options model.
            progress_callback: Receives progress events.
            cancel_event: Set it to stop before the next file.

        Returns:
            The operation summary; ``aborted`` when an error stopped it.
        """
        self._check_format(format, IMPORTERS)
        resolved = self._import_options(format, options)
        context = self._context(OperationKind.IMPORT, format, resolved)
        pipeline = IMPORTERS[format](
            self.client, resolved, context, progress_callback, cancel_event
        )
        try:
            return await pipeline.run()
        except ImportExportError as exc:
            return self._aborted(context, exc, pipeline.results, pipeline.collector)
        finally:
            self._cleanup(context)

    async def plan_export(
        self,
        format: str,
        note_ids: list[str],
        options: ExportOptions | dict[str, Any],
    ) -> list[FileInfo]:
        """Preview the files an export would write, without writing."""
        self._check_format(format, EXPORTERS)
        resolved = (
            options
            if isinstance(options, ExportOptions)
            else ExportOptions.model_validate(options)
        )
        context = self._context(OperationKind.EXPORT, format, resolved)
        pipeline = EXPORTERS[format](self.client, resolved, context)
        return await pipeline.plan(note_ids)

    async def export(
        self,
        format: str,
        note_ids: list[str],
        options: ExportOptions | dict[str, Any],
        progress_callback: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> OperationSummary:
        """Export notes, their descendants and attachments to files."""
        self._check_format(format, EXPORTERS)
        resolved = (
            options
            if isinstance(options, ExportOptions)
            else ExportOptions.model_validate(options)
        )
        context = self._context(OperationKind.EXPORT, format, resolved)
        pipeline = EXPORTERS[format](
            self.client, resolved, context, progress_callback, cancel_event
        )
        try:
            return await pipeline.export(note_ids)
        except ImportExportError as exc:
            return self._aborted(context, exc, [], pipeline.collector)
        finally:
            self._cleanup(context)

    async def sync(
        self,
        options: GitSyncOptions | dict[str, Any],
        progress_callback: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        runner: GitRunner | None = None,
    ) -> OperationSummary:
        """Synchronize the note store with a git working tree."""
        resolved = (
            options
            if isinstance(options, GitSyncOptions)
            else GitSyncOptions.model_validate(options)
        )
        context = self._context(OperationKind.SYNC, "git", resolved)
        controller = GitSyncController(
            self.client,
            resolved,
            context,
            progress_callback,
            cancel_event,
            runner=runner,
        )
        try:
            return await controller.run()
        except ImportExportError as exc:
            return self._aborted(context, exc, [], controller.collector)
        finally:
            self._cleanup(context)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _aborted(
        context: OperationContext,
        exc: ImportExportError,
        results: list[FileResult],
        collector: ErrorCollector,
    ) -> OperationSummary:
        logger.error("%s %s aborted: %s", context.operation.value, context.format, exc)
        collector.errors.append(exc.to_operation_error())
        dry_run = bool(getattr(context.options, "dry_run", False))
        return build_summary(
            context,
            results,
            collector,
            total_files=len(results),
            dry_run=dry_run,
            aborted=True,
        )

    def _cleanup(self, context: OperationContext) -> None:
        if self.settings.keep_temp:
            return
        if context.temp_directory.exists():
            shutil.rmtree(context.temp_directory, ignore_errors=True)
            logger.debug("Removed %s", context.temp_directory)

