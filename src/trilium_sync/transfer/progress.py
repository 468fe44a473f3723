"""Progress reporting and non-fatal error accumulation.

``ProgressTracker`` emits ``ProgressEvent`` objects to an optional
callback. Callbacks are fire-and-forget: a slow or failing callback never
blocks or aborts the pipeline.

``ErrorCollector`` gathers structured errors and warnings during a run,
and ``build_summary`` folds the per-file results into the
``OperationSummary`` returned to callers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

from trilium_sync.core.async_utils import fire_and_forget

from .errors import error_from_exception
from .models import (
    FileResult,
    OperationContext,
    OperationError,
    OperationSummary,
    ProgressEvent,
    ProgressKind,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[
    [ProgressEvent], Union[None, Awaitable[None]]
]


class ProgressTracker:
    """Emit progress events for one operation.

    Args:
        operation_id: Id stamped on every event.
        callback: Plain or async callable receiving each event.
    """

    def __init__(
        self,
        operation_id: str,
        callback: ProgressCallback | None = None,
    ) -> None:
        self.operation_id = operation_id
        self.callback = callback
        self.total = 0
        self.current = 0

    def _emit(self, kind: ProgressKind, message: str) -> None:
        event = ProgressEvent(
            operation_id=self.operation_id,
            kind=kind,
            message=message,
            current=self.current,
            total=self.total,
        )
        fire_and_forget(self.callback, event)

    def start(self, total: int, message: str = "Starting") -> None:
        self.total = total
        self.current = 0
        self._emit(ProgressKind.START, message)

    def advance(self, message: str, failed: bool = False) -> None:
        """Record one processed item and emit its single event.

        A failed item is reported as an ``error`` event instead of a
        ``progress`` one; it still counts toward ``current``.
        """
        self.current += 1
        self._emit(ProgressKind.ERROR if failed else ProgressKind.PROGRESS, message)

    def complete(self, message: str = "Completed") -> None:
        self._emit(ProgressKind.COMPLETE, message)


class ErrorCollector:
    """Accumulate non-fatal errors and warnings for one run."""

    def __init__(self) -> None:
        self.errors: list[OperationError] = []
        self.warnings: list[OperationError] = []

    @staticmethod
    def _entry(code: str, message: str, path: str | None) -> OperationError:
        return OperationError(
            code=code,
            message=message,
            path=path,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def add_error(
        self, code: str, message: str, path: str | None = None
    ) -> OperationError:
        entry = self._entry(code, message, path)
        self.errors.append(entry)
        logger.error("[%s] %s%s", code, message, f" ({path})" if path else "")
        return entry

    def add_exception(
        self, exc: BaseException, code: str, path: str | None = None
    ) -> OperationError:
        entry = error_from_exception(exc, code, path)
        self.errors.append(entry)
        logger.error(
            "[%s] %s%s", entry.code, entry.message, f" ({path})" if path else ""
        )
        return entry

    def add_warning(
        self, code: str, message: str, path: str | None = None
    ) -> OperationError:
        entry = self._entry(code, message, path)
        self.warnings.append(entry)
        logger.warning("[%s] %s", code, message)
        return entry

    def extend(self, other: ErrorCollector) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def build_summary(
    context: OperationContext,
    results: list[FileResult],
    collector: ErrorCollector,
    *,
    total_files: int,
    total_size: int = 0,
    dry_run: bool = False,
    aborted: bool = False,
    **extra: Any,
) -> OperationSummary:
    """Fold per-file results into an ``OperationSummary``.

    Skipped results count only toward ``skipped_files``, so
    ``processed_files == successful_files + failed_files`` always holds.
    """
    successful = sum(1 for r in results if r.success and not r.skipped)
    failed = sum(1 for r in results if not r.success)
    skipped = sum(1 for r in results if r.skipped)

    completed = datetime.now(timezone.utc)
    started = datetime.fromisoformat(context.started_at)

    return OperationSummary(
        operation=context.operation,
        format=context.format,
        operation_id=context.operation_id,
        started_at=context.started_at,
        completed_at=completed.isoformat(),
        duration=max(0.0, (completed - started).total_seconds()),
        dry_run=dry_run,
        aborted=aborted,
        total_files=total_files,
        processed_files=successful + failed,
        successful_files=successful,
        failed_files=failed,
        skipped_files=skipped,
        total_size=total_size,
        processed_size=sum(r.size for r in results if r.success and not r.skipped),
        errors=list(collector.errors),
        warnings=list(collector.warnings),
        results=list(results),
        **extra,
    )
