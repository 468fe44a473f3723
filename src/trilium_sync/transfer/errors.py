"""Error taxonomy for import, export and sync operations.

- ``ValidationError``: bad options (e.g. the source is not a directory).
  Raised before any work starts; aborts the operation.
- ``PerFileError``: one file failed. Caught at the file boundary and
  recorded in that file's ``FileResult``; the run continues.
- ``RepositoryStateError``: git status, branch, pull, commit or push
  failed. Aborts the remaining sync stages.
- ``SecurityValidationError``: a value destined for a subprocess contains
  unsafe characters. Raised before the process is started; the value is
  never rewritten and retried.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .models import OperationError


class ErrorCode:
    IMPORT_ERROR = "IMPORT_ERROR"
    EXPORT_ERROR = "EXPORT_ERROR"
    FILE_IMPORT_ERROR = "FILE_IMPORT_ERROR"
    FILE_EXPORT_ERROR = "FILE_EXPORT_ERROR"
    DIRECTORY_ERROR = "DIRECTORY_ERROR"
    INDEX_ERROR = "INDEX_ERROR"
    GIT_ERROR = "GIT_ERROR"
    UNSAFE_INPUT = "UNSAFE_INPUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CANCELLED = "CANCELLED"


class ImportExportError(Exception):
    """Base class for every failure raised by the transfer layer."""

    code = ErrorCode.IMPORT_ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_operation_error(self, path: str | None = None) -> OperationError:
        return OperationError(
            code=self.code,
            message=self.message,
            path=path or self.details.get("path"),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


class ValidationError(ImportExportError):
    code = ErrorCode.VALIDATION_ERROR


class PerFileError(ImportExportError):
    code = ErrorCode.FILE_IMPORT_ERROR


class RepositoryStateError(ImportExportError):
    code = ErrorCode.GIT_ERROR


class SecurityValidationError(ImportExportError):
    code = ErrorCode.UNSAFE_INPUT


class GitCommandError(ImportExportError):
    """A git subprocess exited non-zero or timed out.

    Attributes:
        command: The argument list that was run.
        returncode: Exit status, ``None`` on timeout.
        stderr: Captured standard error.
    """

    code = ErrorCode.GIT_ERROR

    def __init__(
        self,
        message: str,
        command: list[str],
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(
            message,
            details={"command": command, "returncode": returncode},
        )
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


def error_from_exception(
    exc: BaseException, code: str, path: str | None = None
) -> OperationError:
    """Turn any exception into an ``OperationError`` record."""
    if isinstance(exc, ImportExportError):
        return exc.to_operation_error(path)
    return OperationError(
        code=code,
        message=str(exc) or type(exc).__name__,
        path=path,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
