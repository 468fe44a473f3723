"""Pydantic models for the import/export engine.

Defines the data contracts shared by every transfer module:

- ``FileInfo``: one scanned (or planned) file, with typed ``FileMetadata``.
- ``ContentInfo``: parsed view of a text file.
- ``OperationContext``: per-invocation id, scratch directory and options.
- ``FileResult``: outcome for one file.
- ``OperationSummary``: aggregate result returned to callers.
- ``GitStatus`` / ``GitCommit`` / ``GitSyncResult``: repository snapshots
  and sync outcome.
- ``ProgressEvent``: payload handed to progress callbacks.

All models are frozen; enrichment goes through ``model_copy(update=...)``.
"""

from __future__ import annotations

import tempfile
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class ContentType(str, Enum):
    """Classifier labels for file content."""

    MARKDOWN = "markdown"
    HTML = "html"
    JSON = "json"
    TEXT = "text"
    BINARY = "binary"


class OperationKind(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    SYNC = "sync"


class FileMetadata(BaseModel):
    """Typed per-file metadata.

    Attributes:
        directory_path: Relative path of the containing directory ("" at root).
        content_type: Classifier result, set after classification.
        is_directory: Planned directory entry (export plans only).
        is_attachment: The file maps to an attachment, not a note.
        note_id: Note the entry was planned from (export).
        attachment_id: Attachment the entry was planned from (export).
        extra: Vendor-specific keys with no typed home.
    """

    directory_path: str = ""
    content_type: ContentType | None = None
    is_directory: bool = False
    is_attachment: bool = False
    note_id: str | None = None
    attachment_id: str | None = None
    extra: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class FileInfo(BaseModel):
    """A file found by the scanner or produced by an export plan.

    Attributes:
        relative_path: POSIX path relative to the operation root; unique
            within one scan.
        absolute_path: Absolute filesystem path.
        name: Base name including extension.
        extension: Lowercase extension without the dot.
        size: Size in bytes (0 for planned files).
        depth: Number of ``/`` separators in ``relative_path``.
        mime_type: Guessed MIME type.
        modified_at: ISO 8601 modification time, if known.
    """

    relative_path: str
    absolute_path: str
    name: str
    extension: str = ""
    size: int = 0
    depth: int = 0
    mime_type: str = "application/octet-stream"
    modified_at: str | None = None
    metadata: FileMetadata = Field(default_factory=FileMetadata)

    model_config = {"frozen": True}

    @property
    def stem(self) -> str:
        return Path(self.name).stem if self.extension else self.name

    def with_metadata(self, **changes: Any) -> FileInfo:
        """Return a copy with updated metadata fields."""
        return self.model_copy(
            update={"metadata": self.metadata.model_copy(update=changes)}
        )


class ContentMetadata(BaseModel):
    """Format-specific facts extracted by the classifier."""

    html_meta: dict[str, str] = Field(default_factory=dict)
    json_keys: list[str] = Field(default_factory=list)
    heading_count: int = 0
    extra: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ContentInfo(BaseModel):
    """Parsed view of one text file, scoped to a single run."""

    title: str
    body: str
    type: ContentType
    front_matter: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    metadata: ContentMetadata = Field(default_factory=ContentMetadata)

    model_config = {"frozen": True}


class OperationContext(BaseModel):
    """Per-invocation state passed by reference to every stage.

    Attributes:
        operation_id: Random UUID identifying the run.
        operation: import, export or sync.
        format: Format handler name (directory, obsidian, git).
        temp_directory: Scratch directory for the run.
        started_at: ISO 8601 start time.
        options: Resolved options model for the run.
    """

    operation_id: str
    operation: OperationKind
    format: str
    temp_directory: Path
    started_at: str
    options: Any = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @classmethod
    def create(
        cls,
        operation: OperationKind,
        format: str,
        options: Any = None,
        temp_root: str | None = None,
    ) -> OperationContext:
        now = datetime.now(timezone.utc)
        stamp = int(now.timestamp() * 1000)
        base = Path(temp_root) if temp_root else Path(tempfile.gettempdir())
        return cls(
            operation_id=str(uuid.uuid4()),
            operation=operation,
            format=format,
            temp_directory=base / f"trilium-{operation.value}-{format}-{stamp}",
            started_at=now.isoformat(),
            options=options,
        )


class OperationError(BaseModel):
    """A structured error or warning entry."""

    code: str
    message: str
    path: str | None = None
    timestamp: str

    model_config = {"frozen": True}


class FileResult(BaseModel):
    """Outcome for one file.

    ``skipped`` results count toward ``skipped_files`` only; they are
    neither successful nor failed.
    """

    path: str
    success: bool
    note_id: str | None = None
    attachment_id: str | None = None
    output_path: str | None = None
    created: bool = False
    skipped: bool = False
    reason: str | None = None
    size: int = 0
    error: OperationError | None = None

    model_config = {"frozen": True}


class GitCommit(BaseModel):
    hash: str
    author: str
    date: str
    message: str

    model_config = {"frozen": True}


class GitStatus(BaseModel):
    """Snapshot of a working tree taken at the start of a sync."""

    branch: str
    modified: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    untracked: list[str] = Field(default_factory=list)
    staged: list[str] = Field(default_factory=list)
    commits: list[GitCommit] = Field(default_factory=list)
    remote_url: str | None = None

    model_config = {"frozen": True}

    @property
    def is_clean(self) -> bool:
        return not (
            self.modified or self.added or self.deleted or self.untracked
        )


class GitSyncResult(BaseModel):
    repository: str
    branch: str
    commit_hash: str | None = None
    imported: list[str] = Field(default_factory=list)
    exported: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    pulled: bool = False
    pushed: bool = False

    model_config = {"frozen": True}


class OperationSummary(BaseModel):
    """Aggregate result of one import, export or sync.

    Invariant: ``processed_files == successful_files + failed_files``;
    ``skipped_files`` is tracked separately.
    """

    operation: OperationKind
    format: str
    operation_id: str = ""
    started_at: str
    completed_at: str | None = None
    duration: float = 0.0
    dry_run: bool = False
    aborted: bool = False
    total_files: int = 0
    processed_files: int = 0
    successful_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    total_size: int = 0
    processed_size: int = 0
    errors: list[OperationError] = Field(default_factory=list)
    warnings: list[OperationError] = Field(default_factory=list)
    results: list[FileResult] = Field(default_factory=list)
    created_ids: list[str] = Field(default_factory=list)
    updated_ids: list[str] = Field(default_factory=list)
    attachment_ids: list[str] = Field(default_factory=list)
    output_path: str | None = None
    exported_paths: list[str] = Field(default_factory=list)
    git: GitSyncResult | None = None

    model_config = {"frozen": True}

    @property
    def failed(self) -> list[FileResult]:
        return [r for r in self.results if not r.success]

    @property
    def skipped(self) -> list[FileResult]:
        return [r for r in self.results if r.skipped]


class ProgressKind(str, Enum):
    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    operation_id: str
    kind: ProgressKind
    message: str
    current: int = 0
    total: int = 0

    model_config = {"frozen": True}

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 100.0 if self.kind == ProgressKind.COMPLETE else 0.0
        return round(self.current / self.total * 100, 1)
