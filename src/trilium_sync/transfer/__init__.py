"""Import, export and git synchronization between file trees and Trilium.

Public API for moving notes between an external representation (a plain
directory, an Obsidian vault or a git repository) and a Trilium note
store reached over ETAPI.

Architecture
------------
Imports run **scan -> classify -> parent-resolve -> duplicate-check ->
write**, one file at a time.  Store writes are sequential so a folder
note always exists before anything is created inside it; only the
read-only scan phase runs concurrently.  Exports are planned first (a
pure, repeatable walk of the note tree) and written second.  Every
operation ends in one ``OperationSummary``, also when it was aborted.

Modules:

- ``scanner``     -- ``Scanner``: glob/depth/hidden/size filtered walk.
- ``classifier``  -- ``detect_content_type`` and ``parse_content``.
- ``hierarchy``   -- ``HierarchyMapper``: directory path -> folder note id.
- ``duplicates``  -- ``DuplicateResolver``: label lookup, skip/overwrite.
- ``importer``    -- ``ImportPipeline``: per-file import state machine.
- ``exporter``    -- ``ExportPipeline``: ``plan()`` then ``export()``.
- ``wikilinks``   -- ``WikilinkResolver``: post-import link rewriting.
- ``git_runner``  -- ``GitRunner``: allow-listed, validated git calls.
- ``formats``     -- directory, Obsidian and git handlers plus the
  ``GitSyncController``.
- ``progress``    -- ``ProgressTracker``, ``ErrorCollector``.
- ``reporter``    -- text and JSON summary formatting.
- ``manager``     -- ``TransferManager``: the entry point.

Usage example
-------------
::

    import asyncio
    from trilium_sync.config import load_config
    from trilium_sync.core.client import EtapiClient
    from trilium_sync.transfer import TransferManager, format_summary

    client = EtapiClient(load_config())
    manager = TransferManager(client)

    # Preview, then import
    preview = asyncio.run(
        manager.import_("directory", {"source_path": "notes", "dry_run": True})
    )
    print(format_summary(preview))

    summary = asyncio.run(
        manager.import_("obsidian", {"vault_path": "~/vault"})
    )
    print(format_summary(summary))
"""

from .errors import (
    ErrorCode,
    GitCommandError,
    ImportExportError,
    PerFileError,
    RepositoryStateError,
    SecurityValidationError,
    ValidationError,
)
from .exporter import ExportPipeline
from .formats import GitSyncController
from .git_runner import GitRunner
from .importer import ImportPipeline
from .manager import TransferManager
from .models import (
    ContentInfo,
    ContentType,
    FileInfo,
    FileResult,
    GitStatus,
    GitSyncResult,
    OperationContext,
    OperationError,
    OperationKind,
    OperationSummary,
    ProgressEvent,
)
from .reporter import format_dry_run_preview, format_summary, summary_to_json
from .scanner import Scanner

__all__ = [
    "ContentInfo",
    "ContentType",
    "ErrorCode",
    "ExportPipeline",
    "FileInfo",
    "FileResult",
    "GitCommandError",
    "GitRunner",
    "GitStatus",
    "GitSyncController",
    "GitSyncResult",
    "ImportExportError",
    "ImportPipeline",
    "OperationContext",
    "OperationError",
    "OperationKind",
    "OperationSummary",
    "PerFileError",
    "ProgressEvent",
    "RepositoryStateError",
    "Scanner",
    "SecurityValidationError",
    "TransferManager",
    "ValidationError",
    "format_dry_run_preview",
    "format_summary",
    "summary_to_json",
]
