"""Unified configuration schema for trilium_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the ETAPI connection, logging, and transfer defaults, plus
the per-operation option models consumed by the import/export handlers.

Usage:
    from trilium_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import AliasChoices, BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DuplicateHandling(str, Enum):
    """What to do when the target of a write already exists."""

    SKIP = "skip"
    OVERWRITE = "overwrite"


class SyncDirection(str, Enum):
    """Which way a git synchronisation moves data."""

    IMPORT = "import"
    EXPORT = "export"
    BIDIRECTIONAL = "bidirectional"


class ConflictResolution(str, Enum):
    """How a path touched by both directions of a sync is reported."""

    MANUAL = "manual"
    OURS = "ours"
    THEIRS = "theirs"


MAX_FILE_SIZE = 500 * 1024 * 1024


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EtapiConfig(BaseModel):
    """Trilium ETAPI connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="Trilium server URL")
    token: str | None = Field(default=None, description="ETAPI token")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    request_timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Read timeout for ETAPI requests in seconds",
    )
    cache_ttl: float = Field(
        default=30.0,
        ge=0,
        description="Seconds a cached note or attachment stays valid",
    )
    cache_size: int = Field(
        default=256,
        ge=1,
        description="Maximum number of cached entries",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


class TransferConfig(BaseModel):
    """Defaults shared by every import/export operation."""

    temp_dir: str | None = Field(
        default=None,
        description="Parent directory for per-operation scratch space",
    )
    max_parallel_reads: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Concurrent file reads during the scan phase",
    )
    keep_temp: bool = Field(
        default=False,
        description="Keep the operation scratch directory after completion",
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Operation options
# ---------------------------------------------------------------------------


class ImportOptions(BaseModel):
    """Options for importing a plain directory tree."""

    source_path: str = Field(
        validation_alias=AliasChoices("source_path", "sourcePath"),
        description="Directory to import",
    )
    include: list[str] = Field(
        default_factory=lambda: ["**/*"],
        description="Glob patterns a file must match",
    )
    exclude: list[str] = Field(
        default_factory=lambda: ["**/node_modules/**", "**/.git/**"],
        description="Glob patterns that always exclude a file",
    )
    max_depth: int = Field(default=10, ge=0)
    include_hidden: bool = False
    max_file_size: int = Field(default=MAX_FILE_SIZE, ge=0)
    preserve_structure: bool = True
    duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP
    dry_run: bool = False
    create_index: bool = False
    index_file_name: str = "index.md"
    parent_note_id: str = "root"
    render_markdown: bool = Field(
        default=False,
        description="Render markdown to HTML before storing it",
    )
    max_parallel_reads: int = Field(default=8, ge=1, le=64)

    model_config = {"frozen": True, "populate_by_name": True}


class ObsidianImportOptions(ImportOptions):
    """Options for importing an Obsidian vault."""

    source_path: str = Field(
        validation_alias=AliasChoices(
            "source_path", "vault_path", "vaultPath"
        ),
        description="Vault root directory",
    )
    include: list[str] = Field(default_factory=lambda: ["**/*"])
    exclude: list[str] = Field(default_factory=list)
    process_front_matter: bool = True
    convert_wikilinks: bool = True
    attachment_folder: str = "attachments"
    templates_folder: str = "templates"
    include_templates: bool = False
    ignore_folders: list[str] = Field(
        default_factory=lambda: [".obsidian", ".trash"]
    )


class ExportOptions(BaseModel):
    """Options for exporting notes to a directory."""

    output_path: str = Field(
        validation_alias=AliasChoices("output_path", "outputPath"),
        description="Directory that receives exported files",
    )
    preserve_structure: bool = True
    include_attachments: bool = True
    create_index: bool = False
    index_file_name: str = "index.md"
    dry_run: bool = False
    overwrite: bool = True
    max_depth: int = Field(default=10, ge=0)

    model_config = {"frozen": True, "populate_by_name": True}


class GitSyncOptions(BaseModel):
    """Options for synchronising notes with a git working tree."""

    repository_path: str = Field(
        validation_alias=AliasChoices(
            "repository_path", "repositoryPath", "source_path"
        ),
        description="Root of the git working tree",
    )
    branch: str | None = None
    remote: str = "origin"
    sync_direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    conflict_resolution: ConflictResolution = ConflictResolution.MANUAL
    author_name: str | None = None
    author_email: str | None = None
    commit_message: str = "Trilium sync: {timestamp}"
    pull_before_import: bool = False
    push_after_export: bool = False
    note_ids: list[str] = Field(default_factory=list)
    parent_note_id: str = "root"
    duplicate_handling: DuplicateHandling = DuplicateHandling.OVERWRITE
    include: list[str] = Field(
        default_factory=lambda: [
            "**/*.md",
            "**/*.txt",
            "**/*.html",
            "**/*.json",
        ]
    )
    exclude: list[str] = Field(
        default_factory=lambda: [".git/**", "**/node_modules/**"]
    )
    max_depth: int = Field(default=10, ge=0)
    preserve_structure: bool = True
    dry_run: bool = False

    model_config = {"frozen": True, "populate_by_name": True}

    def to_import_options(self) -> ImportOptions:
        """Derive the import half of a sync."""
        return ImportOptions(
            source_path=self.repository_path,
            include=list(self.include),
            exclude=list(self.exclude),
            max_depth=self.max_depth,
            preserve_structure=self.preserve_structure,
            duplicate_handling=self.duplicate_handling,
            dry_run=self.dry_run,
            parent_note_id=self.parent_note_id,
        )

    def to_export_options(self) -> ExportOptions:
        """Derive the export half of a sync."""
        return ExportOptions(
            output_path=self.repository_path,
            preserve_structure=self.preserve_structure,
            dry_run=self.dry_run,
            max_depth=self.max_depth,
        )


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    etapi: EtapiConfig = Field(default_factory=EtapiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)

