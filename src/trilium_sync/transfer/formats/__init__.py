"""Format handlers binding the pipelines to one external convention each."""

from .directory import DirectoryExport, DirectoryImport, strip_export_header
from .git import GitExport, GitImport, GitSyncController
from .obsidian import ObsidianExport, ObsidianImport

IMPORTERS = {
    "directory": DirectoryImport,
    "obsidian": ObsidianImport,
    "git": GitImport,
}

EXPORTERS = {
    "directory": DirectoryExport,
    "obsidian": ObsidianExport,
    "git": GitExport,
}

__all__ = [
    "EXPORTERS",
    "IMPORTERS",
    "DirectoryExport",
    "DirectoryImport",
    "GitExport",
    "GitImport",
    "GitSyncController",
    "ObsidianExport",
    "ObsidianImport",
    "strip_export_header",
]
