"""Plain directory format.

Import keeps every accepted file: text formats become notes labelled
``source=directory`` and ``original-path``, binaries become attachments.
Export writes each note with a short header of HTML comments recording
where it came from; re-importing such a file drops that header again so a
round trip leaves the note body unchanged.
"""

from __future__ import annotations

import re

from ..exporter import ExportPipeline
from ..importer import ImportPipeline
from ..models import FileInfo

EXPORT_HEADER = re.compile(
    r"\A(?:<!-- (?:Source|Original path|Exported from Trilium on)\b[^\n]*-->\n)+\n?"
)


def strip_export_header(text: str) -> str:
    """Remove a provenance header written by ``DirectoryExport``."""
    return EXPORT_HEADER.sub("", text, count=1)


class DirectoryImport(ImportPipeline):
    source_name = "directory"
    path_label = "original-path"

    def preprocess_text(self, text: str, info: FileInfo) -> str:
        return strip_export_header(text)


class DirectoryExport(ExportPipeline):
    format_name = "directory"
