"""Directory-to-note hierarchy mapping.

``HierarchyMapper`` keeps the path -> note-id map for one run. In
preserve-structure mode it derives every directory referenced by the
scanned files, adds all of their ancestors (a directory holding only
sub-directories still gets a note) and creates folder notes shallowest
first, so a parent note always exists before anything is created inside
it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import PurePosixPath

from trilium_sync.converters import escape_html
from trilium_sync.core.async_utils import run_sync
from trilium_sync.core.client import EtapiClient

from .duplicates import DuplicateAction, DuplicateResolver
from .errors import ErrorCode
from .models import FileInfo
from .progress import ErrorCollector

logger = logging.getLogger(__name__)

DIRECTORY_LABEL = "directory-path"


def collect_directories(files: Iterable[FileInfo]) -> list[str]:
    """Return every directory needed by ``files``, shallowest first.

    Ancestors are included even when they hold no files directly. Ties at
    the same depth are ordered by path.
    """
    directories: set[str] = set()
    for info in files:
        parent = PurePosixPath(info.relative_path).parent
        while str(parent) not in ("", "."):
            directories.add(str(parent))
            parent = parent.parent
    return sorted(directories, key=lambda d: (d.count("/"), d))


def folder_note_content(name: str, path: str) -> str:
    return (
        f"<h1>{escape_html(name)}</h1>\n"
        f"<p>Directory imported from: <code>{escape_html(path)}</code></p>"
    )


class HierarchyMapper:
    """Build and query the directory path -> note id map.

    Args:
        client: ETAPI client.
        resolver: Duplicate resolver (lookup label ``directory-path``).
        root_note_id: Note that receives top-level entries.
        source: Value written to each folder note's ``source`` label.
        collector: Receives directory creation failures.
        dry_run: Assign placeholder ids instead of touching the store.
    """

    def __init__(
        self,
        client: EtapiClient,
        resolver: DuplicateResolver,
        root_note_id: str,
        source: str,
        collector: ErrorCollector,
        dry_run: bool = False,
    ) -> None:
        self.client = client
        self.resolver = resolver
        self.root_note_id = root_note_id
        self.source = source
        self.collector = collector
        self.dry_run = dry_run
        self.directory_map: dict[str, str] = {}
        self.created: list[str] = []

    def parent_for(self, relative_path: str) -> str:
        """Note id that should own ``relative_path``.

        Falls back to the nearest mapped ancestor, then the root, so a
        failed directory note does not strand the files inside it.
        """
        parent = PurePosixPath(relative_path).parent
        while str(parent) not in ("", "."):
            note_id = self.directory_map.get(str(parent))
            if note_id:
                return note_id
            parent = parent.parent
        return self.root_note_id

    async def build(self, files: Iterable[FileInfo]) -> dict[str, str]:
        """Create or resolve one folder note per directory, in depth order."""
        for directory in collect_directories(files):
            if self.dry_run:
                self.directory_map[directory] = f"dry-run:{directory}"
                continue
            try:
                self.directory_map[directory] = await self._ensure(directory)
            except Exception as exc:
                self.collector.add_exception(
                    exc, ErrorCode.DIRECTORY_ERROR, path=directory
                )
        return self.directory_map

    async def _ensure(self, directory: str) -> str:
        decision = await self.resolver.resolve(DIRECTORY_LABEL, directory)
        if decision.action != DuplicateAction.CREATE and decision.existing_id:
            # Folder notes carry no user content; reuse as is
            logger.debug("Reusing folder note %s for %s", decision.existing_id, directory)
            return decision.existing_id

        name = PurePosixPath(directory).name
        note_id = await run_sync(
            self.client.create_note,
            self.parent_for(directory),
            name,
            folder_note_content(name, directory),
            "text",
            "text/html",
            [
                {"type": "label", "name": "source", "value": self.source},
                {"type": "label", "name": DIRECTORY_LABEL, "value": directory},
                {"type": "label", "name": "type", "value": "folder"},
            ],
        )
        self.created.append(note_id)
        logger.debug("Created folder note %s for %s", note_id, directory)
        return note_id
