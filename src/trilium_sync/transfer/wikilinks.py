"""Wikilink rewriting.

Import side: once every note of a batch exists, ``WikilinkResolver``
rewrites ``[[target]]`` and ``[[target|label]]`` into Trilium internal
links. Targets resolve by exact relative path (with or without ``.md``),
then by file name, then case-insensitively. Unresolved links are left
as written, and a note whose content does not change gets no write.

Export side: ``to_wikilinks`` turns internal link anchors back into
``[[title]]`` references.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from pathlib import PurePosixPath

from trilium_sync.converters import INTERNAL_LINK_PATTERN, internal_link, strip_tags
from trilium_sync.core.async_utils import run_sync
from trilium_sync.core.client import EtapiClient

from .errors import ErrorCode
from .models import ContentType
from .progress import ErrorCollector

logger = logging.getLogger(__name__)

# Embeds (![[x]]) are attachments, not links
WIKILINK_PATTERN = re.compile(r"(?<!!)\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")

_MARKDOWN_SUFFIXES = (".md", ".markdown")


def _strip_suffix(path: str) -> str:
    for suffix in _MARKDOWN_SUFFIXES:
        if path.lower().endswith(suffix):
            return path[: -len(suffix)]
    return path


class WikilinkResolver:
    """Resolve wikilink targets against one batch's path -> note id map.

    Args:
        note_ids: Relative path -> note id for every note in the batch.
    """

    def __init__(self, note_ids: dict[str, str]) -> None:
        self._exact: dict[str, str] = {}
        self._by_name: dict[str, str] = {}
        # Sorted so the shallowest path wins a name clash
        for path in sorted(note_ids, key=lambda p: (p.count("/"), p)):
            note_id = note_ids[path]
            if not note_id:
                continue
            for key in (path, _strip_suffix(path)):
                self._exact.setdefault(key, note_id)
            name = PurePosixPath(path).name
            for key in (name, _strip_suffix(name)):
                self._by_name.setdefault(key, note_id)
        self._exact_folded = {k.lower(): v for k, v in reversed(self._exact.items())}
        self._by_name_folded = {
            k.lower(): v for k, v in reversed(self._by_name.items())
        }

    def resolve(self, target: str) -> str | None:
        """Return the note id for a wikilink target, or ``None``."""
        target = target.split("#", 1)[0].strip().lstrip("/")
        if not target:
            return None
        candidates = (target, f"{target}.md")
        for key in candidates:
            if key in self._exact:
                return self._exact[key]
        for key in candidates:
            if key in self._by_name:
                return self._by_name[key]
        for key in candidates:
            folded = key.lower()
            if folded in self._exact_folded:
                return self._exact_folded[folded]
            if folded in self._by_name_folded:
                return self._by_name_folded[folded]
        return None

    def rewrite(self, content: str) -> tuple[str, int]:
        """Rewrite resolvable wikilinks in ``content``.

        Returns:
            The new content and the number of links rewritten.
        """
        count = 0

        def _replace(match: re.Match) -> str:
            nonlocal count
            target = match.group(1)
            note_id = self.resolve(target)
            if note_id is None:
                return match.group(0)
            count += 1
            label = (match.group(2) or target).strip()
            return internal_link(note_id, label)

        return WIKILINK_PATTERN.sub(_replace, content), count

    async def apply(
        self,
        client: EtapiClient,
        notes: Iterable[tuple[str, str, str]],
        collector: ErrorCollector,
    ) -> list[str]:
        """Rewrite and store every note whose links changed.

        Args:
            client: ETAPI client.
            notes: ``(note_id, relative_path, content)`` triples.
            collector: Receives a warning per failed update.

        Returns:
            Ids of the notes that were updated.
        """
        updated = []
        for note_id, path, content in notes:
            new_content, count = self.rewrite(content)
            if not count:
                continue
            try:
                await run_sync(client.update_note_content, note_id, new_content)
            except Exception as exc:
                collector.add_warning(
                    ErrorCode.IMPORT_ERROR,
                    f"Could not rewrite links in {path}: {exc}",
                    path=path,
                )
                continue
            logger.debug("Rewrote %d wikilinks in %s", count, path)
            updated.append(note_id)
        return updated


def wikilink_candidates(imported) -> list[tuple[str, str, str]]:
    """Pick the markdown notes of a batch for the wikilink pass."""
    return [
        (n.note_id, n.relative_path, n.content)
        for n in imported
        if n.content_type == ContentType.MARKDOWN
    ]


def to_wikilinks(content: str, title_for: Callable[[str], str | None]) -> str:
    """Replace internal link anchors with ``[[title]]`` references.

    ``title_for`` maps a note id to its title; when it returns ``None``
    the anchor's own text is used. A label that differs from the title is
    kept as ``[[title|label]]``.
    """

    def _replace(match: re.Match) -> str:
        label = strip_tags(match.group(2)).strip()
        title = title_for(match.group(1)) or label
        if label and label != title:
            return f"[[{title}|{label}]]"
        return f"[[{title}]]"

    return INTERNAL_LINK_PATTERN.sub(_replace, content)
