"""Obsidian vault format.

Import:

- skips the vault's configuration and trash folders (``ignore_folders``)
  and the templates folder unless ``include_templates`` is set;
- writes front matter keys as ``obsidian-{key}`` labels next to ``tag``,
  ``source=obsidian`` and ``original-path``;
- attaches each binary to the first note that references it (by
  ``[[name]]``, ``[[stem]]``, ``](name)`` or ``](path)``), falling back to
  the folder note or the import root;
- rewrites ``[[wikilinks]]`` once the whole vault exists.

Export writes markdown with YAML front matter rebuilt from the
``obsidian-*`` labels, tags and dates, adds a ``# title`` heading when the
body has none, and turns internal links back into ``[[title]]``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import yaml

from trilium_sync.config_schema import ObsidianImportOptions
from trilium_sync.converters import html_to_markdown
from trilium_sync.core.models import Note

from ..exporter import ExportPipeline, sanitize_file_name
from ..importer import ImportPipeline, PreparedFile
from ..models import ContentInfo, FileInfo
from ..wikilinks import WikilinkResolver, to_wikilinks, wikilink_candidates

logger = logging.getLogger(__name__)

FRONT_MATTER_PREFIX = "obsidian-"

_HTML_BLOCK = re.compile(
    r"<(p|div|h[1-6]|ul|ol|li|br|pre|table|blockquote)\b", re.IGNORECASE
)
_LEADING_H1 = re.compile(r"\A\s*# \S")


def _in_folder(relative_path: str, folder: str) -> bool:
    folder = folder.strip("/")
    return bool(folder) and (
        relative_path == folder or relative_path.startswith(folder + "/")
    )


class ObsidianImport(ImportPipeline):
    """Import an Obsidian vault."""

    source_name = "obsidian"
    path_label = "original-path"
    options: ObsidianImportOptions

    def filter_files(self, files: list[FileInfo]) -> list[FileInfo]:
        kept = []
        for info in files:
            parts = info.relative_path.split("/")[:-1]
            if any(part in self.options.ignore_folders for part in parts):
                continue
            if not self.options.include_templates and _in_folder(
                info.relative_path, self.options.templates_folder
            ):
                continue
            kept.append(info)
        return kept

    def order_files(self, prepared: list[PreparedFile]) -> list[PreparedFile]:
        # Notes first, so attachments can find the note that references them
        return sorted(
            prepared,
            key=lambda p: (p.is_binary, p.info.depth, p.info.relative_path),
        )

    def build_labels(
        self, info: FileInfo, content: ContentInfo
    ) -> list[dict[str, Any]]:
        labels = [
            {"type": "label", "name": "source", "value": self.source_name},
            {"type": "label", "name": self.path_label, "value": info.relative_path},
            {"type": "label", "name": "original-name", "value": info.name},
        ]
        for tag in content.tags:
            labels.append({"type": "label", "name": "tag", "value": tag})
        if not self.options.process_front_matter:
            return labels
        for key, value in content.front_matter.items():
            if key in ("title", "tags"):
                continue
            if not isinstance(value, str):
                value = json.dumps(value, default=str, ensure_ascii=False)
            labels.append(
                {
                    "type": "label",
                    "name": f"{FRONT_MATTER_PREFIX}{key}",
                    "value": value,
                }
            )
        return labels

    async def attachment_parent(self, info: FileInfo) -> str:
        needles = (
            f"[[{info.name}]]",
            f"[[{info.name}|",
            f"[[{info.stem}]]",
            f"[[{info.stem}|",
            f"]({info.name})",
            f"]({info.relative_path})",
            f"]({self.options.attachment_folder.strip('/')}/{info.name})",
        )
        for note in self.sources:
            if any(needle in note.source_text for needle in needles):
                return note.note_id
        return self.parent_for(info)

    async def after_import(self) -> None:
        if not self.options.convert_wikilinks:
            return
        resolver = WikilinkResolver(self.note_ids)
        updated = await resolver.apply(
            self.client, wikilink_candidates(self.imported), self.collector
        )
        if updated:
            logger.info("Rewrote wikilinks in %d notes", len(updated))


class ObsidianExport(ExportPipeline):
    """Export notes as an Obsidian vault."""

    format_name = "obsidian"

    def file_name(self, note: Note, content: str) -> str:
        return f"{sanitize_file_name(note.title, self.file_name_pattern)}.md"

    async def convert_note(self, note: Note, content: str, entry: FileInfo) -> str:
        body = to_wikilinks(content, self.title_for)
        if _HTML_BLOCK.search(body):
            body = html_to_markdown(body, wikilinks=True).text
        if not _LEADING_H1.match(body):
            body = f"# {note.title}\n\n{body.lstrip()}"
        return render_front_matter(self.front_matter(note)) + body.rstrip() + "\n"

    def front_matter(self, note: Note) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for attribute in note.attributes:
            if attribute.type != "label":
                continue
            if attribute.name.startswith(FRONT_MATTER_PREFIX):
                key = attribute.name[len(FRONT_MATTER_PREFIX) :]
                data[key] = _decode_value(attribute.value)
        tags = note.labels("tag")
        if tags:
            data["tags"] = tags
        if note.date_created:
            data["created"] = note.date_created
        if note.date_modified:
            data["modified"] = note.date_modified
        return data


def render_front_matter(data: dict[str, Any]) -> str:
    """Serialize a ``---`` delimited YAML block; empty data gives ``""``."""
    if not data:
        return ""
    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    return f"---\n{dumped}---\n\n"


def _decode_value(value: str) -> Any:
    # Lists and mappings were stored as JSON on import
    if value[:1] in ("[", "{"):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value
