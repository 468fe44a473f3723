"""Content classification and parsing.

``detect_content_type`` labels a file from a byte sample plus its
extension. Rules are tried in a fixed order and the first match wins:

1. the sample parses as JSON                      -> ``json``
2. the sample carries a doctype or HTML tag       -> ``html``
3. the sample carries markdown heading/fence/link -> ``markdown``
4. the extension is in the lookup table           -> table value
5. NUL byte or printable ratio below 0.8          -> ``binary``
   otherwise                                      -> ``text``

Ambiguous content therefore resolves to the earliest rule: a ``.txt`` file
holding ``{"a": 1}`` is JSON, and a ``.md`` file whose sample starts with
``<!DOCTYPE html>`` is HTML.

``parse_content`` turns decoded text into a ``ContentInfo`` with the
title, front matter, tags, links and attachment references the import
pipeline needs.
"""

from __future__ import annotations

import html
import json
import logging
import re
from typing import Any

import yaml

from .models import ContentInfo, ContentMetadata, ContentType, FileInfo

logger = logging.getLogger(__name__)

PRINTABLE_THRESHOLD = 0.8

_EXTENSION_TYPES: dict[str, ContentType] = {
    "md": ContentType.MARKDOWN,
    "markdown": ContentType.MARKDOWN,
    "mdown": ContentType.MARKDOWN,
    "mkd": ContentType.MARKDOWN,
    "html": ContentType.HTML,
    "htm": ContentType.HTML,
    "json": ContentType.JSON,
    "jsonl": ContentType.JSON,
    "txt": ContentType.TEXT,
    "text": ContentType.TEXT,
    "log": ContentType.TEXT,
    "csv": ContentType.TEXT,
}

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        "png", "jpg", "jpeg", "gif", "bmp", "webp", "svg", "ico", "tiff",
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "odt",
        "zip", "gz", "tar", "7z", "rar",
        "mp3", "wav", "ogg", "flac", "m4a",
        "mp4", "mov", "avi", "mkv", "webm",
    }
)

_HTML_MARKERS = re.compile(r"<!DOCTYPE|<html|<[a-z][a-z0-9]*[\s/>]", re.IGNORECASE)
_MARKDOWN_MARKERS = re.compile(
    r"^#{1,6} |^---\s*$|^```|\[[^\]]*\]\([^)]*\)", re.MULTILINE
)
_PRINTABLE = re.compile(r"[\x20-\x7E\t\n\r]")

_FRONT_MATTER = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)
_HEADING_1 = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)
_ANY_HEADING = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)
_MD_LINK = re.compile(r"(?<!!)\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_MD_IMAGE = re.compile(r"!\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_WIKILINK = re.compile(r"(?<!!)\[\[([^\]|#]+)(?:#[^\]|]*)?(?:\|[^\]]+)?\]\]")
_EMBED = re.compile(r"!\[\[([^\]|]+)(?:\|[^\]]+)?\]\]")
_INLINE_TAG = re.compile(r"(?:(?<=\s)|^)#([A-Za-z][\w/-]*)")
_FENCED_BLOCK = re.compile(r"^```.*?^```", re.MULTILINE | re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]*`")

_HTML_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_HTML_H1 = re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)
_HTML_HREF = re.compile(r"<a\b[^>]*href=[\"']([^\"']+)[\"']", re.IGNORECASE)
_HTML_IMG = re.compile(r"<img\b[^>]*src=[\"']([^\"']+)[\"']", re.IGNORECASE)
_HTML_META = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_ATTR = re.compile(r"(\w+)=[\"']([^\"']*)[\"']")


# ------------------------------------------------------------------
# Detection
# ------------------------------------------------------------------


def _looks_like_json(text: str) -> bool:
    stripped = text.strip()
    if not stripped or stripped[0] not in "{[":
        return False
    try:
        json.loads(stripped)
    except ValueError:
        return False
    return True


def is_binary_sample(sample: bytes) -> bool:
    """NUL byte or printable-character ratio below the threshold."""
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    text = sample.decode("utf-8", errors="replace")
    # Decoded non-ASCII letters count as printable; replacement chars do not
    printable = sum(
        1
        for ch in text
        if _PRINTABLE.match(ch) or (ord(ch) > 0x7F and ch != "\ufffd")
    )
    return printable / len(text) < PRINTABLE_THRESHOLD


def detect_content_type(sample: bytes, extension: str) -> ContentType:
    """Classify a file from its first bytes and extension.

    Args:
        sample: Up to the first 1024 bytes of the file.
        extension: Lowercase extension without the dot.

    Returns:
        The first matching ``ContentType`` (see module docstring).
    """
    text = sample.decode("utf-8", errors="replace") if b"\x00" not in sample else ""

    if text and _looks_like_json(text):
        return ContentType.JSON
    if text and _HTML_MARKERS.search(text):
        return ContentType.HTML
    if text and _MARKDOWN_MARKERS.search(text):
        return ContentType.MARKDOWN

    ext = extension.lower().lstrip(".")
    if ext in _EXTENSION_TYPES:
        return _EXTENSION_TYPES[ext]
    if ext in BINARY_EXTENSIONS:
        return ContentType.BINARY

    if is_binary_sample(sample):
        return ContentType.BINARY
    return ContentType.TEXT


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Separate a leading ``---`` YAML block from the body.

    Malformed YAML is treated as no front matter; the text is returned
    unchanged so nothing is lost.
    """
    match = _FRONT_MATTER.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.debug("Ignoring malformed front matter: %s", exc)
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end() :]


def _unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _front_matter_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [t.lstrip("#") for t in re.split(r"[,\s]+", value) if t]
    if isinstance(value, (list, tuple)):
        return [str(t).lstrip("#") for t in value if t is not None]
    return [str(value)]


def _parse_markdown(text: str, stem: str) -> ContentInfo:
    front_matter, body = split_front_matter(text)

    title = front_matter.get("title")
    if not title:
        heading = _HEADING_1.search(body)
        title = heading.group(1).strip() if heading else stem

    # Tags and links inside code are not real references
    prose = _INLINE_CODE.sub("", _FENCED_BLOCK.sub("", body))

    links = [m.group(1) for m in _MD_LINK.finditer(prose)]
    links += [m.group(1).strip() for m in _WIKILINK.finditer(prose)]
    attachments = [m.group(1) for m in _MD_IMAGE.finditer(prose)]
    attachments += [m.group(1).strip() for m in _EMBED.finditer(prose)]

    tags = _front_matter_tags(front_matter.get("tags"))
    tags += [m.group(1) for m in _INLINE_TAG.finditer(prose)]

    return ContentInfo(
        title=str(title),
        body=body,
        type=ContentType.MARKDOWN,
        front_matter=front_matter,
        tags=_unique(tags),
        links=_unique(links),
        attachments=_unique(attachments),
        metadata=ContentMetadata(heading_count=len(_ANY_HEADING.findall(prose))),
    )


def _parse_html(text: str, stem: str) -> ContentInfo:
    title_match = _HTML_TITLE.search(text) or _HTML_H1.search(text)
    title = (
        html.unescape(re.sub(r"<[^>]+>", "", title_match.group(1))).strip()
        if title_match
        else ""
    )

    meta: dict[str, str] = {}
    for tag in _HTML_META.findall(text):
        attrs = dict(_ATTR.findall(tag))
        name = attrs.get("name") or attrs.get("property")
        if name and "content" in attrs:
            meta[name] = attrs["content"]

    keywords = meta.get("keywords", "")
    return ContentInfo(
        title=title or stem,
        body=text,
        type=ContentType.HTML,
        tags=_unique([k.strip() for k in keywords.split(",")]),
        links=_unique(_HTML_HREF.findall(text)),
        attachments=_unique(_HTML_IMG.findall(text)),
        metadata=ContentMetadata(html_meta=meta),
    )


def _parse_json(text: str, stem: str) -> ContentInfo:
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    title = stem
    keys: list[str] = []
    if isinstance(data, dict):
        keys = [str(k) for k in data]
        for key in ("title", "name"):
            if isinstance(data.get(key), str) and data[key].strip():
                title = data[key].strip()
                break
    return ContentInfo(
        title=title,
        body=text,
        type=ContentType.JSON,
        metadata=ContentMetadata(json_keys=keys),
    )


def parse_content(
    text: str, file_info: FileInfo, content_type: ContentType
) -> ContentInfo:
    """Parse decoded file text according to its classified type.

    Args:
        text: Decoded file content.
        file_info: The scanned file (used for the fallback title).
        content_type: Result of ``detect_content_type``.

    Returns:
        A ``ContentInfo`` for text types.

    Raises:
        ValueError: If called for binary content.
    """
    stem = file_info.stem
    if content_type == ContentType.MARKDOWN:
        return _parse_markdown(text, stem)
    if content_type == ContentType.HTML:
        return _parse_html(text, stem)
    if content_type == ContentType.JSON:
        return _parse_json(text, stem)
    if content_type == ContentType.TEXT:
        return ContentInfo(title=stem, body=text, type=ContentType.TEXT)
    raise ValueError(f"Cannot parse binary content: {file_info.relative_path}")
