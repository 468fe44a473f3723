"""Common types and utilities for note content conversion."""

import html
import re
from dataclasses import dataclass, field

# =============================================================================
# Trilium internal links
# =============================================================================
#
# Trilium text notes link to each other with anchors whose href is a note
# path fragment:  <a href="#root/abc123">Title</a>  or  <a href="#abc123">.
# The last path segment is the target note id.
# =============================================================================

INTERNAL_LINK_PATTERN = re.compile(
    r'<a\b[^>]*href=["\']#(?:root/)?(?:[\w]+/)*([\w]+)["\'][^>]*>(.*?)</a>',
    re.IGNORECASE | re.DOTALL,
)

_TAG_PATTERN = re.compile(r"<[^>]+>")


@dataclass
class ConversionResult:
    """Result of a content conversion with lossy-conversion warnings."""

    text: str
    source_format: str
    target_format: str
    warnings: list[str] = field(default_factory=list)


def escape_html(text: str) -> str:
    """Escape text for inclusion inside an HTML element."""
    return html.escape(text, quote=True)


def strip_tags(markup: str) -> str:
    """Drop every tag and unescape entities."""
    return html.unescape(_TAG_PATTERN.sub("", markup))


def internal_link(note_id: str, label: str) -> str:
    """Render a Trilium internal link anchor."""
    return f'<a href="#root/{note_id}">{escape_html(label)}</a>'
