"""Content conversion between Markdown and Trilium note HTML."""

from .common import (
    INTERNAL_LINK_PATTERN,
    ConversionResult,
    escape_html,
    internal_link,
    strip_tags,
)
from .html_to_markdown import HtmlToMarkdownParser, html_to_markdown
from .markdown_to_html import convert_with_warnings, markdown_to_html

__all__ = [
    "INTERNAL_LINK_PATTERN",
    "ConversionResult",
    "HtmlToMarkdownParser",
    "convert_with_warnings",
    "escape_html",
    "html_to_markdown",
    "internal_link",
    "markdown_to_html",
    "strip_tags",
]
