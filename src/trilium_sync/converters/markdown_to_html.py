"""Markdown to HTML rendering for Trilium text notes, using mistune."""

import re

import mistune

from .common import ConversionResult


def markdown_to_html(markdown_text: str) -> str:
    """
    Render Markdown as the HTML body of a Trilium text note.

    Wikilinks (``[[target]]``) are not Markdown syntax and pass through as
    literal text, so a later wikilink pass can still find them.

    Args:
        markdown_text: Markdown formatted text

    Returns:
        HTML string
    """
    markdown = mistune.create_markdown(
        escape=False,
        plugins=["table", "strikethrough", "task_lists"],
    )
    result: str = markdown(markdown_text)  # type: ignore[assignment]
    return result.rstrip("\n")


def convert_with_warnings(markdown_text: str) -> ConversionResult:
    """
    Render Markdown and report constructs Trilium displays differently.

    Args:
        markdown_text: Markdown formatted text

    Returns:
        ConversionResult with HTML text and any warnings
    """
    warnings = []

    if re.search(r"^\$\$", markdown_text, re.MULTILINE):
        warnings.append(
            "Math blocks detected - they are kept as plain text."
        )
    if re.search(r"^```mermaid", markdown_text, re.MULTILINE):
        warnings.append(
            "Mermaid diagram detected - Trilium renders it as a code block."
        )

    return ConversionResult(
        text=markdown_to_html(markdown_text),
        source_format="markdown",
        target_format="html",
        warnings=warnings,
    )
