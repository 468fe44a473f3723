"""Trilium HTML to Markdown conversion using regex patterns."""

import html
import re

from .common import INTERNAL_LINK_PATTERN, ConversionResult


class HtmlToMarkdownParser:
    """Best-effort converter from Trilium note HTML to Markdown.

    Handles the subset of HTML Trilium's editor produces for ordinary text
    notes. Anything unrecognised is stripped to its text content and
    reported as a warning.

    Args:
        wikilinks: Render internal note links as ``[[label]]`` instead of
            ``[label](#root/id)``.
    """

    def __init__(self, wikilinks: bool = False):
        self.wikilinks = wikilinks
        self.warnings: list[str] = []
        self._code_blocks: list[str] = []

    def parse(self, html_text: str) -> ConversionResult:
        """
        Convert HTML to Markdown.

        Args:
            html_text: Note HTML

        Returns:
            ConversionResult with Markdown text and lossy-conversion warnings
        """
        self.warnings = []
        self._code_blocks = []
        self._detect_lossy_elements(html_text)

        text = html_text
        text = self._protect_code_blocks(text)
        text = self._convert_headings(text)
        text = self._convert_formatting(text)
        text = self._convert_links(text)
        text = self._convert_lists(text)
        text = self._convert_blocks(text)
        text = re.sub(r"<[^>]+>", "", text)
        text = html.unescape(text)
        text = self._restore_code_blocks(text)
        text = re.sub(r"[ \t]+\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text).strip()

        return ConversionResult(
            text=text,
            source_format="html",
            target_format="markdown",
            warnings=list(self.warnings),
        )

    def _detect_lossy_elements(self, text: str) -> None:
        if re.search(r"<table\b", text, re.IGNORECASE):
            self.warnings.append(
                "Tables are flattened to text - review the exported file."
            )
        if re.search(r"<(iframe|video|audio)\b", text, re.IGNORECASE):
            self.warnings.append("Embedded media was dropped.")

    def _protect_code_blocks(self, text: str) -> str:
        def _stash(match: re.Match) -> str:
            lang_match = re.search(
                r'class=["\'][^"\']*language-([\w+-]+)', match.group(0)
            )
            lang = lang_match.group(1) if lang_match else ""
            body = html.unescape(re.sub(r"<[^>]+>", "", match.group(1)))
            self._code_blocks.append(f"```{lang}\n{body.strip(chr(10))}\n```")
            return f"\n\n\x00CODE{len(self._code_blocks) - 1}\x00\n\n"

        text = re.sub(
            r"<pre[^>]*>\s*<code[^>]*>(.*?)</code>\s*</pre>",
            _stash,
            text,
            flags=re.IGNORECASE | re.DOTALL,
        )
        return re.sub(
            r"<pre[^>]*>(.*?)</pre>",
            _stash,
            text,
            flags=re.IGNORECASE | re.DOTALL,
        )

    def _restore_code_blocks(self, text: str) -> str:
        return re.sub(
            r"\x00CODE(\d+)\x00",
            lambda m: self._code_blocks[int(m.group(1))],
            text,
        )

    def _convert_headings(self, text: str) -> str:
        return re.sub(
            r"<h([1-6])[^>]*>(.*?)</h\1>",
            lambda m: "\n\n"
            + "#" * int(m.group(1))
            + " "
            + re.sub(r"<[^>]+>", "", m.group(2)).strip()
            + "\n\n",
            text,
            flags=re.IGNORECASE | re.DOTALL,
        )

    def _convert_formatting(self, text: str) -> str:
        flags = re.IGNORECASE | re.DOTALL
        text = re.sub(r"<(strong|b)\b[^>]*>(.*?)</\1>", r"**\2**", text, flags=flags)
        text = re.sub(r"<(em|i)\b[^>]*>(.*?)</\1>", r"*\2*", text, flags=flags)
        text = re.sub(r"<(s|del)\b[^>]*>(.*?)</\1>", r"~~\2~~", text, flags=flags)
        text = re.sub(r"<code[^>]*>(.*?)</code>", r"`\1`", text, flags=flags)
        text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
        return re.sub(r"<hr\s*/?>", "\n\n---\n\n", text, flags=re.IGNORECASE)

    def _convert_links(self, text: str) -> str:
        def _internal(match: re.Match) -> str:
            label = re.sub(r"<[^>]+>", "", match.group(2)).strip()
            if self.wikilinks:
                return f"[[{label}]]"
            return f"[{label}](#root/{match.group(1)})"

        text = INTERNAL_LINK_PATTERN.sub(_internal, text)
        text = re.sub(
            r'<a\b[^>]*href=["\']([^"\']+)["\'][^>]*>(.*?)</a>',
            r"[\2](\1)",
            text,
            flags=re.IGNORECASE | re.DOTALL,
        )

        def _image(match: re.Match) -> str:
            alt = re.search(r'alt=["\']([^"\']*)["\']', match.group(0))
            return f"![{alt.group(1) if alt else ''}]({match.group(1)})"

        return re.sub(
            r'<img\b[^>]*src=["\']([^"\']+)["\'][^>]*>',
            _image,
            text,
            flags=re.IGNORECASE,
        )

    def _convert_lists(self, text: str) -> str:
        def _list(match: re.Match) -> str:
            ordered = match.group(1).lower() == "ol"
            items = re.findall(
                r"<li[^>]*>(.*?)</li>", match.group(2), re.IGNORECASE | re.DOTALL
            )
            lines = []
            for n, item in enumerate(items, start=1):
                marker = f"{n}." if ordered else "-"
                body = re.sub(r"</?p[^>]*>", "", item).strip()
                lines.append(f"{marker} {body}")
            return "\n\n" + "\n".join(lines) + "\n\n"

        return re.sub(
            r"<(ul|ol)[^>]*>(.*?)</\1>",
            _list,
            text,
            flags=re.IGNORECASE | re.DOTALL,
        )

    def _convert_blocks(self, text: str) -> str:
        flags = re.IGNORECASE | re.DOTALL
        text = re.sub(
            r"<blockquote[^>]*>(.*?)</blockquote>",
            lambda m: "\n\n"
            + "\n".join(
                "> " + line
                for line in re.sub(r"<[^>]+>", "", m.group(1)).strip().splitlines()
            )
            + "\n\n",
            text,
            flags=flags,
        )
        text = re.sub(r"<p[^>]*>(.*?)</p>", r"\1\n\n", text, flags=flags)
        return re.sub(r"</(div|tr|table)>", "\n", text, flags=re.IGNORECASE)


def html_to_markdown(html_text: str, wikilinks: bool = False) -> ConversionResult:
    """
    Convert Trilium HTML to Markdown.

    Args:
        html_text: Note HTML
        wikilinks: Render internal links as ``[[label]]``

    Returns:
        ConversionResult with Markdown text and warnings
    """
    parser = HtmlToMarkdownParser(wikilinks=wikilinks)
    return parser.parse(html_text)
