"""Tests for transfer/classifier.py: content detection order and parsing."""

import pytest

from trilium_sync.transfer.classifier import (
    detect_content_type,
    is_binary_sample,
    parse_content,
    split_front_matter,
)
from trilium_sync.transfer.models import ContentType, FileInfo


def _info(name: str) -> FileInfo:
    extension = name.rsplit(".", 1)[-1] if "." in name else ""
    return FileInfo(relative_path=name, absolute_path=f"/src/{name}", name=name, extension=extension)


class TestDetectContentType:
    """The first matching rule wins."""

    def test_json_beats_extension(self):
        assert detect_content_type(b'{"a": 1}', "txt") == ContentType.JSON

    def test_json_array(self):
        assert detect_content_type(b"[1, 2, 3]", "data") == ContentType.JSON

    def test_invalid_json_falls_through(self):
        assert detect_content_type(b"{not json", "txt") == ContentType.TEXT

    def test_html_beats_markdown_extension(self):
        assert detect_content_type(b"<!DOCTYPE html><p>x</p>", "md") == ContentType.HTML

    def test_html_tag(self):
        assert detect_content_type(b"text with <div class='x'>", "txt") == ContentType.HTML

    def test_markdown_heading_in_txt(self):
        assert detect_content_type(b"# Title\n\nbody", "txt") == ContentType.MARKDOWN

    def test_markdown_link(self):
        assert detect_content_type(b"see [docs](http://x)", "") == ContentType.MARKDOWN

    def test_extension_table(self):
        assert detect_content_type(b"plain words", "md") == ContentType.MARKDOWN
        assert detect_content_type(b"plain words", "log") == ContentType.TEXT

    def test_binary_extension(self):
        assert detect_content_type(b"GIF89a", "gif") == ContentType.BINARY

    def test_nul_byte_is_binary(self):
        assert detect_content_type(b"\x89PNG\r\n\x1a\n\x00\x00", "dat") == ContentType.BINARY

    def test_unknown_printable_is_text(self):
        assert detect_content_type(b"just some words", "xyz") == ContentType.TEXT

    def test_empty_file_is_text(self):
        assert detect_content_type(b"", "xyz") == ContentType.TEXT


class TestIsBinarySample:
    def test_low_printable_ratio(self):
        assert is_binary_sample(bytes(range(1, 32)) * 4)

    def test_utf8_text_is_not_binary(self):
        assert not is_binary_sample("Grüße, ça va? 日本語".encode("utf-8"))


class TestFrontMatter:
    def test_split(self):
        data, body = split_front_matter("---\ntitle: T\ntags: [a]\n---\nBody\n")
        assert data == {"title": "T", "tags": ["a"]}
        assert body == "Body\n"

    def test_malformed_yaml_kept_as_text(self):
        text = "---\ntitle: [unclosed\n---\nBody"
        assert split_front_matter(text) == ({}, text)

    def test_non_mapping_ignored(self):
        text = "---\n- a\n---\nBody"
        assert split_front_matter(text) == ({}, text)

    def test_no_front_matter(self):
        assert split_front_matter("# Title") == ({}, "# Title")


class TestParseMarkdown:
    def test_title_from_front_matter(self):
        content = parse_content(
            "---\ntitle: From FM\n---\n# Heading\n", _info("n.md"), ContentType.MARKDOWN
        )
        assert content.title == "From FM"
        assert content.body == "# Heading\n"

    def test_title_from_heading_then_stem(self):
        assert parse_content("# Heading\ntext", _info("n.md"), ContentType.MARKDOWN).title == "Heading"
        assert parse_content("text", _info("my-note.md"), ContentType.MARKDOWN).title == "my-note"

    def test_links_tags_attachments(self):
        text = (
            "---\ntags: [alpha, '#beta']\n---\n"
            "Intro #gamma and [site](http://x.org) and [[Other Note|alias]]\n"
            "![img](pics/a.png) ![[diagram.png]]\n"
            "`#notatag` [[Other Note]]\n"
            "```\n#nope [[ignored]]\n```\n"
        )
        content = parse_content(text, _info("n.md"), ContentType.MARKDOWN)
        assert content.tags == ["alpha", "beta", "gamma"]
        assert content.links == ["http://x.org", "Other Note"]
        assert content.attachments == ["pics/a.png", "diagram.png"]

    def test_heading_count(self):
        content = parse_content("# A\n## B\ntext", _info("n.md"), ContentType.MARKDOWN)
        assert content.metadata.heading_count == 2


class TestParseOther:
    def test_html(self):
        html = (
            "<html><head><title>Page &amp; Co</title>"
            '<meta name="keywords" content="x, y"></head>'
            '<body><a href="other.html">o</a><img src="i.png"></body></html>'
        )
        content = parse_content(html, _info("p.html"), ContentType.HTML)
        assert content.title == "Page & Co"
        assert content.tags == ["x", "y"]
        assert content.links == ["other.html"]
        assert content.attachments == ["i.png"]
        assert content.metadata.html_meta["keywords"] == "x, y"

    def test_html_falls_back_to_h1_then_stem(self):
        assert parse_content("<h1>Head</h1>", _info("p.html"), ContentType.HTML).title == "Head"
        assert parse_content("<p>x</p>", _info("p.html"), ContentType.HTML).title == "p"

    def test_json_title_key(self):
        content = parse_content('{"name": "Config", "v": 1}', _info("c.json"), ContentType.JSON)
        assert content.title == "Config"
        assert content.metadata.json_keys == ["name", "v"]

    def test_json_without_title(self):
        assert parse_content("[1]", _info("c.json"), ContentType.JSON).title == "c"

    def test_text(self):
        content = parse_content("hello", _info("t.txt"), ContentType.TEXT)
        assert (content.title, content.body) == ("t", "hello")

    def test_binary_rejected(self):
        with pytest.raises(ValueError, match="binary"):
            parse_content("", _info("a.png"), ContentType.BINARY)
