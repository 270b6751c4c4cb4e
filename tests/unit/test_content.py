"""
Tests for HTML conversion, hashing and the line differ
"""

from models.base import ContentType, DiffType
from models.monitor import Monitor
from monitoring.content import HTMLToMarkdown, hash_content, looks_like_html
from monitoring.differ import LineDiffer


def test_looks_like_html():
    assert looks_like_html("  <!DOCTYPE html><html></html>")
    assert looks_like_html("<HTML><body></body></HTML>")
    assert looks_like_html("<div>fragment</div>", "text/html; charset=utf-8")
    assert not looks_like_html("# Changelog")
    assert not looks_like_html("<div>fragment</div>", "text/plain")


def test_convert_document():
    html = (
        "<html><head><title>Ignored</title></head><body>"
        "<h1>Title</h1><p>Hello <strong>world</strong></p>"
        "<ul><li>One</li><li>Two</li></ul>"
        "<script>var tracking = 1;</script>"
        "</body></html>"
    )

    assert HTMLToMarkdown().convert(html) == "# Title\n\nHello **world**\n\n- One\n- Two"


def test_convert_links():
    html = '<p><a href="https://x.dev/a">Docs</a> and <a href="#top">top</a></p>'
    assert HTMLToMarkdown().convert(html) == "[Docs](https://x.dev/a) and top"


def test_volatile_markup_does_not_change_hash():
    converter = HTMLToMarkdown()
    first = '<html><body><!-- build 1 --><p>Stable</p><script nonce="a1">x()</script></body></html>'
    second = '<html><body><!-- build 2 --><p>Stable</p><script nonce="b2">y()</script></body></html>'

    assert hash_content(converter.convert(first)) == hash_content(converter.convert(second))


def test_hash_content():
    digest = hash_content("# Changelog")

    assert len(digest) == 64
    assert digest == hash_content("# Changelog")
    assert digest != hash_content("# Changelog\n")


# ============================================================================
# Differ
# ============================================================================

MONITOR = Monitor(name="Docs", url="https://example.com", content_type=ContentType.MARKDOWN)


def test_identical_content_has_no_changes():
    diff = LineDiffer().generate_diff("# Log\n- one\n", "# Log\n- one\n", MONITOR)

    assert diff.changes == []
    assert diff.summary == "markdown: No changes"


def test_whitespace_only_blocks_are_ignored():
    diff = LineDiffer().generate_diff("# Log\n- one\n", "# Log\n- one\n\n   \n", MONITOR)
    assert diff.changes == []


def test_addition_uses_bullet_as_title():
    diff = LineDiffer().generate_diff("# Log\n- one\n", "# Log\n- two\n- one\n", MONITOR)

    assert diff.diff_type == DiffType.ADDITION
    assert diff.summary == "two"
    assert "## Added" in diff.diff_markdown
    assert "+ - two" in diff.diff_markdown
    assert "## Unified Diff" in diff.diff_markdown


def test_heading_and_link_titles():
    differ = LineDiffer()

    heading = differ.generate_diff("- old\n", "## Version 2.0 #\n- old\n", MONITOR)
    link = differ.generate_diff("- old\n", "- [New API](https://x.dev)\n- old\n", MONITOR)

    assert heading.summary == "Version 2.0"
    assert link.summary == "New API"


def test_deletion_summary_counts_blocks():
    diff = LineDiffer().generate_diff("a\nb\nc\n", "a\nc\n", MONITOR)

    assert diff.diff_type == DiffType.DELETION
    assert diff.summary == "markdown: 1 deletion"
    assert "## Removed" in diff.diff_markdown


def test_replacement_is_modification():
    diff = LineDiffer().generate_diff("Price: $10\n", "Price: $12\n", MONITOR)

    assert diff.diff_type == DiffType.MODIFICATION
    assert [c.type for c in diff.changes] == ["removed", "added"]
    assert diff.summary == "markdown: 1 addition, 1 deletion"
