"""
HTML to markdown conversion for webpage monitors.

Hashing converted markdown instead of raw HTML keeps volatile markup (nonces,
tracking attributes, inline scripts) from producing spurious changes.
"""

import hashlib
import re
from html.parser import HTMLParser
from typing import List, Optional, Tuple

COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
WHITESPACE_RE = re.compile(r"\s+")
EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")
MULTI_SPACE_RE = re.compile(r" {2,}")
LIST_INDENT_RE = re.compile(r"^( +)- ")

SKIP_TAGS = {"script", "style", "noscript", "iframe", "head", "svg", "template"}
BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "header", "footer", "nav", "aside",
    "table", "tr", "ul", "ol", "dl", "dt", "dd", "blockquote", "figure", "form",
}
HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
INLINE_MARKERS = {
    "strong": "**", "b": "**",
    "em": "_", "i": "_",
    "del": "~", "s": "~", "strike": "~",
}


def looks_like_html(content: str, content_type: Optional[str] = None) -> bool:
    """True for full HTML documents (doctype/html prefix) or an HTML content type."""
    head = content.lstrip()[:20].lower()
    if head.startswith("<!doctype html") or head.startswith("<html"):
        return True
    return bool(content_type and "text/html" in content_type.lower())


class _MarkdownBuilder(HTMLParser):
    """Streaming HTML walker emitting markdown fragments."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: List[str] = []
        self.skip_depth = 0
        self.pre_depth = 0
        self.list_depth = 0
        self.anchors: List[Tuple[Optional[str], int]] = []

    # --------------------------------------------------
    # Output helpers
    # --------------------------------------------------

    def _emit(self, text: str):
        self.parts.append(text)

    def _block_break(self):
        self._emit("\n\n")

    # --------------------------------------------------
    # HTMLParser callbacks
    # --------------------------------------------------

    def handle_starttag(self, tag, attrs):
        if tag in SKIP_TAGS:
            self.skip_depth += 1
            return
        if self.skip_depth:
            return

        if tag in HEADING_TAGS:
            self._block_break()
            self._emit("#" * HEADING_TAGS[tag] + " ")
        elif tag == "li":
            indent = "  " * max(0, self.list_depth - 1)
            self._emit(f"\n{indent}- ")
        elif tag in ("ul", "ol"):
            self.list_depth += 1
            self._emit("\n")
        elif tag in BLOCK_TAGS:
            self._block_break()
        elif tag == "br":
            self._emit("\n")
        elif tag == "hr":
            self._emit("\n\n---\n\n")
        elif tag == "pre":
            self.pre_depth += 1
            self._emit("\n\n```\n")
        elif tag == "code" and not self.pre_depth:
            self._emit("`")
        elif tag in INLINE_MARKERS:
            self._emit(INLINE_MARKERS[tag])
        elif tag == "a":
            href = dict(attrs).get("href")
            self.anchors.append((href, len(self.parts)))
        elif tag == "img":
            alt = dict(attrs).get("alt")
            if alt:
                self._emit(alt)

    def handle_startendtag(self, tag, attrs):
        if tag in ("br", "hr", "img"):
            self.handle_starttag(tag, attrs)

    def handle_endtag(self, tag):
        if tag in SKIP_TAGS:
            self.skip_depth = max(0, self.skip_depth - 1)
            return
        if self.skip_depth:
            return

        if tag in HEADING_TAGS:
            self._block_break()
        elif tag in ("ul", "ol"):
            self.list_depth = max(0, self.list_depth - 1)
            self._emit("\n")
        elif tag in BLOCK_TAGS:
            self._block_break()
        elif tag == "pre":
            self.pre_depth = max(0, self.pre_depth - 1)
            self._emit("\n```\n\n")
        elif tag == "code" and not self.pre_depth:
            self._emit("`")
        elif tag in INLINE_MARKERS:
            self._emit(INLINE_MARKERS[tag])
        elif tag == "a" and self.anchors:
            href, start = self.anchors.pop()
            text = "".join(self.parts[start:]).strip()
            del self.parts[start:]
            if href and text and not href.startswith(("javascript:", "#")):
                self._emit(f"[{text}]({href})")
            else:
                self._emit(text)

    def handle_data(self, data):
        if self.skip_depth:
            return
        if self.pre_depth:
            self._emit(data)
            return
        text = WHITESPACE_RE.sub(" ", data)
        if text.strip():
            self._emit(text)
        elif text and self.parts and not self.parts[-1].endswith((" ", "\n")):
            self._emit(" ")

    def markdown(self) -> str:
        return "".join(self.parts)


class HTMLToMarkdown:
    """Converts HTML documents into normalized markdown."""

    def convert(self, html: str) -> str:
        cleaned = COMMENT_RE.sub("", html)
        builder = _MarkdownBuilder()
        builder.feed(cleaned)
        builder.close()

        out = []
        in_code = False
        for line in builder.markdown().split("\n"):
            if line.strip().startswith("```"):
                in_code = not in_code
                out.append(line.strip())
            elif in_code:
                out.append(line.rstrip())
            else:
                indent = LIST_INDENT_RE.match(line)
                prefix = indent.group(1) if indent else ""
                out.append(prefix + MULTI_SPACE_RE.sub(" ", line.strip()))
        markdown = "\n".join(out)
        markdown = EXCESS_NEWLINES_RE.sub("\n\n", markdown)
        return markdown.strip()


def hash_content(content: str) -> str:
    """sha256 hex digest of normalized content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
