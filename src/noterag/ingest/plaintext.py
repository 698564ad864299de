"""Plain-text projection of stored documents.

Editor content arrives as HTML; chunking and embedding work on the derived
plain text. Non-HTML content is only whitespace-normalized.
"""

from __future__ import annotations

import re

import html2text
from bs4 import BeautifulSoup

_HTML_TAG_RE = re.compile(r"<\s*(?:html|body|p|div|br|h[1-6]|ul|ol|li|span|table)\b", re.IGNORECASE)
_SEPARATOR_RE = re.compile(r"^[-_=*+\s]+$")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

HTML_CONTENT_TYPES = frozenset({"html"})


def looks_like_html(text: str) -> bool:
    """Heuristic: true when *text* contains common block-level HTML tags."""
    return bool(_HTML_TAG_RE.search(text))


def html_to_plain_text(html: str) -> str:
    """Convert editor HTML to plain text, keeping paragraph breaks.

    Script and style elements are dropped before conversion.
    """
    if not html.strip():
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style", "head"]):
        tag.decompose()
    return normalize_text(_converter().handle(str(soup)))


def _converter() -> html2text.HTML2Text:
    # HTML2Text is a stateful parser: never share an instance across threads.
    h2t = html2text.HTML2Text()
    h2t.ignore_links = True
    h2t.ignore_images = True
    h2t.ignore_emphasis = True
    h2t.body_width = 0
    return h2t


def normalize_text(text: str) -> str:
    """Trim lines, drop separator-only lines, collapse blank-line runs."""
    lines: list[str] = []
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        stripped = line.strip()
        if stripped and _SEPARATOR_RE.fullmatch(stripped):
            continue
        lines.append(stripped)
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip()


def to_plain_text(full_text: str, content_type: str = "text") -> str:
    """Return the plain-text projection of a document's raw content."""
    if content_type in HTML_CONTENT_TYPES or (
        content_type == "text" and looks_like_html(full_text)
    ):
        return html_to_plain_text(full_text)
    return normalize_text(full_text)
