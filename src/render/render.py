"""
Markdown rendering for entry content.

Entries are authored as markdown in a browser form, so the source arrives
with CRLF line endings; they are collapsed to LF before rendering because
the markdown output depends on line-ending style.

Usage:
    >>> from render import to_display_content
    >>> to_display_content("Hello [there](https://example.com)")
    '<p>Hello <a href="https://example.com">there</a></p>'
"""

import html
import logging
from typing import Iterable, Optional

import markdown


logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]


def normalize_line_endings(text: str) -> str:
    """Collapse CRLF pairs to LF."""
    return text.replace("\r\n", "\n")


def render_markdown(source: str) -> str:
    """Render markdown source to HTML.

    A fresh ``markdown.Markdown`` instance is used per call since the
    converter keeps per-document state (footnotes, abbreviations).
    """
    md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS, output_format="html")
    return md.convert(normalize_line_endings(source or ""))


def to_display_content(source: str, bridges: Optional[Iterable[str]] = None) -> str:
    """Render an entry for display and for link discovery.

    Each bridge URL is appended as an empty anchor so that the bridge
    receives a webmention for every entry.

    Args:
        source: Raw markdown content of the entry.
        bridges: Bridge URLs (e.g. ``https://brid.gy/publish/mastodon``).

    Returns:
        Rendered HTML.
    """
    rendered = render_markdown(source)
    anchors = [
        f"<a href='{html.escape(href, quote=True)}'></a>"
        for href in (bridges or [])
        if href
    ]
    if anchors:
        logger.debug(f"Appending {len(anchors)} bridge link(s) to rendered content")
        return rendered + " ".join(anchors)
    return rendered
