"""
Outbound link discovery for rendered entries.

Parses the rendered HTML of an entry as a document located at the entry's
permalink and returns the absolute URLs of its hyperlinks. These are the
candidate webmention targets.

References:
    - W3C Webmention: https://www.w3.org/TR/webmention/ (Section 3.1: Sending)
"""

import logging
from html.parser import HTMLParser
from typing import List, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse

logger = logging.getLogger(__name__)

# Maximum HTML size to parse for link extraction (5 MB).
MAX_HTML_PARSE_BYTES = 5_242_880


class LinkParseError(Exception):
    """Raised when rendered content cannot be parsed as an HTML document."""


class LinkExtractor(HTMLParser):
    """HTML parser that extracts href URLs from <a> tags and the <base> href."""

    def __init__(self):
        super().__init__()
        self.links: List[str] = []
        self.base_href: Optional[str] = None

    def handle_starttag(self, tag: str, attrs: list) -> None:
        attrs_dict = dict(attrs)
        href = attrs_dict.get("href")
        if not href:
            return
        if tag == "a":
            self.links.append(href)
        elif tag == "base" and self.base_href is None:
            self.base_href = href


def discover_links(html_content: str, source_url: str) -> Set[str]:
    """Return the unique absolute HTTP(S) link targets in an HTML document.

    Relative links are resolved against ``source_url`` (or the document's
    ``<base href>`` when present). Fragments are dropped, and links that do
    not resolve to http/https (mailto:, javascript:, fragment-only) are skipped.

    Args:
        html_content: Rendered HTML of the entry.
        source_url: Permalink of the entry, the document's own URL.

    Returns:
        Set of absolute target URLs.

    Raises:
        LinkParseError: If the content is not text or the parser fails.
    """
    if not isinstance(html_content, str):
        raise LinkParseError(
            f"Expected HTML text for {source_url}, got {type(html_content).__name__}"
        )
    if not html_content:
        return set()

    if len(html_content) > MAX_HTML_PARSE_BYTES:
        logger.warning(
            f"HTML content too large for link extraction ({len(html_content)} bytes), "
            f"truncating to {MAX_HTML_PARSE_BYTES} bytes"
        )
        html_content = html_content[:MAX_HTML_PARSE_BYTES]

    parser = LinkExtractor()
    try:
        parser.feed(html_content)
        parser.close()
    except Exception as e:
        raise LinkParseError(f"Failed to parse HTML for {source_url}: {e}") from e

    try:
        base = urljoin(source_url, parser.base_href) if parser.base_href else source_url
    except ValueError as e:
        raise LinkParseError(f"Invalid <base href> in {source_url}: {e}") from e
    links = set()

    for href in parser.links:
        href = href.strip()
        if not href or href.startswith("#"):
            continue

        try:
            absolute, _ = urldefrag(urljoin(base, href))
            parsed = urlparse(absolute)
            # Port is parsed lazily; an out of range port raises here
            parsed.port
        except ValueError as e:
            logger.info(f"Skipping malformed link {href!r} in {source_url}: {e}")
            continue
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            continue

        links.add(absolute)

    logger.debug(f"Discovered {len(links)} link(s) in {source_url}")
    return links
