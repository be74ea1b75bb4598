"""
Web Share Target support for the admin form.

When a page is shared to the site from a phone (Chrome on Android shares
``title``, ``text`` and sometimes ``url``), the admin form is pre-filled with
a reply to that page: its canonical URL wrapped in a ``u-in-reply-to`` link.

``text`` usually holds the shared URL but may also be selected text, so a
value is only treated as a URL when it parses as an absolute http(s) URL;
otherwise ``url`` is used.
"""

import html
import logging
from html.parser import HTMLParser
from typing import Dict, Mapping, Optional
from urllib.parse import urljoin, urlparse

import requests

from indieweb.webmention import WEBMENTION_USER_AGENT, _is_private_or_loopback


logger = logging.getLogger(__name__)

SHARE_FETCH_TIMEOUT = 10.0
MAX_SHARE_RESPONSE_BYTES = 1_048_576


class PageMetadataParser(HTMLParser):
    """Collects the <title> text and the canonical link of a page."""

    def __init__(self):
        super().__init__()
        self.title_parts = []
        self.canonical: Optional[str] = None
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        if tag == "title":
            self._in_title = True
        elif tag == "link" and self.canonical is None:
            attrs_dict = dict(attrs)
            rels = (attrs_dict.get("rel") or "").lower().split()
            if "canonical" in rels and attrs_dict.get("href"):
                self.canonical = attrs_dict["href"]

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False

    def handle_data(self, data):
        if self._in_title:
            self.title_parts.append(data)

    @property
    def title(self) -> str:
        return "".join(self.title_parts).strip()


def _as_url(value: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    parsed = urlparse(value)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return value
    return None


def fetch_page_metadata(url: str, timeout: float = SHARE_FETCH_TIMEOUT) -> Optional[Dict[str, str]]:
    """Fetch a page and return its canonical URL and title.

    Returns:
        ``{"url": ..., "title": ...}`` or None if the page could not be fetched.
    """
    if _is_private_or_loopback(url):
        logger.warning(f"Refusing to fetch shared private/loopback URL: {url}")
        return None

    try:
        response = requests.get(
            url,
            headers={"Accept": "text/html", "User-Agent": WEBMENTION_USER_AGENT},
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.info(f"Failed to fetch shared URL {url!r}: {e}")
        return None

    parser = PageMetadataParser()
    try:
        parser.feed(response.text[:MAX_SHARE_RESPONSE_BYTES])
        parser.close()
    except Exception as e:
        logger.info(f"Failed to parse shared URL {url!r}: {e}")
        return None

    canonical = urljoin(url, parser.canonical) if parser.canonical else url
    return {"url": canonical, "title": parser.title}


def share_target_to_form(form: Mapping[str, str]) -> Dict[str, str]:
    """Map Web Share Target parameters to admin form values.

    Args:
        form: Request parameters with optional ``title``, ``text`` and ``url``.

    Returns:
        Dict with ``title`` and ``content`` keys.
    """
    result = {
        "title": form.get("title", "") or "",
        "content": form.get("text", "") or "",
    }

    url = _as_url(form.get("text", "")) or _as_url(form.get("url", ""))
    if not url:
        return result

    metadata = fetch_page_metadata(url)
    if metadata is None:
        return result

    result["title"] = metadata["title"]
    result["content"] = (
        f"<a class='u-in-reply-to' href='{html.escape(metadata['url'], quote=True)}'>"
        f"{html.escape(metadata['title'])}</a>"
    )
    return result
