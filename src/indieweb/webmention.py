"""
Sending W3C Webmentions.

A webmention tells a page that another page links to it. Sending one is a
two step exchange with the linked page's site:

    1. Discovery: GET the target and look for its endpoint, first in the
       ``Link`` response header, then in ``<link>``/``<a>`` elements with
       ``rel="webmention"``.
    2. Notification:

           POST {endpoint}
           Content-Type: application/x-www-form-urlencoded

           source={entry permalink}&target={linked url}

Each step is attempted once. Nothing in this module raises on network or
protocol failure; the outcome is a WebmentionResult (or None from
discovery) and a log line.

Outbound requests refuse hosts that resolve to private, loopback or
link-local addresses, follow at most 20 redirects, and read at most 1 MB of
a target page.

Usage:
    >>> from indieweb.webmention import send_webmention
    >>> result = send_webmention("https://stream.example.com/entry/abc", "https://blog.example.com/post")
    >>> result.success, result.status_code
    (True, 202)

References:
    - W3C Webmention: https://www.w3.org/TR/webmention/
"""

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

import requests


logger = logging.getLogger(__name__)

WEBMENTION_USER_AGENT = "Webmention (Stream; +https://github.com/stream/stream)"
DEFAULT_TIMEOUT = 30.0
MAX_DISCOVERY_RESPONSE_BYTES = 1_048_576
MAX_REDIRECTS = 20
READ_CHUNK_SIZE = 8192

STAGE_DISCOVERY = "discovery"
STAGE_SEND = "send"

_LINK_HEADER_PATTERN = re.compile(r'<([^>]*)>\s*;[^,]*?\brel="?[^",]*\bwebmention\b', re.IGNORECASE)

_REL = r'rel=["\']?[^"\'>]*\bwebmention\b'
_HREF = r'href=["\']([^"\']*)["\']'
_HTML_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf'<link\s[^>]*?{_REL}[^>]*?{_HREF}',
        rf'<link\s[^>]*?{_HREF}[^>]*?{_REL}',
        rf'<a\s[^>]*?{_REL}[^>]*?{_HREF}',
        rf'<a\s[^>]*?{_HREF}[^>]*?{_REL}',
    )
)


@dataclass
class WebmentionResult:
    """Outcome for one link.

    Attributes:
        success: True when the endpoint accepted the webmention
        status_code: Endpoint HTTP status, 0 if no response was received
        message: Short description of the outcome
        target: Linked URL the webmention was about
        endpoint: Endpoint used, None when discovery failed
        location: Status URL from the endpoint's Location header, if any
        stage: STAGE_DISCOVERY or STAGE_SEND
    """
    success: bool
    status_code: int
    message: str
    target: Optional[str] = None
    endpoint: Optional[str] = None
    location: Optional[str] = None
    stage: str = STAGE_SEND


def _is_private_or_loopback(url: str) -> bool:
    """True if the URL's host is missing, unresolvable or non-public.

    Every address the host resolves to is checked; one private, loopback,
    reserved or link-local address is enough to refuse the URL.
    """
    host = urlparse(url).hostname
    if not host:
        return True

    try:
        addresses = {info[4][0] for info in socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_STREAM)}
        for address in addresses:
            ip = ipaddress.ip_address(address)
            if ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local:
                logger.warning(f"Refusing non-public address {address} for {url}")
                return True
    except (socket.gaierror, ValueError, OSError) as e:
        logger.warning(f"Could not resolve host of {url}: {e}")
        return True

    return False


def _build_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = WEBMENTION_USER_AGENT
    session.max_redirects = MAX_REDIRECTS
    return session


def _find_endpoint_in_link_header(link_header: str) -> Optional[str]:
    match = _LINK_HEADER_PATTERN.search(link_header)
    return match.group(1) if match else None


def _find_endpoint_in_html(html_body: str) -> Optional[str]:
    matches = [m for m in (p.search(html_body) for p in _HTML_PATTERNS) if m]
    if not matches:
        return None
    # Document order across <link> and <a>
    return min(matches, key=lambda m: m.start()).group(1)


def _read_limited_body(response: requests.Response) -> str:
    """Read up to MAX_DISCOVERY_RESPONSE_BYTES of a streamed response as text."""
    data = bytearray()
    for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
        data.extend(chunk)
        if len(data) > MAX_DISCOVERY_RESPONSE_BYTES:
            logger.warning(f"Discovery body of {response.url} exceeds {MAX_DISCOVERY_RESPONSE_BYTES} bytes, truncating")
            break
    try:
        return bytes(data).decode(response.encoding or "utf-8", errors="replace")
    except LookupError:
        return bytes(data).decode("utf-8", errors="replace")


def discover_webmention_endpoint(
    target_url: str,
    timeout: float = DEFAULT_TIMEOUT,
    block_private: bool = True,
) -> Optional[str]:
    """Find the webmention endpoint advertised by ``target_url``.

    The Link header is checked before the body is downloaded; the body is
    only parsed for HTML responses. A relative endpoint is resolved against
    the final URL after redirects.

    Args:
        target_url: Page to discover the endpoint of.
        timeout: Request timeout in seconds.
        block_private: Refuse targets that resolve to non-public addresses.

    Returns:
        Absolute endpoint URL, or None when there is none or the fetch failed.
    """
    if block_private and _is_private_or_loopback(target_url):
        logger.warning(f"Skipping discovery for non-public target {target_url}")
        return None

    with _build_session() as session:
        try:
            response = session.get(
                target_url,
                headers={"Accept": "text/html"},
                timeout=timeout,
                allow_redirects=True,
                stream=True,
            )
        except requests.exceptions.TooManyRedirects:
            logger.error(f"Discovery for {target_url} exceeded {MAX_REDIRECTS} redirects")
            return None
        except requests.exceptions.RequestException as e:
            logger.error(f"Discovery fetch of {target_url} failed: {e}")
            return None

        base_url = response.url or target_url
        try:
            response.raise_for_status()
            endpoint = _find_endpoint_in_link_header(response.headers.get("Link", ""))
            if endpoint is None:
                content_type = response.headers.get("Content-Type", "")
                if content_type and "html" not in content_type.lower():
                    logger.info(f"No webmention endpoint for {target_url}: not HTML ({content_type})")
                    return None
                endpoint = _find_endpoint_in_html(_read_limited_body(response))
        except requests.exceptions.RequestException as e:
            logger.error(f"Discovery of {target_url} failed: {e}")
            return None
        finally:
            response.close()

    if endpoint is None:
        logger.info(f"No webmention endpoint advertised by {target_url}")
        return None
    return urljoin(base_url, endpoint)


def send_to_endpoint(
    endpoint: str,
    source_url: str,
    target_url: str,
    timeout: float = DEFAULT_TIMEOUT,
    block_private: bool = True,
) -> WebmentionResult:
    """POST one webmention to a known endpoint.

    Any status below 400 counts as accepted (typically 201 or 202).
    """
    def failed(message: str, status_code: int = 0) -> WebmentionResult:
        return WebmentionResult(success=False, status_code=status_code, message=message,
                                target=target_url, endpoint=endpoint)

    if block_private and _is_private_or_loopback(endpoint):
        return failed(f"Endpoint resolves to a private or loopback address: {endpoint}")

    logger.info(f"Webmention {source_url} -> {target_url} via {endpoint}")
    try:
        with _build_session() as session:
            response = session.post(
                endpoint,
                data={"source": source_url, "target": target_url},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=timeout,
            )
    except requests.exceptions.TooManyRedirects:
        logger.error(f"Webmention to {endpoint} for {target_url}: too many redirects")
        return failed("Too many redirects")
    except requests.exceptions.Timeout:
        logger.error(f"Webmention to {endpoint} for {target_url}: timed out after {timeout}s")
        return failed("Request timed out")
    except requests.exceptions.RequestException as e:
        logger.error(f"Webmention to {endpoint} for {target_url}: {e}")
        return failed(f"Request failed: {e}")

    if response.status_code >= 400:
        reason = _parse_error_response(response)
        logger.warning(f"Webmention for {target_url} rejected by {endpoint}: {reason}")
        return failed(reason, response.status_code)

    location = response.headers.get("Location")
    logger.info(f"Webmention for {target_url} accepted ({response.status_code}), status at {location}")
    return WebmentionResult(
        success=True,
        status_code=response.status_code,
        message="Webmention accepted",
        target=target_url,
        endpoint=endpoint,
        location=location,
    )


def send_webmention(
    source_url: str,
    target_url: str,
    timeout: float = DEFAULT_TIMEOUT,
    block_private: bool = True,
) -> WebmentionResult:
    """Discover the endpoint of ``target_url`` and notify it of ``source_url``."""
    endpoint = discover_webmention_endpoint(target_url, timeout=timeout, block_private=block_private)
    if not endpoint:
        return WebmentionResult(
            success=False,
            status_code=0,
            message=f"No webmention endpoint found for {target_url}",
            target=target_url,
            stage=STAGE_DISCOVERY,
        )
    return send_to_endpoint(endpoint, source_url, target_url, timeout=timeout, block_private=block_private)


def _parse_error_response(response: requests.Response) -> str:
    """Best-effort error text: JSON ``error_description``/``error``, short body, or reason."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and "error" in payload:
        return payload.get("error_description") or payload["error"]

    body = (response.text or "").strip()
    if body and len(body) < 200:
        return f"HTTP {response.status_code}: {body}"
    return f"HTTP {response.status_code}: {response.reason}"
