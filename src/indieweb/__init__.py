"""
IndieWeb Module for Stream.

This module provides the outbound IndieWeb integration run after an entry is
written: link discovery in the rendered entry and W3C webmention sending to
each linked page.

Features:
    - Outbound link discovery relative to the entry permalink
    - W3C Webmention endpoint discovery
    - Per-link webmention dispatch with independent failure

Usage:
    >>> from indieweb import WebmentionDispatcher, discover_links
    >>> links = discover_links(html, "https://stream.example.com/entry/abc")
    >>> dispatcher = WebmentionDispatcher.from_config(config)
    >>> results = dispatcher.dispatch("https://stream.example.com/entry/abc", links)

Configuration (config.yml):
    webmention:
      timeout: 30
      block_private_targets: true
"""

from indieweb.links import LinkParseError, discover_links
from indieweb.webmention import (
    WebmentionResult,
    discover_webmention_endpoint,
    send_to_endpoint,
    send_webmention,
)
from indieweb.dispatcher import WebmentionDispatcher

__all__ = [
    "LinkParseError",
    "discover_links",
    "WebmentionResult",
    "WebmentionDispatcher",
    "discover_webmention_endpoint",
    "send_to_endpoint",
    "send_webmention",
]
