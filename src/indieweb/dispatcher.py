"""
Per-link webmention fan-out.

Every discovered link is processed on its own: endpoint discovery, then a
single send. A link that fails at either step is logged and recorded in the
returned report; the loop always moves on to the next link.
"""

import logging
from typing import Any, Dict, Iterable, List

from indieweb.webmention import (
    DEFAULT_TIMEOUT,
    STAGE_DISCOVERY,
    WebmentionResult,
    send_webmention,
)


logger = logging.getLogger(__name__)


class WebmentionDispatcher:
    """Sends one webmention per discovered link.

    Attributes:
        timeout: Timeout in seconds applied to each outbound HTTP call
        block_private: Whether private/loopback targets are refused

    Example:
        >>> dispatcher = WebmentionDispatcher.from_config(config)
        >>> results = dispatcher.dispatch(
        ...     "https://stream.example.com/entry/abc",
        ...     {"https://blog.example.com/post"},
        ... )
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, block_private: bool = True):
        self.timeout = timeout
        self.block_private = block_private

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "WebmentionDispatcher":
        """Create a dispatcher from the ``webmention`` section of config.yml."""
        wm_config = config.get("webmention", {}) or {}
        return cls(
            timeout=float(wm_config.get("timeout", DEFAULT_TIMEOUT)),
            block_private=wm_config.get("block_private_targets", True),
        )

    def dispatch(self, source_url: str, links: Iterable[str]) -> List[WebmentionResult]:
        """Send webmentions from ``source_url`` to each link.

        Links are processed sequentially in sorted order, one attempt each.

        Returns:
            One WebmentionResult per link.
        """
        results = []
        for target in sorted(set(links)):
            logger.info(f"Webmention trying to send: {source_url} -> {target}")
            results.append(self._dispatch_one(source_url, target))

        sent = sum(1 for r in results if r.success)
        logger.info(f"Webmentions for {source_url}: {sent}/{len(results)} accepted")
        return results

    def _dispatch_one(self, source_url: str, target: str) -> WebmentionResult:
        result = send_webmention(source_url, target, timeout=self.timeout, block_private=self.block_private)
        if result.stage == STAGE_DISCOVERY:
            logger.info(f"Skipping webmention {source_url} -> {target}: no endpoint discovered")
        return result
