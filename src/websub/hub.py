"""
WebSub Hub Notifier for Stream.

Tells a WebSub hub that the Atom feed changed so subscribers get the new
entry without polling. Sent after every create and update:

    POST {hub_url}
    Content-Type: application/x-www-form-urlencoded

    hub.mode=publish&hub.url={feed_url}

The ping is fire-and-forget: one attempt, failures are logged and reported
as a False return value, never raised.

Configuration (config.yml):
    websub:
      hub_url: "https://pubsubhubbub.appspot.com/"
      timeout: 30

References:
    - W3C WebSub: https://www.w3.org/TR/websub/
"""
import logging
from typing import Optional, Dict, Any

import requests


logger = logging.getLogger(__name__)


class HubNotifier:
    """Client for publish pings to a WebSub hub.

    Attributes:
        hub_url: Hub endpoint URL (None disables pings)
        timeout: Request timeout in seconds
        enabled: Whether a hub is configured

    Example:
        >>> notifier = HubNotifier("https://pubsubhubbub.appspot.com/")
        >>> notifier.notify("https://stream.example.com/feed")
        True
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, hub_url: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.hub_url = hub_url or None
        self.timeout = timeout
        self.enabled = self.hub_url is not None

        if self.enabled:
            logger.info(f"WebSub notifications enabled for hub {self.hub_url}")
        else:
            logger.info("WebSub notifications disabled: no hub_url configured")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "HubNotifier":
        """Create a HubNotifier from the ``websub`` section of config.yml."""
        websub_config = config.get("websub", {}) or {}
        return cls(
            hub_url=websub_config.get("hub_url"),
            timeout=float(websub_config.get("timeout", cls.DEFAULT_TIMEOUT)),
        )

    def notify(self, feed_url: str) -> bool:
        """Ping the hub that ``feed_url`` has new content.

        Returns:
            True if the hub answered with a 2xx status, False otherwise
        """
        if not self.enabled:
            logger.debug(f"WebSub notification skipped (disabled): {feed_url}")
            return False

        try:
            response = requests.post(
                self.hub_url,
                data={"hub.mode": "publish", "hub.url": feed_url},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to update WebSub hub {self.hub_url!r} for {feed_url}: {e}")
            return False

        logger.info(f"WebSub response: {response.status_code} - {response.reason!r}")
        if not 200 <= response.status_code < 300:
            logger.warning(
                f"WebSub hub rejected publish ping: hub={self.hub_url}, feed={feed_url}, "
                f"status_code={response.status_code}"
            )
            return False
        return True
