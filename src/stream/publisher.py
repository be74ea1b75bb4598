"""
Entry publishing: persist first, then notify.

Writing an entry happens in two phases:

1. Persist. The EntryStore call either succeeds or raises; its outcome is
   the only thing the caller sees.
2. Notify. The new content is rendered, its outbound links are discovered,
   one webmention is sent per link and finally the WebSub hub is pinged.
   Every failure in this phase is logged and stops there.

Phase 2 runs inline by default. With ``notifications.async: true`` it is
submitted to a thread pool and the write returns immediately.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from entries import Entry, EntryStore
from indieweb import LinkParseError, WebmentionDispatcher, WebmentionResult, discover_links
from render import to_display_content
from websub import HubNotifier


logger = logging.getLogger(__name__)


@dataclass
class NotificationReport:
    """Outcome of the notification phase for one entry write.

    Attributes:
        source: Permalink of the entry, the webmention source
        links: Links discovered in the rendered entry
        results: One WebmentionResult per link
        hub_notified: Result of the WebSub ping (None if never attempted)
        error: Set when link discovery failed and the phase was aborted
    """
    source: str
    links: List[str] = field(default_factory=list)
    results: List[WebmentionResult] = field(default_factory=list)
    hub_notified: Optional[bool] = None
    error: Optional[str] = None

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


class StreamPublisher:
    """Coordinates entry writes with outbound notifications.

    Constructed once at startup and shared by the request handlers.

    Example:
        >>> publisher = StreamPublisher.from_config(config, store)
        >>> entry_id = publisher.create_entry("See https://example.com", "Hello")
    """

    def __init__(
        self,
        store: EntryStore,
        host: str,
        dispatcher: Optional[WebmentionDispatcher] = None,
        hub_notifier: Optional[HubNotifier] = None,
        bridges: Optional[List[str]] = None,
        renderer: Callable[..., str] = to_display_content,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.host = host.rstrip("/")
        self.dispatcher = dispatcher or WebmentionDispatcher()
        self.hub_notifier = hub_notifier or HubNotifier()
        self.bridges = list(bridges or [])
        self.renderer = renderer
        self.executor = executor

    @classmethod
    def from_config(cls, config: Dict[str, Any], store: EntryStore) -> "StreamPublisher":
        """Build a publisher and its notification clients from config.yml."""
        executor = None
        if (config.get("notifications", {}) or {}).get("async", False):
            executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify")
            logger.info("Notifications will be sent asynchronously")
        return cls(
            store=store,
            host=config.get("host", ""),
            dispatcher=WebmentionDispatcher.from_config(config),
            hub_notifier=HubNotifier.from_config(config),
            bridges=config.get("bridges") or [],
            executor=executor,
        )

    def permalink(self, entry_id: str) -> str:
        """Public URL of an entry."""
        return f"{self.host}/entry/{entry_id}"

    @property
    def feed_url(self) -> str:
        return f"{self.host}/feed"

    def render(self, content: str) -> str:
        """Render entry content the way readers and link discovery see it."""
        return self.renderer(content, self.bridges)

    # =====================================================================
    # Phase 1: persistence (errors propagate)
    # =====================================================================

    def create_entry(self, content: str, title: str) -> str:
        """Create an entry, then notify. Returns the new id.

        Raises:
            StorageError: If the entry could not be stored; no
                notifications are sent in that case.
        """
        entry_id = self.store.create(content, title)
        self._schedule_notifications(entry_id, content)
        return entry_id

    def update_entry(self, entry_id: str, content: str, title: str) -> Entry:
        """Update an entry, then notify.

        Raises:
            EntryNotFoundError: If no entry has this id.
            StorageError: If the write failed.
        """
        entry = self.store.update(entry_id, content, title)
        self._schedule_notifications(entry_id, content)
        return entry

    def delete_entry(self, entry_id: str) -> None:
        """Delete an entry. No notifications are sent for deletions."""
        self.store.delete(entry_id)

    # =====================================================================
    # Phase 2: notification (never raises)
    # =====================================================================

    def _schedule_notifications(self, entry_id: str, content: str) -> Optional[Future]:
        if self.executor is None:
            self._send_notifications_guarded(entry_id, content)
            return None
        return self.executor.submit(self._send_notifications_guarded, entry_id, content)

    def _send_notifications_guarded(self, entry_id: str, content: str) -> Optional[NotificationReport]:
        # The entry is already stored; nothing from this phase reaches the caller
        try:
            return self.send_notifications(entry_id, content)
        except Exception as e:
            logger.error(f"Notification phase crashed for entry {entry_id}: {e}", exc_info=True)
            return None

    def send_notifications(self, entry_id: str, content: str) -> NotificationReport:
        """Render, discover links, send webmentions, then ping the hub.

        A link discovery failure aborts the rest of the phase (no
        webmentions and no hub ping). Per-link failures and hub failures are
        only logged.
        """
        source = self.permalink(entry_id)
        report = NotificationReport(source=source)

        html = self.render(content)
        try:
            links = discover_links(html, source)
        except LinkParseError as e:
            logger.warning(f"Failed to discover links for {source}: {e}")
            report.error = str(e)
            return report

        report.links = sorted(links)
        report.results = self.dispatcher.dispatch(source, report.links)
        for result in report.results:
            if not result.success:
                logger.info(
                    f"Failed to send webmention {source} -> {result.target}: "
                    f"stage={result.stage}, status_code={result.status_code}, error={result.message}"
                )

        report.hub_notified = self.hub_notifier.notify(self.feed_url)
        logger.info(
            f"Notifications for {source}: links={len(report.links)}, sent={report.sent}, "
            f"failed={report.failed}, hub_notified={report.hub_notified}"
        )
        return report

    def shutdown(self) -> None:
        """Wait for queued background notifications to finish."""
        if self.executor is not None:
            self.executor.shutdown(wait=True)
