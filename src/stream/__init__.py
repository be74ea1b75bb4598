"""Stream - a personal publishing service.

This package holds the orchestration layer: StreamPublisher persists entries
and then sends webmentions and WebSub pings for them, and main() starts the
web application.

Exported:
    StreamPublisher: persist-then-notify coordinator
    NotificationReport: outcome of one notification phase
    main: Entry point for the stream console command
"""
from .publisher import NotificationReport, StreamPublisher
from .stream import main

__all__ = ["NotificationReport", "StreamPublisher", "main"]
