"""WebSub package - publish pings to a subscription hub."""
from websub.hub import HubNotifier

__all__ = ["HubNotifier"]
