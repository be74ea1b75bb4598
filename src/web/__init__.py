"""Stream Web Package.

This package provides the Flask application serving the stream to readers
(index, permalinks, Atom feed) and the token-protected admin endpoints used
to create, update and delete entries.

Usage:
    Start the server:
        $ poetry run stream

    Or build the app directly (e.g. in tests):
        >>> from web import create_app
        >>> app = create_app(store, publisher, config)
"""
from .web import create_app

__all__ = ["create_app"]
