"""
Stream entry point.

Stream is a personal publishing service: short markdown entries served as
HTML and as an Atom feed, with a webmention sent to every linked page and a
WebSub ping each time an entry is created or edited.

The ``stream`` console command wires the components together once and
serves the Flask app from an embedded Gunicorn:

    config.yml -> EntryStore -> StreamPublisher (WebmentionDispatcher,
    HubNotifier) -> create_app() -> Gunicorn

Example:
    $ stream --debug
    ... - stream.stream - INFO - Entry store ready at ./data/stream.db
    ... - gunicorn.error - INFO - Stream listening on 0.0.0.0:5000
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from gunicorn.app.base import BaseApplication


logger = logging.getLogger(__name__)

LOG_FILE = "stream.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
GUNICORN_CONFIG = os.path.join(os.path.dirname(__file__), "..", "web", "gunicorn_config.py")


def configure_logging(debug: bool = False) -> None:
    """Send application logs to stream.log (10MB x 3) and stdout."""
    level = logging.DEBUG if debug else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=3)
    console_handler = logging.StreamHandler(sys.stdout)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


class StreamApplication(BaseApplication):
    """Gunicorn application serving an already constructed Flask app."""

    def __init__(self, app, config_file: Optional[str] = None, debug: bool = False):
        self.application = app
        self.config_file = config_file
        self.debug = debug
        super().__init__()

    def load_config(self):
        if self.config_file:
            settings: Dict[str, Any] = {}
            with open(self.config_file, "r") as f:
                exec(compile(f.read(), self.config_file, "exec"), settings)
            for name, value in settings.items():
                if name in self.cfg.settings and value is not None:
                    self.cfg.set(name, value)

        if self.debug:
            # No worker timeout so a debugger can sit on a breakpoint
            self.cfg.set("timeout", 0)
            self.cfg.set("loglevel", "debug")

    def load(self):
        return self.application


def _debug_requested() -> bool:
    if "--debug" in sys.argv[1:]:
        return True
    return os.environ.get("STREAM_DEBUG", "").lower() in ("true", "1", "yes")


def main(debug: bool = False) -> None:
    """Entry point for the ``stream`` console command.

    Args:
        debug: Verbose logging and no worker timeout. Also enabled by the
            ``--debug`` flag or the STREAM_DEBUG environment variable.
    """
    from config import load_config
    from entries import EntryStore
    from stream.publisher import StreamPublisher
    from web import create_app

    debug = debug or _debug_requested()
    configure_logging(debug)

    config = load_config()

    store = EntryStore.from_config(config)
    logger.info(f"Entry store ready at {store.db_path}")

    publisher = StreamPublisher.from_config(config, store)
    logger.info(f"Publishing as {publisher.host}, feed at {publisher.feed_url}")

    app = create_app(store, publisher, config=config)
    try:
        StreamApplication(app, config_file=GUNICORN_CONFIG, debug=debug).run()
    finally:
        publisher.shutdown()


if __name__ == "__main__":
    main()
