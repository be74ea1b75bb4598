"""Gunicorn settings for the Stream web application.

Loaded by the ``stream`` console command. Logs go to stdout/stderr so
``docker compose logs`` shows them.
"""

import os
import sys

bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"

# One sync worker: the SQLite database has a single writer and webmentions
# are sent inside the request when notifications.async is off.
workers = 1
worker_class = "sync"
timeout = 120
keepalive = 2
graceful_timeout = 30

limit_request_line = 4096
limit_request_fields = 100
limit_request_field_size = 8190

accesslog = "-"
errorlog = "-"
loglevel = "info"
# remote address, time, request line, status, size, referer, user agent, duration (us)
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'
capture_output = True


def when_ready(server):
    server.log.info(f"Stream listening on {bind}")


def worker_abort(worker):
    worker.log.error("Worker aborted, most likely a request exceeded the timeout")


def on_exit(server):
    server.log.info("Stream shutting down")


_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "stream": {"format": _FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
    },
    "handlers": {
        "stdout": {"class": "logging.StreamHandler", "formatter": "stream", "stream": sys.stdout},
        "stderr": {"class": "logging.StreamHandler", "formatter": "stream", "stream": sys.stderr},
    },
    "root": {"level": "INFO", "handlers": ["stdout"]},
    "loggers": {
        "gunicorn.access": {"level": "INFO", "handlers": ["stdout"], "propagate": False},
        "gunicorn.error": {"level": "INFO", "handlers": ["stderr"], "propagate": False},
    },
}
