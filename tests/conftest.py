"""
Pytest configuration and shared fixtures for all tests.

This module provides shared fixtures for the test suite, including:
- A deterministic clock for the entry store
- A temporary EntryStore
- A test configuration with outbound notifications disabled
- Mock HTTP responses
"""

import pytest
from unittest.mock import MagicMock

from entries import EntryStore


# 2024-01-15T10:00:00Z in nanoseconds
BASE_NS = 1_705_312_800_000_000_000


class FakeClock:
    """Clock returning a nanosecond timestamp that advances on every call."""

    def __init__(self, start_ns: int = BASE_NS, step_ns: int = 1_000_000):
        self.now = start_ns
        self.step = step_ns

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """EntryStore backed by a temporary SQLite file and a fake clock."""
    return EntryStore(str(tmp_path), namespace="test", clock=clock)


@pytest.fixture
def stream_config(tmp_path):
    """Configuration used by web and publisher tests."""
    return {
        "host": "https://stream.example.com",
        "title": "Test Stream",
        "author": "Test Author",
        "storage": {"path": str(tmp_path), "namespace": "test"},
        "websub": {"hub_url": "https://hub.example.com/"},
        "webmention": {"timeout": 30, "block_private_targets": True},
        "bridges": [],
        "notifications": {"async": False},
        "cors": {"enabled": False},
        "security": {"admin_token": "test-admin-token"},
    }


def make_response(status_code=200, headers=None, body=b"", url="https://example.com/", reason="OK", text=None):
    """Build a MagicMock standing in for a requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.headers = headers or {}
    response.url = url
    response.encoding = "utf-8"
    response.iter_content.return_value = [body] if body else []
    response.text = text if text is not None else body.decode("utf-8", errors="replace")
    response.json.side_effect = ValueError("No JSON")
    if status_code >= 400:
        from requests.exceptions import HTTPError
        response.raise_for_status.side_effect = HTTPError(f"{status_code} Error")
    return response
