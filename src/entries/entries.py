"""SQLite-backed persistence and ordered listing of stream entries.

Each entry is keyed by an opaque id derived from its content, title and the
nanosecond creation time. Listing is ordered by creation time, newest first,
so editing an entry never moves it within the stream; only ``updated``
advances.

Usage:
    >>> store = EntryStore("./data", namespace="stream")
    >>> entry_id = store.create("This is content.", "This is title")
    >>> store.get(entry_id).title
    'This is title'
    >>> [e.id for e in store.list(10, 0)]
    [entry_id]
"""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Number of times a colliding id is re-derived before the insert gives up
MAX_ID_ATTEMPTS = 5

# Largest value SQLite accepts as an INTEGER parameter
SQLITE_MAX_INTEGER = 2**63 - 1


class EntryStoreError(Exception):
    """Base class for entry store failures."""


class EntryNotFoundError(EntryStoreError):
    """Raised when an operation addresses an id that does not exist."""

    def __init__(self, entry_id: str):
        super().__init__(f"Entry not found: {entry_id}")
        self.entry_id = entry_id


class StorageError(EntryStoreError):
    """Raised when the underlying SQLite call fails."""


@dataclass
class Entry:
    """A single authored post.

    Attributes:
        id: Opaque unique id, immutable after creation
        title: Display title
        content: Raw markdown source
        created: UTC creation time, immutable
        updated: UTC time of the last modification
    """
    id: str
    title: str
    content: str
    created: datetime
    updated: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "created": self.created.isoformat(),
            "updated": self.updated.isoformat(),
        }


def _from_ns(ns: int) -> datetime:
    seconds, remainder = divmod(ns, 1_000_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=remainder // 1000)


def _rfc3339_nano(ns: int) -> str:
    seconds, remainder = divmod(ns, 1_000_000_000)
    base = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{base}.{remainder:09d}Z"


def _format_timestamp(value: datetime) -> str:
    # Fixed width and offset so that string order matches time order in SQL
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def derive_entry_id(content: str, title: str, created_ns: int, attempt: int = 0) -> str:
    """Derive an entry id from its content, title and creation time.

    The md5 hex digest of ``content + title + <RFC 3339 time with nanoseconds>``.
    A non-zero ``attempt`` is appended when a previous derivation collided.
    """
    material = content + title + _rfc3339_nano(created_ns)
    if attempt:
        material += f"#{attempt}"
    return hashlib.md5(material.encode("utf-8")).hexdigest()


class EntryStore:
    """Persistent entry storage backed by SQLite.

    Every operation opens its own connection, so a store instance can be
    shared between request handlers. Point writes are single statements;
    concurrent updates to the same id are last-write-wins.
    """

    def __init__(
        self,
        storage_path: str,
        namespace: str = "stream",
        clock: Optional[Callable[[], int]] = None,
    ):
        self.storage_path = storage_path
        self.namespace = namespace
        self._clock = clock or time.time_ns
        os.makedirs(self.storage_path, mode=0o755, exist_ok=True)
        self.db_path = os.path.join(self.storage_path, f"{namespace}.db")
        self._ensure_schema()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EntryStore":
        """Create a store from the ``storage`` section of config.yml."""
        storage_config = config.get("storage", {}) or {}
        return cls(
            storage_path=storage_config.get("path", "./data"),
            namespace=storage_config.get("namespace", "stream"),
        )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS entries (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        content TEXT NOT NULL,
                        created TEXT NOT NULL,
                        updated TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_entries_created "
                    "ON entries(created)"
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize entries database {self.db_path}: {e}")
            raise StorageError(f"Failed to initialize entries database: {e}") from e

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> Entry:
        return Entry(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            created=_parse_timestamp(row["created"]),
            updated=_parse_timestamp(row["updated"]),
        )

    def create(self, content: str, title: str) -> str:
        """Insert a new entry and return its id.

        Never overwrites an existing record: if the derived id is already
        taken it is re-derived, and StorageError is raised after
        MAX_ID_ATTEMPTS collisions.
        """
        created_ns = self._clock()
        now = _format_timestamp(_from_ns(created_ns))

        try:
            with self._connect() as conn:
                for attempt in range(MAX_ID_ATTEMPTS):
                    entry_id = derive_entry_id(content, title, created_ns, attempt)
                    try:
                        conn.execute(
                            """
                            INSERT INTO entries (id, title, content, created, updated)
                            VALUES (?, ?, ?, ?, ?)
                            """,
                            (entry_id, title, content, now, now),
                        )
                    except sqlite3.IntegrityError:
                        logger.warning(f"Entry id collision on {entry_id}, re-deriving (attempt {attempt + 1})")
                        continue
                    logger.info(f"Created entry {entry_id}: title={title[:80]!r}")
                    return entry_id
        except sqlite3.Error as e:
            logger.error(f"Failed to create entry: {e}")
            raise StorageError(f"Failed to create entry: {e}") from e

        raise StorageError(f"Could not derive a unique entry id after {MAX_ID_ATTEMPTS} attempts")

    def get(self, entry_id: str) -> Entry:
        """Return the entry with the given id or raise EntryNotFoundError."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT id, title, content, created, updated FROM entries WHERE id = ?",
                    (entry_id,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read entry {entry_id}: {e}")
            raise StorageError(f"Failed to read entry {entry_id}: {e}") from e

        if row is None:
            raise EntryNotFoundError(entry_id)
        return self._row_to_entry(row)

    def update(self, entry_id: str, content: str, title: str) -> Entry:
        """Overwrite title and content in place and advance ``updated``.

        ``updated`` always moves strictly forward, even when the clock has
        not ticked since the previous write.
        """
        now = _from_ns(self._clock())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT created, updated FROM entries WHERE id = ?",
                    (entry_id,),
                ).fetchone()
                if row is None:
                    raise EntryNotFoundError(entry_id)

                created = _parse_timestamp(row["created"])
                previous = _parse_timestamp(row["updated"])
                updated = max(now, previous + timedelta(microseconds=1))
                conn.execute(
                    "UPDATE entries SET title = ?, content = ?, updated = ? WHERE id = ?",
                    (title, content, _format_timestamp(updated), entry_id),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to update entry {entry_id}: {e}")
            raise StorageError(f"Failed to update entry {entry_id}: {e}") from e

        logger.info(f"Updated entry {entry_id}")
        return Entry(id=entry_id, title=title, content=content, created=created, updated=updated)

    def delete(self, entry_id: str) -> None:
        """Permanently remove an entry; raises EntryNotFoundError if absent."""
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM entries WHERE id = ?",
                    (entry_id,),
                )
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Failed to delete entry {entry_id}: {e}")
            raise StorageError(f"Failed to delete entry {entry_id}: {e}") from e

        if deleted == 0:
            raise EntryNotFoundError(entry_id)
        logger.info(f"Deleted entry {entry_id}")

    def list(self, limit: int, offset: int = 0) -> List[Entry]:
        """Return up to ``limit`` entries, newest first, skipping ``offset``."""
        if limit <= 0:
            return []
        limit = min(limit, SQLITE_MAX_INTEGER)
        offset = min(max(offset, 0), SQLITE_MAX_INTEGER)

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, title, content, created, updated FROM entries
                    ORDER BY created DESC, rowid DESC
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list entries (limit={limit}, offset={offset}): {e}")
            raise StorageError(f"Failed to list entries: {e}") from e

        return [self._row_to_entry(row) for row in rows]

    def count(self) -> int:
        """Return the number of live entries."""
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT COUNT(*) AS n FROM entries").fetchone()
                return int(row["n"])
        except sqlite3.Error as e:
            logger.error(f"Failed to count entries: {e}")
            raise StorageError(f"Failed to count entries: {e}") from e
