"""Entries Package - persistence and listing of stream entries.

Usage:
    >>> from entries import EntryStore, EntryNotFoundError
    >>> store = EntryStore.from_config(config)
    >>> entry_id = store.create("Hello *world*", "First post")
"""
from entries.entries import (
    Entry,
    EntryStore,
    EntryStoreError,
    EntryNotFoundError,
    StorageError,
    derive_entry_id,
)

__all__ = [
    "Entry",
    "EntryStore",
    "EntryStoreError",
    "EntryNotFoundError",
    "StorageError",
    "derive_entry_id",
]
