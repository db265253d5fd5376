"""Record store layer: contract plus in-memory and SQLite adapters."""

from store.base import ARCHIVES, MACHINES, RecordStore
from store.memory_store import InMemoryRecordStore
from store.sqlite_store import SQLiteRecordStore

__all__ = [
    "ARCHIVES",
    "MACHINES",
    "InMemoryRecordStore",
    "RecordStore",
    "SQLiteRecordStore",
    "build_store",
]


def build_store() -> RecordStore:
    """Build the record store selected by STORE_BACKEND."""
    from config import get_settings

    settings = get_settings().store
    if settings.backend == "memory":
        return InMemoryRecordStore()
    return SQLiteRecordStore(settings.sqlite_path)
