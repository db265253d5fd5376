"""
SQLite-backed record store.
Thread-safe via a single lock; one JSON payload per (owner, collection, id).
"""

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from store.base import MACHINES, ChangeListener, ListenerRegistry, RecordStore, Unsubscribe

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve_path(db_path: str) -> Path:
    """Resolve db_path relative to project root if not absolute."""
    p = Path(db_path)
    if p.is_absolute():
        return p
    return (_PROJECT_ROOT / db_path).resolve()


class SQLiteRecordStore(RecordStore):
    """
    Durable local store for machines and facility archives.
    Upserts merge top-level keys into the stored payload.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path is None:
            from config import get_settings
            db_path = get_settings().store.sqlite_path
        self._lock = threading.Lock()
        if db_path == ":memory:":
            self._path = Path(":memory:")
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        else:
            path = _resolve_path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._path = path
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._listeners = ListenerRegistry()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    owner_id TEXT NOT NULL,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (owner_id, collection, id)
                )
            """)
            self._conn.commit()

    def load(self, owner_id: str, collection: str = MACHINES) -> list[dict[str, Any]]:
        """Return every payload for the owner ordered by creation time."""
        with self._lock:
            cur = self._conn.execute(
                """SELECT payload_json FROM records
                   WHERE owner_id = ? AND collection = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (owner_id, collection),
            )
            rows = cur.fetchall()
        return [json.loads(row[0]) for row in rows]

    def upsert(self, owner_id: str, entity: dict[str, Any], collection: str = MACHINES) -> None:
        """Insert or merge one entity. Thread-safe."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            cur = self._conn.execute(
                "SELECT payload_json FROM records WHERE owner_id = ? AND collection = ? AND id = ?",
                (owner_id, collection, entity["id"]),
            )
            row = cur.fetchone()
            merged = json.loads(row[0]) if row else {}
            merged.update(entity)
            self._conn.execute(
                """INSERT INTO records (owner_id, collection, id, payload_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT (owner_id, collection, id) DO UPDATE SET
                       payload_json = excluded.payload_json,
                       updated_at = excluded.updated_at""",
                (owner_id, collection, entity["id"], json.dumps(merged), now, now),
            )
            self._conn.commit()
        self._publish(owner_id, collection)

    def delete(self, owner_id: str, entity_id: str, collection: str = MACHINES) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM records WHERE owner_id = ? AND collection = ? AND id = ?",
                (owner_id, collection, entity_id),
            )
            self._conn.commit()
        self._publish(owner_id, collection)

    def subscribe(
        self,
        owner_id: str,
        on_change: ChangeListener,
        collection: str = MACHINES,
    ) -> Unsubscribe:
        return self._listeners.add(owner_id, collection, on_change)

    def count(self, owner_id: str, collection: str = MACHINES) -> int:
        """Return the number of stored entities for the owner."""
        with self._lock:
            cur = self._conn.execute(
                "SELECT COUNT(*) FROM records WHERE owner_id = ? AND collection = ?",
                (owner_id, collection),
            )
            return cur.fetchone()[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def _publish(self, owner_id: str, collection: str) -> None:
        if self._listeners.has_listeners(owner_id, collection):
            self._listeners.notify(owner_id, collection, self.load(owner_id, collection))
