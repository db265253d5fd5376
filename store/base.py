"""RayScan Inspections — Record store contract.

The registry only needs four operations from persistence: load, upsert,
delete and subscribe. Entities are plain JSON-compatible dicts keyed by
their ``id``, scoped by owner and collection.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from logger import get_logger

logger = get_logger(__name__)

MACHINES = "machines"
ARCHIVES = "archives"

# Receives the full current snapshot of one owner's collection.
ChangeListener = Callable[[list[dict[str, Any]]], None]
Unsubscribe = Callable[[], None]


class RecordStore(ABC):
    """Abstract record store. Upserts are at-least-once; ids are the keys."""

    @abstractmethod
    def load(self, owner_id: str, collection: str = MACHINES) -> list[dict[str, Any]]:
        """Return every entity stored for the owner."""

    @abstractmethod
    def upsert(self, owner_id: str, entity: dict[str, Any], collection: str = MACHINES) -> None:
        """Insert or merge an entity by id."""

    @abstractmethod
    def delete(self, owner_id: str, entity_id: str, collection: str = MACHINES) -> None:
        """Delete an entity; deleting a missing id is not an error."""

    @abstractmethod
    def subscribe(
        self,
        owner_id: str,
        on_change: ChangeListener,
        collection: str = MACHINES,
    ) -> Unsubscribe:
        """Register a snapshot listener; returns a callable that removes it."""


class ListenerRegistry:
    """Snapshot listeners keyed by (owner, collection). Thread-safe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[tuple[str, str], list[ChangeListener]] = {}

    def add(self, owner_id: str, collection: str, listener: ChangeListener) -> Unsubscribe:
        key = (owner_id, collection)
        with self._lock:
            self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def notify(self, owner_id: str, collection: str, snapshot: list[dict[str, Any]]) -> None:
        with self._lock:
            listeners = list(self._listeners.get((owner_id, collection), []))
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(
                    "Store listener failed",
                    owner_id=owner_id,
                    collection=collection,
                    error=str(e),
                )

    def has_listeners(self, owner_id: str, collection: str) -> bool:
        with self._lock:
            return bool(self._listeners.get((owner_id, collection)))
