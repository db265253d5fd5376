"""In-process record store. Used by tests and the memory backend."""

from __future__ import annotations

import copy
import threading
from typing import Any

from store.base import MACHINES, ChangeListener, ListenerRegistry, RecordStore, Unsubscribe


class InMemoryRecordStore(RecordStore):
    """Dict-backed store; every write notifies the collection's listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[tuple[str, str], dict[str, dict[str, Any]]] = {}
        self._listeners = ListenerRegistry()

    def load(self, owner_id: str, collection: str = MACHINES) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._data.get((owner_id, collection), {}).values()))

    def upsert(self, owner_id: str, entity: dict[str, Any], collection: str = MACHINES) -> None:
        with self._lock:
            bucket = self._data.setdefault((owner_id, collection), {})
            merged = dict(bucket.get(entity["id"], {}))
            merged.update(copy.deepcopy(entity))
            bucket[entity["id"]] = merged
        self._publish(owner_id, collection)

    def delete(self, owner_id: str, entity_id: str, collection: str = MACHINES) -> None:
        with self._lock:
            self._data.get((owner_id, collection), {}).pop(entity_id, None)
        self._publish(owner_id, collection)

    def subscribe(
        self,
        owner_id: str,
        on_change: ChangeListener,
        collection: str = MACHINES,
    ) -> Unsubscribe:
        return self._listeners.add(owner_id, collection, on_change)

    def _publish(self, owner_id: str, collection: str) -> None:
        if self._listeners.has_listeners(owner_id, collection):
            self._listeners.notify(owner_id, collection, self.load(owner_id, collection))
