"""RayScan Inspections — Machine Registry.

In-memory authoritative set of machines for the current session.

Features:
    - Copy-on-read: callers never hold a live reference to registry state
    - One re-entrant lock serializes every mutation (read-then-write against
      the latest state, never a captured snapshot)
    - Fire-and-forget mirroring of every change to the record store on a
      single background worker (store order follows mutation order)
    - Archive-on-delete for whole facilities
    - Identifiers are never reused

Usage:
    registry = MachineRegistry(store, owner_id="local")
    registry.load()
    registry.upsert(machine)
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from core.exceptions import BusinessRuleViolation, ResourceNotFound
from logger import get_logger
from schemas.machine import FacilityArchive, Machine
from store.base import ARCHIVES, MACHINES, RecordStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegistryChange:
    """What one registry operation did."""
    upserted: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()


ChangeHandler = Callable[[RegistryChange], None]


class MachineRegistry:
    """Authoritative machine set with store mirroring."""

    def __init__(
        self,
        store: RecordStore | None,
        owner_id: str,
        executor: Executor | None = None,
    ):
        """Initialize the registry.

        Args:
            store: Record store collaborator (None keeps the registry local).
            owner_id: Owner scope passed to every store call.
            executor: Runs store calls; defaults to one background thread.
        """
        self.store = store
        self.owner_id = owner_id
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="rayscan-mirror")
        self._owns_executor = executor is None
        self._lock = threading.RLock()
        self._machines: dict[str, Machine] = {}
        self._archives: list[FacilityArchive] = []
        self._retired_ids: set[str] = set()
        self._handlers: list[ChangeHandler] = []
        self._queued: list[RegistryChange] = []
        self._depth = 0
        self._pending: set[Future] = set()
        self._in_flight = 0
        self._unsubscribe: Callable[[], None] | None = None
        self.logger = logger.bind(service="MachineRegistry", owner_id=owner_id)

    # ------------------------------------------------------------------
    # Reads (copies only)
    # ------------------------------------------------------------------

    def get(self, machine_id: str) -> Machine | None:
        with self._lock:
            machine = self._machines.get(machine_id)
            return machine.model_copy(deep=True) if machine else None

    def require(self, machine_id: str) -> Machine:
        """Get a machine or raise ResourceNotFound."""
        machine = self.get(machine_id)
        if machine is None:
            raise ResourceNotFound("Machine", machine_id)
        return machine

    def all(self) -> list[Machine]:
        with self._lock:
            return [m.model_copy(deep=True) for m in self._machines.values()]

    def list_by_facility(self, entity_id: str) -> list[Machine]:
        with self._lock:
            return [m.model_copy(deep=True) for m in self._machines.values() if m.entity_id == entity_id]

    def entity_ids(self) -> set[str]:
        with self._lock:
            return {m.entity_id for m in self._machines.values()}

    def archives(self) -> list[FacilityArchive]:
        with self._lock:
            return list(self._archives)

    def __len__(self) -> int:
        with self._lock:
            return len(self._machines)

    def __contains__(self, machine_id: object) -> bool:
        with self._lock:
            return machine_id in self._machines

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def new_id(self, candidate: str | None = None) -> str:
        """Return an identifier that is neither live nor retired.

        A taken ``candidate`` gets a random tail appended.
        """
        with self._lock:
            if candidate and not self._is_taken(candidate):
                return candidate
            prefix = candidate or "mach"
            while True:
                generated = f"{prefix}_{uuid.uuid4().hex[:12]}"
                if not self._is_taken(generated):
                    return generated

    def _is_taken(self, machine_id: str) -> bool:
        return machine_id in self._machines or machine_id in self._retired_ids

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["MachineRegistry"]:
        """Hold the mutation lock across a read-then-apply sequence.

        Change handlers run once the outermost transaction has released the lock.
        """
        with self._hold():
            yield self

    @contextmanager
    def _hold(self) -> Iterator[None]:
        """Mutation lock; queued changes go out after the outermost release."""
        queued: list[RegistryChange] = []
        try:
            with self._lock:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                    if self._depth == 0:
                        queued, self._queued = self._queued, []
        finally:
            for change in queued:
                self._notify(change)

    def upsert(self, machine: Machine) -> Machine:
        """Insert or replace one machine."""
        self.apply(upserts=[machine])
        return self.require(machine.id)

    def remove(self, machine_id: str) -> Machine | None:
        """Delete one machine; returns the removed record or None."""
        removed = self.get(machine_id)
        if removed is not None:
            self.apply(deletes=[machine_id])
        return removed

    def apply(
        self,
        upserts: Iterable[Machine] = (),
        deletes: Iterable[str] = (),
    ) -> RegistryChange:
        """Apply a set of creates/updates and deletes as one step.

        Location uniqueness within each touched facility is checked against
        the resulting state; a violation raises without changing anything.
        """
        upserts = [m.model_copy(deep=True) for m in upserts]
        deletes = [d for d in deletes]
        with self._hold():
            for machine_id in deletes:
                if machine_id not in self._machines:
                    self.logger.debug("Delete of unknown machine ignored", machine_id=machine_id)
            for machine in upserts:
                if machine.id in self._retired_ids:
                    raise BusinessRuleViolation("machine ids are never reused", {"machine_id": machine.id})

            dropped = set(deletes)
            result = {k: v for k, v in self._machines.items() if k not in dropped}
            for machine in upserts:
                result[machine.id] = machine
            self._check_locations(result, {m.entity_id for m in upserts})

            deleted = tuple(d for d in deletes if d in self._machines)
            self._machines = result
            self._retired_ids.update(deleted)
            change = RegistryChange(tuple(m.id for m in upserts), deleted)

            for machine in upserts:
                self._mirror(self._store_upsert, machine.to_record(), MACHINES)
            for machine_id in deleted:
                self._mirror(self._store_delete, machine_id, MACHINES)

            if upserts or deleted:
                self.logger.debug("Registry changed", upserted=list(change.upserted), deleted=list(change.deleted))
                self._queued.append(change)
        return change

    def mutate(self, machine_id: str, fn: Callable[[Machine], Machine | None]) -> Machine:
        """Read-modify-write one machine against the latest registry state.

        ``fn`` receives a private copy and may modify it in place or return
        a replacement.
        """
        with self._hold():
            current = self.require(machine_id)
            updated = fn(current) or current
            if updated.id != machine_id:
                raise BusinessRuleViolation("mutate cannot change a machine id", {"machine_id": machine_id})
            self.apply(upserts=[updated])
            return self.require(machine_id)

    def delete_facility(self, entity_id: str) -> FacilityArchive | None:
        """Archive a facility's machines, then delete them.

        Returns the archive, or None when the facility has no machines.
        """
        with self._hold():
            machines = self.list_by_facility(entity_id)
            if not machines:
                return None
            archive = FacilityArchive(
                id=f"archive_{entity_id}_{uuid.uuid4().hex[:8]}",
                entity_id=entity_id,
                name=machines[0].registrant_name,
                machines=tuple(machines),
            )
            self._archives.append(archive)
            self._mirror(self._store_upsert, archive.to_record(), ARCHIVES)
            self.apply(deletes=[m.id for m in machines])

        self.logger.info(
            "Facility archived and deleted",
            entity_id=entity_id,
            machines=len(machines),
        )
        return archive

    def _check_locations(self, machines: dict[str, Machine], entity_ids: set[str]) -> None:
        seen: dict[tuple[str, str], str] = {}
        for machine in machines.values():
            if machine.entity_id not in entity_ids:
                continue
            key = (machine.entity_id, machine.location)
            if key in seen:
                raise BusinessRuleViolation(
                    "machine locations must be unique within a facility",
                    {"entity_id": machine.entity_id, "location": machine.location},
                )
            seen[key] = machine.id

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        """Register a change handler; returns a callable that removes it."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def _notify(self, change: RegistryChange) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(change)
            except Exception as e:
                self.logger.warning("Change handler failed", error=str(e))

    # ------------------------------------------------------------------
    # Store mirroring and hydration
    # ------------------------------------------------------------------

    def _store_upsert(self, entity: dict[str, Any], collection: str) -> None:
        self.store.upsert(self.owner_id, entity, collection)

    def _store_delete(self, entity_id: str, collection: str) -> None:
        self.store.delete(self.owner_id, entity_id, collection)

    def _mirror(self, call: Callable[..., None], payload: Any, collection: str) -> None:
        """Submit a store call without waiting for it."""
        if self.store is None:
            return
        with self._lock:
            self._in_flight += 1
            future = self._executor.submit(call, payload, collection)
            self._pending.add(future)
        future.add_done_callback(self._mirror_done)

    def _mirror_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
            self._in_flight -= 1
        error = future.exception()
        if error is not None:
            self.logger.warning("Store sync failed", error=str(error), error_type=type(error).__name__)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for pending store calls. Returns True when all finished."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def load(self) -> int:
        """Replace in-memory state with the store's contents.

        Returns the number of machines loaded.
        """
        if self.store is None:
            return 0
        machines = [Machine.from_record(r) for r in self.store.load(self.owner_id, MACHINES)]
        archives = [FacilityArchive.from_record(r) for r in self.store.load(self.owner_id, ARCHIVES)]
        with self._hold():
            self._machines = {m.id: m for m in machines}
            self._archives = archives
            self._queued.append(RegistryChange(upserted=tuple(m.id for m in machines)))
        self.logger.info("Registry loaded", machines=len(machines), archives=len(archives))
        return len(machines)

    def attach(self) -> None:
        """Follow remote changes published by the store."""
        if self.store is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self.store.subscribe(self.owner_id, self._on_store_snapshot, MACHINES)

    def _on_store_snapshot(self, records: list[dict[str, Any]]) -> None:
        with self._hold():
            # Local writes still in flight are newer than any echo from the store
            if self._in_flight:
                return
            incoming = {}
            for record in records:
                machine = Machine.from_record(record)
                if machine.id not in self._retired_ids:
                    incoming[machine.id] = machine
            if incoming.keys() == self._machines.keys() and all(
                incoming[k] == self._machines[k] for k in incoming
            ):
                return
            removed = tuple(k for k in self._machines if k not in incoming)
            self._machines = incoming
            self._queued.append(RegistryChange(upserted=tuple(incoming), deleted=removed))

    def close(self) -> None:
        """Detach from the store and drain pending writes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.flush()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
