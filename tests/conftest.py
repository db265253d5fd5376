"""RayScan Inspections — Pytest Configuration & Fixtures.

Provides:
1. An in-memory record store.
2. A registry whose store mirroring runs inline, so store contents can be
   asserted right after a mutation.
3. Factory fixtures for machines and import rows.

Usage:
    def test_something(registry, make_machine):
        registry.upsert(make_machine(location="R-1"))
"""

import itertools
from concurrent.futures import Executor, Future
from typing import Any, Callable

import pytest

from config import get_settings
from schemas.machine import InspectionType, Machine
from services.inspection_service import InspectionService
from services.registry import MachineRegistry
from store.memory_store import InMemoryRecordStore

OWNER = "owner-1"


class InlineExecutor(Executor):
    """Runs submitted calls immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep tests independent of the developer's environment and .env."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("EXTRACTION_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def registry(store) -> MachineRegistry:
    reg = MachineRegistry(store, OWNER, executor=InlineExecutor())
    yield reg
    reg.close()


@pytest.fixture
def make_registry():
    """Factory for extra registries sharing the same owner; all are closed on teardown."""
    created: list[MachineRegistry] = []

    def _make(record_store, executor=None) -> MachineRegistry:
        reg = MachineRegistry(record_store, OWNER, executor=executor or InlineExecutor())
        created.append(reg)
        return reg

    yield _make
    for reg in created:
        reg.close()


@pytest.fixture
def service(registry) -> InspectionService:
    return InspectionService(registry, inspector="RH", date_format="%m/%d/%Y")


@pytest.fixture
def make_machine() -> Callable[..., Machine]:
    """Factory for machines with unique ids and sensible defaults."""
    counter = itertools.count(1)

    def _make(**overrides: Any) -> Machine:
        n = next(counter)
        fields: dict[str, Any] = {
            "id": f"m{n}",
            "full_details": "Acme - X100 - SN1",
            "make": "Acme",
            "model": "X100",
            "serial": "SN1",
            "type": "Radiographic",
            "inspection_type": InspectionType.GENERAL,
            "location": f"R-{n}",
            "registrant_name": "Clinic One",
            "entity_id": "100",
        }
        fields.update(overrides)
        return Machine(**fields)

    return _make


@pytest.fixture
def make_row() -> Callable[..., dict[str, Any]]:
    """Factory for spreadsheet rows as the importer receives them."""

    def _row(
        facility: str = "Clinic One",
        details: str = "Acme - X100 - SN1",
        credential_type: str = "Radiographic",
        credential: str = "R-1",
        entity_id: Any = 100,
    ) -> dict[str, Any]:
        row = {
            "Entity Name": f"{facility} ({details})" if details is not None else facility,
            "License/Credential Type": credential_type,
            "License/Credential #": credential,
        }
        if entity_id is not None:
            row["Entity ID"] = entity_id
        return row

    return _row
