"""RayScan Inspections — Facility Aggregator.

Read-side grouping of machines into facilities. Nothing here is stored.
"""

from __future__ import annotations

from collections.abc import Iterable

from schemas.machine import Facility, Machine


def _is_integer(value: str) -> bool:
    try:
        int(value)
    except ValueError:
        return False
    return True


def sort_entity_ids(entity_ids: Iterable[str]) -> list[str]:
    """Numeric ascending when every id is an integer, else lexicographic.

    >>> sort_entity_ids(["0108", "12", "9"])
    ['9', '12', '0108']
    """
    ids = list(entity_ids)
    if ids and all(_is_integer(i) for i in ids):
        return sorted(ids, key=lambda i: (int(i), i))
    return sorted(ids)


def list_facilities(machines: Iterable[Machine]) -> list[Facility]:
    """Group machines by entity id; the name comes from the first machine seen."""
    names: dict[str, str] = {}
    totals: dict[str, int] = {}
    completed: dict[str, int] = {}
    for machine in machines:
        names.setdefault(machine.entity_id, machine.registrant_name)
        totals[machine.entity_id] = totals.get(machine.entity_id, 0) + 1
        if machine.is_complete:
            completed[machine.entity_id] = completed.get(machine.entity_id, 0) + 1

    return [
        Facility(
            entity_id=entity_id,
            name=names[entity_id],
            machine_count=totals[entity_id],
            completed_count=completed.get(entity_id, 0),
        )
        for entity_id in sort_entity_ids(names)
    ]


def machines_for_facility(machines: Iterable[Machine], entity_id: str) -> list[Machine]:
    """One facility's machines ordered by location for listing."""
    return sorted((m for m in machines if m.entity_id == entity_id), key=lambda m: m.location)


def completed_machines(machines: Iterable[Machine], entity_id: str) -> list[Machine]:
    """Completed machines of one facility, the scope of a bulk export."""
    return [m for m in machines_for_facility(machines, entity_id) if m.is_complete]
