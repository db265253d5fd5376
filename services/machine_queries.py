"""RayScan Inspections — Machine identity queries.

Machines carry no foreign keys: a dual-role pair and a group of tube
siblings are recognized by their location suffixes and their
facility/make/model/serial tuple. Every such match goes through this module.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from schemas.machine import Machine

RADIOGRAPHIC_SUFFIX = " (R)"
FLUOROSCOPIC_SUFFIX = " (F)"

_TUBE_SUFFIX = re.compile(r" \((\d+)\)$")
_DUAL_ROLE_SUFFIX = re.compile(r" \((R|F)\)$")


def tube_index(location: str) -> int | None:
    """Return n for a location ending in " (n)", else None."""
    match = _TUBE_SUFFIX.search(location)
    return int(match.group(1)) if match else None


def strip_tube_suffix(location: str) -> str:
    return _TUBE_SUFFIX.sub("", location)


def dual_role_half(location: str) -> str | None:
    """Return "R" or "F" for a dual-role member location, else None."""
    match = _DUAL_ROLE_SUFFIX.search(location)
    return match.group(1) if match else None


def strip_dual_role_suffix(location: str) -> str:
    return _DUAL_ROLE_SUFFIX.sub("", location)


def is_dual_role_member(machine: Machine) -> bool:
    return dual_role_half(machine.location) is not None


def clean_location(location: str) -> str:
    """Registration number as printed on reports: no dual-role or tube suffix."""
    return strip_tube_suffix(strip_dual_role_suffix(location))


def same_unit(a: Machine, b: Machine) -> bool:
    """True when both records describe the same physical unit of one facility."""
    return (
        a.entity_id == b.entity_id
        and a.make == b.make
        and a.model == b.model
        and a.serial == b.serial
    )


def find_tube_siblings(machines: Iterable[Machine], machine: Machine) -> list[Machine]:
    """All machines (the given one included) sharing its unit and base location.

    Order is preserved from ``machines``.
    """
    base = strip_tube_suffix(machine.location)
    return [
        m for m in machines
        if same_unit(m, machine)
        and not is_dual_role_member(m)
        and strip_tube_suffix(m.location) == base
    ]


def find_dual_role_sibling(machines: Iterable[Machine], machine: Machine) -> Machine | None:
    """The other half of a dual-role pair, or None when it no longer exists."""
    half = dual_role_half(machine.location)
    if half is None:
        return None
    base = strip_dual_role_suffix(machine.location)
    other = FLUOROSCOPIC_SUFFIX if half == "R" else RADIOGRAPHIC_SUFFIX
    for m in machines:
        if m.id != machine.id and same_unit(m, machine) and m.location == base + other:
            return m
    return None


def dual_role_key(registrant_name: str, make: str, model: str, serial: str) -> tuple[str, str, str, str]:
    """Key pairing the two spreadsheet rows of one combination unit."""
    return (registrant_name, make, model, serial)
