"""RayScan Inspections — Tube Synchronization Engine.

Keeps the records of a multi-tube machine in step with its ``num_tubes``
field: one record per tube, labelled ``"<base> (1)"`` .. ``"<base> (n)"``.
"""

from __future__ import annotations

from typing import NamedTuple

from logger import get_logger
from schemas.machine import MULTI_TUBE_TYPES, NUM_TUBES, TUBE_NO, Machine
from services.machine_queries import find_tube_siblings, is_dual_role_member, strip_tube_suffix, tube_index
from services.registry import MachineRegistry, RegistryChange

logger = get_logger(__name__)

MIN_TUBES = 1
MAX_TUBES = 4


def parse_tube_target(value: str | None) -> int | None:
    """Return the requested tube count, or None when it is not a usable integer."""
    try:
        target = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not MIN_TUBES <= target <= MAX_TUBES:
        return None
    return target


class TubePlan(NamedTuple):
    """Registry writes that bring one tube group to its target size."""
    upserts: list[Machine]
    deletes: list[str]
    base: str
    target: int
    created: int


class TubeSyncEngine:
    """Creates, relabels and removes tube siblings for one machine."""

    def __init__(self, registry: MachineRegistry):
        self.registry = registry
        self.logger = logger.bind(service="TubeSyncEngine")

    def applies_to(self, machine: Machine) -> bool:
        return machine.inspection_type in MULTI_TUBE_TYPES and not is_dual_role_member(machine)

    def sync(self, machine_id: str, pending: Machine | None = None) -> RegistryChange:
        """Reconcile the sibling group of ``machine_id`` with its num_tubes.

        ``pending`` is an edited copy of the machine that has not been
        applied yet; it is written in the same registry step as the group.
        Dual-role members, single-tube categories and unusable counts are
        left alone (only ``pending`` itself is written, if given).
        """
        with self.registry.transaction():
            trigger = pending if pending is not None else self.registry.get(machine_id)
            if trigger is None:
                return RegistryChange()
            plan = self.plan(trigger, self.registry.all())
            if plan is None:
                return self.registry.apply(upserts=[pending]) if pending is not None else RegistryChange()
            change = self.registry.apply(upserts=plan.upserts, deletes=plan.deletes)

        self.logger.info(
            "Tubes synchronized",
            machine_id=machine_id,
            base_location=plan.base,
            target=plan.target,
            created=plan.created,
            deleted=len(plan.deletes),
        )
        return change

    def plan(self, trigger: Machine, everyone: list[Machine]) -> TubePlan | None:
        """Work out the writes for ``trigger``'s group without applying them.

        ``trigger`` replaces its stored copy in ``everyone``. Returns None
        when the group is left alone.
        """
        if not self.applies_to(trigger):
            return None
        target = parse_tube_target(trigger.data.get(NUM_TUBES))
        if target is None:
            self.logger.debug("Tube count ignored", machine_id=trigger.id, value=trigger.data.get(NUM_TUBES))
            return None

        if any(m.id == trigger.id for m in everyone):
            everyone = [trigger if m.id == trigger.id else m for m in everyone]
        else:
            everyone = [*everyone, trigger]
        siblings = self._ordered(everyone, find_tube_siblings(everyone, trigger))
        base = strip_tube_suffix(trigger.location)

        deletes: list[str] = []
        if len(siblings) > target:
            siblings, removed = self._trim(siblings, trigger.id, target)
            deletes = [m.id for m in removed]

        upserts: list[Machine] = []
        for position, sibling in enumerate(siblings, start=1):
            sibling.location = f"{base} ({position})"
            sibling.data = {**sibling.data, TUBE_NO: str(position), NUM_TUBES: str(target)}
            upserts.append(sibling)

        created = target - len(siblings)
        for position in range(len(siblings) + 1, target + 1):
            upserts.append(self._new_tube(trigger, base, position, target))
        return TubePlan(upserts, deletes, base, target, created)

    @staticmethod
    def _ordered(everyone: list[Machine], siblings: list[Machine]) -> list[Machine]:
        """Existing tube number first, registry order breaking ties."""
        position = {m.id: i for i, m in enumerate(everyone)}
        return sorted(siblings, key=lambda m: (tube_index(m.location) or 0, position[m.id]))

    @staticmethod
    def _trim(siblings: list[Machine], trigger_id: str, target: int) -> tuple[list[Machine], list[Machine]]:
        """Keep the trigger plus the lowest-positioned others."""
        others = [m for m in siblings if m.id != trigger_id]
        kept_ids = {trigger_id} | {m.id for m in others[: target - 1]}
        kept = [m for m in siblings if m.id in kept_ids]
        removed = [m for m in siblings if m.id not in kept_ids]
        return kept, removed

    def _new_tube(self, trigger: Machine, base: str, position: int, target: int) -> Machine:
        return Machine(
            id=self.registry.new_id(),
            full_details=trigger.full_details,
            make=trigger.make,
            model=trigger.model,
            serial=trigger.serial,
            type=trigger.type,
            inspection_type=trigger.inspection_type,
            location=f"{base} ({position})",
            registrant_name=trigger.registrant_name,
            entity_id=trigger.entity_id,
            data={TUBE_NO: str(position), NUM_TUBES: str(target)},
        )
