"""RayScan Inspections — Type Transition Engine.

Applies an operator's category change to one machine. Three shapes:

    single  -> combination_rf   split into radiographic/fluoroscopic halves
    R or F  -> any category     drop the other half, strip the suffix
    single  -> single           relabel in place
"""

from __future__ import annotations

from core.exceptions import ValidationError
from logger import get_logger
from schemas.machine import COMBINATION_RF, NO_DATA_REASON, NUM_TUBES, TUBE_NO, InspectionType, Machine
from services.classifier import FLUOROSCOPIC_RF_LABEL, RADIOGRAPHIC_RF_LABEL
from services.inspection_steps import has_measurement
from services.machine_queries import (
    FLUOROSCOPIC_SUFFIX,
    RADIOGRAPHIC_SUFFIX,
    find_dual_role_sibling,
    find_tube_siblings,
    is_dual_role_member,
    strip_dual_role_suffix,
    strip_tube_suffix,
)
from services.registry import MachineRegistry, RegistryChange
from services.tube_sync import TubeSyncEngine

logger = get_logger(__name__)


def resolve_category(new_type: str | InspectionType) -> str | InspectionType:
    """Validate a selected category; ``combination_rf`` passes through as-is."""
    if new_type == COMBINATION_RF:
        return COMBINATION_RF
    try:
        return InspectionType(new_type)
    except ValueError:
        raise ValidationError("inspection_type", f"Unknown inspection type: {new_type}")


def settle_completion(machine: Machine) -> None:
    """Clear completion when the current category has no measurement to stand on.

    A no-data reason keeps a machine complete whatever its category.
    """
    if not machine.is_complete or machine.no_data_reason:
        return
    if not has_measurement(machine.inspection_type, machine.data):
        machine.is_complete = False


class TypeTransitionEngine:
    """Category changes for one machine, applied in a single registry step."""

    def __init__(self, registry: MachineRegistry):
        self.registry = registry
        self.tube_sync = TubeSyncEngine(registry)
        self.logger = logger.bind(service="TypeTransitionEngine")

    def change_type(self, machine_id: str, new_type: str | InspectionType, label: str) -> RegistryChange:
        """Move ``machine_id`` to ``new_type`` with display ``label``.

        Raises:
            ResourceNotFound: No such machine.
            ValidationError: ``new_type`` is not a known category.
        """
        category = resolve_category(new_type)
        with self.registry.transaction():
            machine = self.registry.require(machine_id)

            if category == COMBINATION_RF:
                if is_dual_role_member(machine):
                    self.logger.info("Machine is already a dual-role member", machine_id=machine_id)
                    return RegistryChange()
                change = self._split(machine)
            elif is_dual_role_member(machine):
                change = self._unpair(machine, category, label)
            else:
                machine.inspection_type = category
                machine.type = label
                settle_completion(machine)
                change = self.registry.apply(upserts=[machine])

        self.logger.info(
            "Machine type changed",
            machine_id=machine_id,
            new_type=str(getattr(category, "value", category)),
            upserted=list(change.upserted),
            deleted=list(change.deleted),
        )
        return change

    def _split(self, machine: Machine) -> RegistryChange:
        base = strip_tube_suffix(machine.location)
        data = {k: v for k, v in machine.data.items() if k != NO_DATA_REASON}
        radiographic = machine.model_copy(
            update={
                "id": self.registry.new_id(f"{machine.id}_R"),
                "type": RADIOGRAPHIC_RF_LABEL,
                "inspection_type": InspectionType.GENERAL,
                "location": base + RADIOGRAPHIC_SUFFIX,
                "data": {**data, TUBE_NO: "1", NUM_TUBES: "2"},
                "is_complete": False,
            },
            deep=True,
        )
        fluoroscopic = machine.model_copy(
            update={
                "id": self.registry.new_id(f"{machine.id}_F"),
                "type": FLUOROSCOPIC_RF_LABEL,
                "inspection_type": InspectionType.FLUOROSCOPE,
                "location": base + FLUOROSCOPIC_SUFFIX,
                "data": {**data, TUBE_NO: "2", NUM_TUBES: "2"},
                "is_complete": False,
            },
            deep=True,
        )
        upserts, deletes = [radiographic, fluoroscopic], [machine.id]

        # The machine leaves its tube group; the rest close ranks
        everyone = [m for m in self.registry.all() if m.id != machine.id]
        remaining = find_tube_siblings(everyone, machine)
        if remaining:
            trigger = remaining[0]
            trigger.data = {**trigger.data, NUM_TUBES: str(len(remaining))}
            plan = self.tube_sync.plan(trigger, everyone)
            if plan is not None:
                upserts += plan.upserts
                deletes += plan.deletes
        return self.registry.apply(upserts=upserts, deletes=deletes)

    def _unpair(self, machine: Machine, category: InspectionType, label: str) -> RegistryChange:
        sibling = find_dual_role_sibling(self.registry.list_by_facility(machine.entity_id), machine)
        if sibling is None:
            self.logger.warning(
                "Dual-role sibling missing; continuing as a single machine",
                machine_id=machine.id,
                location=machine.location,
            )
        machine.location = strip_dual_role_suffix(machine.location)
        machine.data = {k: v for k, v in machine.data.items() if k not in (TUBE_NO, NUM_TUBES)}
        machine.inspection_type = category
        machine.type = label
        settle_completion(machine)
        deletes = [sibling.id] if sibling is not None else []
        return self.registry.apply(upserts=[machine], deletes=deletes)
