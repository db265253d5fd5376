"""RayScan Inspections — Inspection workflow service.

Single entry point for an outer UI. Every operation reads the latest
registry state under the registry lock, so back-to-back edits (field
update, tube sync, mark complete) never work from a stale copy.

Usage:
    service = InspectionService.from_settings()
    service.import_spreadsheet("licenses.xlsx")
    service.update_field(machine_id, "num_tubes", "3")
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any, Optional

from core.exceptions import BusinessRuleViolation, ResourceNotFound, ValidationError
from logger import get_logger
from schemas.machine import (
    NO_DATA_REASON,
    NUM_TUBES,
    ExtraMachineRequest,
    Facility,
    FacilityArchive,
    InspectionType,
    Machine,
    NoDataReason,
)
from services import facility_aggregator
from services.document_service import DocumentService, TemplateLibrary
from services.field_extraction import FieldExtractor, ScanImage
from services.importer import RowImporter
from services.inspection_steps import InspectionStep, find_step, has_measurement, steps_for
from services.machine_queries import clean_location, is_dual_role_member
from services.registry import MachineRegistry, RegistryChange
from services.report_builder import build_report_data
from services.spreadsheet import Source, read_rows
from services.tube_sync import TubeSyncEngine, parse_tube_target
from services.type_transition import TypeTransitionEngine

logger = get_logger(__name__)

EXTRA_MARKER = "-XX"
_EXTRA_SUFFIX = re.compile(r"-XX(\d+)$")

_NO_DATA_ALIASES = {
    "operational": NoDataReason.NOT_OPERATIONAL,
    "facility": NoDataReason.NOT_IN_FACILITY,
}


def is_extra_machine(machine: Machine) -> bool:
    return EXTRA_MARKER in machine.location


def resolve_no_data_reason(reason: str | NoDataReason) -> NoDataReason:
    """Accept the enum, its text, or the short names "operational"/"facility"."""
    if isinstance(reason, NoDataReason):
        return reason
    if reason in _NO_DATA_ALIASES:
        return _NO_DATA_ALIASES[reason]
    try:
        return NoDataReason(reason)
    except ValueError:
        raise ValidationError(NO_DATA_REASON, f"Unknown no-data reason: {reason}")


class InspectionService:
    """Inspection workflow over one machine registry."""

    def __init__(
        self,
        registry: MachineRegistry,
        templates: Optional[TemplateLibrary] = None,
        extractor: Optional[FieldExtractor] = None,
        inspector: Optional[str] = None,
        date_format: Optional[str] = None,
    ):
        self.registry = registry
        self.importer = RowImporter(new_id=registry.new_id)
        self.tube_sync = TubeSyncEngine(registry)
        self.transitions = TypeTransitionEngine(registry)
        self.templates = templates or TemplateLibrary()
        self.documents = DocumentService(self.templates, self.build_report_data)
        self.extractor = extractor
        self.inspector = inspector
        self.date_format = date_format
        self.logger = logger.bind(service="InspectionService", owner_id=registry.owner_id)

    @classmethod
    def from_settings(cls) -> "InspectionService":
        """Wire the service from environment configuration and hydrate it."""
        from config import get_settings
        from logger import configure_from_settings, owner_id_var
        from store import build_store

        settings = get_settings()
        configure_from_settings()
        owner_id_var.set(settings.store.owner_id)
        registry = MachineRegistry(build_store(), settings.store.owner_id)
        registry.load()
        registry.attach()
        return cls(
            registry,
            templates=TemplateLibrary.from_settings(),
            extractor=FieldExtractor(),
            inspector=settings.report.inspector,
            date_format=settings.report.date_format,
        )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_rows(self, rows: Iterable[Mapping[str, Any]]) -> list[Machine]:
        """Import one batch of rows, all or nothing.

        Raises:
            DuplicateImportError: A facility in the batch is already loaded.
            NoMachinesFoundError: The batch produced no machines.
        """
        with self.registry.transaction():
            machines = self.importer.import_rows(rows, self.registry.entity_ids())
            self.registry.apply(upserts=machines)
        return machines

    def import_spreadsheet(self, source: Source) -> list[Machine]:
        return self.import_rows(read_rows(source))

    # ------------------------------------------------------------------
    # Machine edits
    # ------------------------------------------------------------------

    def get_machine(self, machine_id: str) -> Machine:
        return self.registry.require(machine_id)

    def update_field(self, machine_id: str, key: str, value: str) -> Machine:
        """Set one data field. A ``num_tubes`` edit resizes the tube group."""
        if not key:
            raise ValidationError("key", "Field name is required")
        with self.registry.transaction():
            machine = self.registry.require(machine_id)
            if key == NUM_TUBES and is_dual_role_member(machine):
                raise BusinessRuleViolation(
                    "a combination R&F unit always has two tubes",
                    {"machine_id": machine_id},
                )

            text = "" if value is None else str(value)
            if key == NUM_TUBES and self.tube_sync.applies_to(machine):
                if parse_tube_target(text) is None:
                    self.logger.info("Tube count out of range ignored", machine_id=machine_id, value=text)
                    return machine
                machine.data = {**machine.data, key: text}
                self.tube_sync.sync(machine_id, pending=machine)
                return self.registry.require(machine_id)

            def write(m: Machine) -> None:
                m.data = {**m.data, key: text}

            return self.registry.mutate(machine_id, write)

    def update_fields(self, machine_id: str, values: Mapping[str, str]) -> Machine:
        machine = self.registry.require(machine_id)
        for key, value in values.items():
            machine = self.update_field(machine_id, key, value)
        return machine

    def update_details(
        self,
        machine_id: str,
        make: Optional[str] = None,
        model: Optional[str] = None,
        serial: Optional[str] = None,
    ) -> Machine:
        """Edit make/model/serial; omitted values are left as they are."""
        changes = {k: v for k, v in (("make", make), ("model", model), ("serial", serial)) if v is not None}

        def write(m: Machine) -> Machine:
            return m.model_copy(update=changes)

        return self.registry.mutate(machine_id, write)

    def change_type(self, machine_id: str, new_type: str | InspectionType, label: str) -> RegistryChange:
        return self.transitions.change_type(machine_id, new_type, label)

    # ------------------------------------------------------------------
    # Extra machines
    # ------------------------------------------------------------------

    def create_extra_machine(self, entity_id: str, request: ExtraMachineRequest) -> Machine:
        """Add a machine found on site that was not on the license export.

        Its location is the facility's base credential plus ``-XX<n>``.
        """
        with self.registry.transaction():
            facility = self.registry.list_by_facility(entity_id)
            if not facility:
                raise ResourceNotFound("Facility", entity_id)

            numbers = [
                int(match.group(1))
                for match in (_EXTRA_SUFFIX.search(m.location) for m in facility)
                if match
            ]
            base_credential = _EXTRA_SUFFIX.sub("", clean_location(facility[0].location))
            machine = Machine(
                id=self.registry.new_id(f"mach_xx_{uuid.uuid4().hex[:12]}"),
                full_details=f"{request.make} - {request.model} - {request.serial}",
                make=request.make,
                model=request.model,
                serial=request.serial,
                type=request.type_label,
                inspection_type=request.inspection_type,
                location=f"{base_credential}{EXTRA_MARKER}{max(numbers, default=0) + 1}",
                registrant_name=facility[0].registrant_name,
                entity_id=entity_id,
            )
            self.registry.apply(upserts=[machine])

        self.logger.info("Extra machine created", machine_id=machine.id, location=machine.location)
        return machine

    def delete_extra_machine(self, machine_id: str) -> Machine:
        """Delete an extra machine. Imported machines cannot be deleted one by one."""
        with self.registry.transaction():
            machine = self.registry.require(machine_id)
            if not is_extra_machine(machine):
                raise BusinessRuleViolation(
                    "only extra machines can be deleted",
                    {"machine_id": machine_id, "location": machine.location},
                )
            self.registry.remove(machine_id)
        self.logger.info("Extra machine deleted", machine_id=machine_id)
        return machine

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def mark_no_data(self, machine_id: str, reason: str | NoDataReason) -> Machine:
        """Close a machine that could not be measured."""
        resolved = resolve_no_data_reason(reason)

        def write(m: Machine) -> None:
            m.data = {**m.data, NO_DATA_REASON: resolved.value}
            m.is_complete = True

        machine = self.registry.mutate(machine_id, write)
        self.logger.info("Machine closed without data", machine_id=machine_id, reason=resolved.value)
        return machine

    def mark_complete(self, machine_id: str) -> Machine:
        """Complete a measured machine; any earlier no-data reason is dropped.

        Raises:
            BusinessRuleViolation: No measurement was recorded.
        """
        def write(m: Machine) -> None:
            data = {k: v for k, v in m.data.items() if k != NO_DATA_REASON}
            if not has_measurement(m.inspection_type, data):
                raise BusinessRuleViolation(
                    "a machine needs at least one measurement to be completed",
                    {"machine_id": m.id, "inspection_type": m.inspection_type.value},
                )
            m.data = data
            m.is_complete = True

        machine = self.registry.mutate(machine_id, write)
        self.logger.info("Machine completed", machine_id=machine_id)
        return machine

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def list_facilities(self) -> list[Facility]:
        return facility_aggregator.list_facilities(self.registry.all())

    def list_machines(self, entity_id: str) -> list[Machine]:
        return facility_aggregator.machines_for_facility(self.registry.all(), entity_id)

    def steps(self, machine_id: str) -> tuple[InspectionStep, ...]:
        machine = self.registry.require(machine_id)
        return steps_for(machine.inspection_type, machine.data)

    def build_report_data(self, machine: Machine | str, today: Optional[date] = None) -> dict[str, str]:
        if isinstance(machine, str):
            machine = self.registry.require(machine)
        return build_report_data(machine, self.inspector, today, self.date_format)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_template(self, filename: str, content: bytes) -> Optional[InspectionType]:
        return self.templates.add(filename, content)

    def generate_report(self, machine_id: str) -> tuple[str, bytes]:
        return self.documents.generate_report(self.registry.require(machine_id))

    def export_facility(self, entity_id: str) -> tuple[str, bytes]:
        """Zip the completed machines of one facility.

        Raises:
            ResourceNotFound: The facility has no machines.
        """
        machines = self.list_machines(entity_id)
        if not machines:
            raise ResourceNotFound("Facility", entity_id)
        completed = facility_aggregator.completed_machines(machines, entity_id)
        return self.documents.export_facility(completed, machines[0].registrant_name)

    # ------------------------------------------------------------------
    # Facility lifecycle
    # ------------------------------------------------------------------

    def delete_facility(self, entity_id: str) -> FacilityArchive:
        archive = self.registry.delete_facility(entity_id)
        if archive is None:
            raise ResourceNotFound("Facility", entity_id)
        return archive

    def delete_all_facilities(self) -> list[FacilityArchive]:
        """Archive and delete every facility."""
        with self.registry.transaction():
            archives = [self.registry.delete_facility(f.entity_id) for f in self.list_facilities()]
        return [a for a in archives if a is not None]

    def archives(self) -> list[FacilityArchive]:
        return self.registry.archives()

    # ------------------------------------------------------------------
    # AI extraction
    # ------------------------------------------------------------------

    def _require_extractor(self) -> FieldExtractor:
        if self.extractor is None:
            raise BusinessRuleViolation("AI extraction is not configured")
        return self.extractor

    def apply_scan(self, machine_id: str, step_id: str, images: Iterable[ScanImage]) -> dict[str, str]:
        """Run an AI scan for one step and store what it found.

        The machine is left unchanged when the scan fails.
        """
        extractor = self._require_extractor()
        machine = self.registry.require(machine_id)
        step = find_step(machine.inspection_type, step_id, machine.data)
        if step is None:
            raise ResourceNotFound("Step", step_id)

        updates = extractor.scan(images, step, machine.inspection_type, task_key=f"{machine_id}:{step_id}")
        if updates:
            def write(m: Machine) -> None:
                m.data = {**m.data, **updates}

            self.registry.mutate(machine_id, write)
        self.logger.info("Scan applied", machine_id=machine_id, step_id=step_id, fields=sorted(updates))
        return updates

    def parse_details(self, machine_id: str) -> Machine:
        """Fill a machine's make/model/serial from its free-text details.

        Machines that already have all three are returned as they are.
        """
        machine = self.registry.require(machine_id)
        if machine.make and machine.model and machine.serial:
            return machine
        parsed = self._require_extractor().parse_details(
            machine.full_details, task_key=f"{machine_id}:details"
        )
        return self.update_details(machine_id, **parsed)
