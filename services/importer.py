"""RayScan Inspections — Row Importer.

Turns normalized spreadsheet rows into Machine records.

Expected columns:
    Entity Name              "<facility> (<make> - <model> - <serial>)"
    License/Credential Type  free text, classified into a category
    License/Credential #     machine label (location)
    Entity ID                facility identifier

A combination R&F unit is listed as two consecutive rows with the same
facility/make/model/serial: the first row becomes the radiographic half,
the second the fluoroscopic half.
"""

from __future__ import annotations

import math
import re
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from core.exceptions import DuplicateImportError, NoMachinesFoundError
from logger import get_logger
from schemas.machine import NUM_TUBES, TUBE_NO, InspectionType, Machine
from services.classifier import FLUOROSCOPIC_RF_LABEL, RADIOGRAPHIC_RF_LABEL, classify
from services.machine_queries import FLUOROSCOPIC_SUFFIX, RADIOGRAPHIC_SUFFIX, dual_role_key

logger = get_logger(__name__)

ENTITY_NAME = "Entity Name"
CREDENTIAL_TYPE = "License/Credential Type"
CREDENTIAL_NUMBER = "License/Credential #"
ENTITY_ID = "Entity ID"

_ENTITY_NAME_PATTERN = re.compile(r"^(?P<facility>[^(]*)\((?P<details>.*)\)")
_DETAIL_SEPARATOR = re.compile(r"-\s+")


@dataclass(frozen=True)
class ParsedEntityName:
    facility: str
    full_details: str
    make: str
    model: str
    serial: str


def _cell(row: Mapping[str, Any], key: str) -> str:
    """Read a cell as text; blanks and NaN become ""."""
    value = row.get(key)
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def parse_entity_name(raw: str) -> ParsedEntityName | None:
    """Split an entity name into facility and make/model/serial.

    Returns None when the name has no parenthesized detail block.
    """
    match = _ENTITY_NAME_PATTERN.match(raw or "")
    if not match:
        return None
    facility = match.group("facility").strip()
    full_details = match.group("details")
    parts = [p.strip() for p in _DETAIL_SEPARATOR.split(full_details)]
    make = parts[0] if parts else ""
    model = parts[1] if len(parts) > 1 else ""
    serial = parts[2] if len(parts) > 2 else ""
    return ParsedEntityName(facility, full_details, make, model, serial)


def _default_id() -> str:
    return f"mach_{uuid.uuid4().hex}"


class RowImporter:
    """Builds candidate machines from one spreadsheet batch.

    The importer never touches the registry: it receives the entity ids
    already loaded and returns the machines to add, or raises.
    """

    def __init__(self, new_id: Callable[[], str] | None = None):
        self._new_id = new_id or _default_id
        self.logger = logger.bind(service="RowImporter")

    def import_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        existing_entity_ids: Iterable[str] = (),
    ) -> list[Machine]:
        """Validate a batch and build its machines (all or nothing).

        Raises:
            DuplicateImportError: A facility in the batch is already loaded.
            NoMachinesFoundError: No row produced a machine.
        """
        rows = list(rows)
        accepted: list[tuple[Mapping[str, Any], ParsedEntityName]] = []
        for row in rows:
            parsed = parse_entity_name(_cell(row, ENTITY_NAME))
            if parsed is None:
                continue
            accepted.append((row, parsed))

        existing = set(existing_entity_ids)
        for row, parsed in accepted:
            entity_id = _cell(row, ENTITY_ID) or parsed.facility
            if entity_id in existing:
                self.logger.warning("Import rejected - facility already loaded", entity_id=entity_id)
                raise DuplicateImportError(entity_id)

        machines: list[Machine] = []
        # Radiographic halves still waiting for their fluoroscopic row
        pending_pairs: dict[tuple[str, ...], Machine] = {}

        for row, parsed in accepted:
            credential_type = _cell(row, CREDENTIAL_TYPE)
            location = _cell(row, CREDENTIAL_NUMBER) or parsed.facility
            entity_id = _cell(row, ENTITY_ID) or parsed.facility
            category, combination = classify(credential_type)

            if not combination:
                machines.append(self._machine(parsed, entity_id, location, credential_type, category))
                continue

            key = (entity_id, *dual_role_key(parsed.facility, parsed.make, parsed.model, parsed.serial))
            radiographic = pending_pairs.pop(key, None)
            if radiographic is None:
                radiographic = self._radiographic_half(parsed, entity_id, location)
                pending_pairs[key] = radiographic
                machines.append(radiographic)
            else:
                machines.append(self._fluoroscopic_half(radiographic))

        # Single-row encoding of a combination unit: complete the pair
        for radiographic in pending_pairs.values():
            machines.insert(machines.index(radiographic) + 1, self._fluoroscopic_half(radiographic))

        if not machines:
            self.logger.warning("Import produced no machines", rows=len(rows))
            raise NoMachinesFoundError(rows_seen=len(rows))

        self.logger.info(
            "Import batch parsed",
            rows=len(rows),
            machines=len(machines),
            facilities=len({m.entity_id for m in machines}),
        )
        return machines

    def _machine(
        self,
        parsed: ParsedEntityName,
        entity_id: str,
        location: str,
        label: str,
        category: InspectionType,
        data: dict[str, str] | None = None,
    ) -> Machine:
        return Machine(
            id=self._new_id(),
            full_details=parsed.full_details,
            make=parsed.make,
            model=parsed.model,
            serial=parsed.serial,
            type=label,
            inspection_type=category,
            location=location,
            registrant_name=parsed.facility,
            entity_id=entity_id,
            data=data or {},
        )

    def _radiographic_half(self, parsed: ParsedEntityName, entity_id: str, location: str) -> Machine:
        return self._machine(
            parsed,
            entity_id,
            location + RADIOGRAPHIC_SUFFIX,
            RADIOGRAPHIC_RF_LABEL,
            InspectionType.GENERAL,
            {TUBE_NO: "1", NUM_TUBES: "2"},
        )

    def _fluoroscopic_half(self, radiographic: Machine) -> Machine:
        base = radiographic.location[: -len(RADIOGRAPHIC_SUFFIX)]
        return radiographic.model_copy(
            update={
                "id": self._new_id(),
                "type": FLUOROSCOPIC_RF_LABEL,
                "inspection_type": InspectionType.FLUOROSCOPE,
                "location": base + FLUOROSCOPIC_SUFFIX,
                "data": {TUBE_NO: "2", NUM_TUBES: "2"},
            }
        )
