"""RayScan Inspections — Machine Schemas.

Pydantic models for machines, derived facilities and facility archives.
Field aliases are the camelCase names used by the record store, so a stored
entity round-trips through ``Machine.from_record`` without losing any key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InspectionType(str, Enum):
    """Stored inspection categories.

    The category governs the guided-form steps, the report defaults and
    the template used for the final document.
    """
    DENTAL = "dental"
    GENERAL = "general"
    ANALYTICAL = "analytical"
    FLUOROSCOPE = "fluoroscope"
    CT = "ct"
    CABINET = "cabinet"
    BONE_DENSITY = "bone_density"
    INDUSTRIAL = "industrial"
    CBCT = "cbct"
    PANORAMIC = "panoramic"
    ACCELERATOR = "accelerator"


# Selection-only value: splits a machine into a radiographic/fluoroscopic pair.
COMBINATION_RF = "combination_rf"

# Categories whose machines may carry several tubes.
MULTI_TUBE_TYPES: frozenset[InspectionType] = frozenset({
    InspectionType.GENERAL,
    InspectionType.FLUOROSCOPE,
    InspectionType.CT,
})

# Reserved data keys
TUBE_NO = "tube_no"
NUM_TUBES = "num_tubes"
NO_DATA_REASON = "noDataReason"


class NoDataReason(str, Enum):
    """Fixed reasons for an inspected-but-unmeasurable machine."""
    NOT_OPERATIONAL = "MACHINE NOT OPERATIONAL"
    NOT_IN_FACILITY = "MACHINE NOT IN FACILITY"


class Machine(BaseModel):
    """One inspectable machine (one tube, or one half of a dual-role unit)."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(..., min_length=1)
    full_details: str = Field(default="", alias="fullDetails")
    make: str = ""
    model: str = ""
    serial: str = ""
    type: str = ""
    inspection_type: InspectionType = Field(default=InspectionType.DENTAL, alias="inspectionType")
    location: str = ""
    registrant_name: str = Field(default="", alias="registrantName")
    entity_id: str = Field(..., alias="entityId")
    data: dict[str, str] = Field(default_factory=dict)
    is_complete: bool = Field(default=False, alias="isComplete")

    @field_validator("make", "model", "serial", "type", "full_details", mode="before")
    @classmethod
    def none_is_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("inspection_type", mode="before")
    @classmethod
    def legacy_category(cls, v: Any) -> Any:
        """Records written before categories existed default to dental."""
        return InspectionType.DENTAL if v in (None, "") else v

    @field_validator("data", mode="before")
    @classmethod
    def stringify_data(cls, v: Any) -> dict[str, str]:
        if not v:
            return {}
        return {str(k): "" if val is None else str(val) for k, val in dict(v).items()}

    @field_validator("entity_id", mode="before")
    @classmethod
    def entity_id_as_text(cls, v: Any) -> Any:
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v) if isinstance(v, (int, float)) else v

    @property
    def no_data_reason(self) -> str | None:
        return self.data.get(NO_DATA_REASON) or None

    def to_record(self) -> dict[str, Any]:
        """Serialize with store (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Machine":
        """Rebuild a machine from a stored entity, ignoring store bookkeeping keys."""
        known = {
            "id", "fullDetails", "make", "model", "serial", "type", "inspectionType",
            "location", "registrantName", "entityId", "data", "isComplete",
        }
        return cls.model_validate({k: v for k, v in record.items() if k in known})


class ExtraMachineRequest(BaseModel):
    """Operator input for an ad-hoc machine found on site."""

    model_config = ConfigDict(str_strip_whitespace=True)

    make: str = ""
    model: str = ""
    serial: str = ""
    inspection_type: InspectionType = InspectionType.DENTAL
    type_label: str = "Intraoral"


class Facility(BaseModel):
    """Derived facility summary (never stored)."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str
    machine_count: int = Field(ge=0)
    completed_count: int = Field(ge=0)

    @property
    def is_completed(self) -> bool:
        return self.completed_count == self.machine_count


class FacilityArchive(BaseModel):
    """Immutable snapshot of a facility taken before its machines are deleted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    entity_id: str = Field(alias="entityId")
    name: str
    archived_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="archivedAt",
    )
    machines: tuple[Machine, ...] = ()

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "FacilityArchive":
        return cls.model_validate(record)
