"""RayScan Inspections — Schemas.

Pydantic models shared by the service layer and the record store.
"""

from .machine import (
    COMBINATION_RF,
    MULTI_TUBE_TYPES,
    NO_DATA_REASON,
    NUM_TUBES,
    TUBE_NO,
    ExtraMachineRequest,
    Facility,
    FacilityArchive,
    InspectionType,
    Machine,
    NoDataReason,
)

__all__ = [
    "COMBINATION_RF",
    "MULTI_TUBE_TYPES",
    "NO_DATA_REASON",
    "NUM_TUBES",
    "TUBE_NO",
    "ExtraMachineRequest",
    "Facility",
    "FacilityArchive",
    "InspectionType",
    "Machine",
    "NoDataReason",
]
