"""RayScan Inspections — Service Layer.

Business logic for the inspection workflow. The outer UI talks to
``InspectionService`` only; the engines below it are usable on their own.

Services:
    - InspectionService: Workflow facade (import, edits, completion, reports)
    - MachineRegistry: Authoritative machine set with store mirroring
    - RowImporter: Spreadsheet rows to machines
    - TubeSyncEngine: Multi-tube sibling records
    - TypeTransitionEngine: Category changes, combination R&F splits
    - DocumentService: Report documents and facility export
    - FieldExtractor: AI extraction of measurements from photos

Usage:
    from services import InspectionService

    service = InspectionService.from_settings()
    service.import_spreadsheet("licenses.xlsx")
"""

from services.document_service import DocumentService, TemplateLibrary
from services.field_extraction import FieldExtractor, ScanImage
from services.importer import RowImporter
from services.inspection_service import InspectionService
from services.registry import MachineRegistry, RegistryChange
from services.report_builder import build_report_data
from services.tube_sync import TubeSyncEngine
from services.type_transition import TypeTransitionEngine

__all__ = [
    "DocumentService",
    "FieldExtractor",
    "InspectionService",
    "MachineRegistry",
    "RegistryChange",
    "RowImporter",
    "ScanImage",
    "TemplateLibrary",
    "TubeSyncEngine",
    "TypeTransitionEngine",
    "build_report_data",
]
