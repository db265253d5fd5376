"""RayScan Inspections — Core Exceptions.

Domain-specific exceptions for the service layer.
These exceptions are caught by the outer UI and shown as blocking messages.

Usage:
    from core.exceptions import ResourceNotFound, BusinessRuleViolation

    class InspectionService:
        def get_or_raise(self, machine_id: str):
            machine = self.registry.get(machine_id)
            if not machine:
                raise ResourceNotFound("Machine", machine_id)
            return machine
"""

from __future__ import annotations

from typing import Any


class RayScanBaseException(Exception):
    """Base exception for all RayScan domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for user-facing messages."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ResourceNotFound(RayScanBaseException):
    """Raised when a requested resource does not exist.

    Attributes:
        resource_type: Type of resource (e.g., "Machine", "Template").
        resource_id: Identifier of the missing resource.
    """

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message, {"resource_type": resource_type, "resource_id": str(resource_id)})


class ValidationError(RayScanBaseException):
    """Raised when input validation fails beyond Pydantic's scope."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error on '{field}': {message}", {"field": field})


class HeaderNotFoundError(RayScanBaseException):
    """Raised when a spreadsheet has no header row inside the scan window."""

    def __init__(self, marker: str, scanned_rows: int):
        self.marker = marker
        self.scanned_rows = scanned_rows
        super().__init__(
            "Could not find header row.",
            {"marker": marker, "scanned_rows": scanned_rows},
        )


class DuplicateImportError(RayScanBaseException):
    """Raised when an import batch contains a facility that is already loaded.

    Attributes:
        entity_id: The first colliding facility identifier.
    """

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(
            f"Facility with entity id '{entity_id}' has already been imported",
            {"entity_id": entity_id},
        )


class NoMachinesFoundError(RayScanBaseException):
    """Raised when an import batch yields zero machines."""

    def __init__(self, rows_seen: int = 0):
        self.rows_seen = rows_seen
        super().__init__("No machines found", {"rows_seen": rows_seen})


class BusinessRuleViolation(RayScanBaseException):
    """Raised when a business rule is violated.

    Examples:
        - Marking a machine complete before any measurement was recorded
        - Deleting an imported (non extra) machine

    Attributes:
        rule: Name or description of the violated rule.
        context: Additional context about the violation.
    """

    def __init__(self, rule: str, context: dict[str, Any] | None = None):
        self.rule = rule
        self.context = context or {}
        super().__init__(f"Business rule violation: {rule}", {"rule": rule, **self.context})


class ScanInProgressError(BusinessRuleViolation):
    """Raised when an extraction task is started while the same task is pending."""

    def __init__(self, task_key: str):
        self.task_key = task_key
        super().__init__("extraction already in progress", {"task": task_key})


class ExternalServiceError(RayScanBaseException):
    """Raised when an external collaborator call fails.

    Attributes:
        service_name: Name of the external service.
        original_error: The underlying error message.
    """

    def __init__(self, service_name: str, original_error: str):
        self.service_name = service_name
        self.original_error = original_error
        super().__init__(
            f"External service '{service_name}' failed: {original_error}",
            {"service": service_name, "error": original_error},
        )
