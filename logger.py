"""RayScan Inspections — Structured Logging System.

Provides structured JSON logging for production and colored text output
for local development. Redacts secrets (API keys, tokens) and injects the
owner context into every entry.

Usage:
    from logger import get_logger, configure_logging

    # Initialize at startup
    configure_logging(environment="production")

    # Get a logger
    logger = get_logger(__name__)
    logger.info("Machine imported", machine_id="mach_1a2b")
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# =============================================================================
# Context Variables
# =============================================================================
# Set by the workflow facade and automatically included in all log entries

owner_id_var: ContextVar[str | None] = ContextVar("owner_id", default=None)


# =============================================================================
# Secret Filtering
# =============================================================================

SENSITIVE_FIELD_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"credential_secret", re.IGNORECASE),
    re.compile(r"bearer", re.IGNORECASE),
)

# Email addresses never reach log output
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

BLOCKLIST_FIELDS: frozenset[str] = frozenset({
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "image_data",
})

REDACTED = "[REDACTED]"


def _is_sensitive_field(field_name: str) -> bool:
    """Check if a field name indicates sensitive data."""
    if field_name.lower() in BLOCKLIST_FIELDS:
        return True
    return any(pattern.search(field_name) for pattern in SENSITIVE_FIELD_PATTERNS)


def _sanitize_value(value: Any, field_name: str = "") -> Any:
    """Recursively sanitize a value, redacting sensitive data."""
    if _is_sensitive_field(field_name):
        return REDACTED

    if isinstance(value, str):
        return EMAIL_PATTERN.sub("[EMAIL_REDACTED]", value)

    if isinstance(value, dict):
        return {k: _sanitize_value(v, k) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return type(value)(_sanitize_value(item, field_name) for item in value)

    return value


# =============================================================================
# Structlog Processors
# =============================================================================

def add_owner_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Inject the owner id into log entries."""
    owner_id = owner_id_var.get()
    if owner_id:
        event_dict["owner_id"] = owner_id
    return event_dict


def sanitize_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Remove secrets from log entries."""
    return {k: _sanitize_value(v, k) for k, v in event_dict.items()}


def add_service_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service metadata for log aggregation."""
    event_dict["service"] = event_dict.get("service", "rayscan-inspections")
    return event_dict


# =============================================================================
# Logging Configuration
# =============================================================================

def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    json_format: bool | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        environment: Deployment environment (development, staging, production).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Force JSON output. If None, auto-detect based on environment.
    """
    use_json = json_format if json_format is not None else (environment != "development")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_context,
        add_owner_context,
        sanitize_sensitive_data,
    ]

    if use_json:
        shared_processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        shared_processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    # Suppress noisy third-party loggers
    for noisy_logger in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def configure_from_settings() -> None:
    """Configure logging from the LOG_* settings section."""
    from config import get_settings

    settings = get_settings()
    configure_logging(
        environment=settings.environment,
        log_level=settings.log.level,
        json_format=settings.log.format == "json",
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__).

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Facility archived", entity_id="108")
    """
    return structlog.stdlib.get_logger(name)


def log_external_call(
    service: str,
    operation: str,
    duration_ms: float | None = None,
    error: str | None = None,
    **context: Any,
) -> None:
    """Log a call to an external collaborator (AI provider, templating).

    Args:
        service: Name of the external service.
        operation: Logical operation name.
        duration_ms: Call duration in milliseconds.
        error: Error message if the call failed.
    """
    logger = get_logger("rayscan.external")

    if error:
        logger.error(
            "External call failed",
            external_service=service,
            operation=operation,
            duration_ms=duration_ms,
            error=error,
            **context,
        )
    else:
        logger.info(
            "External call completed",
            external_service=service,
            operation=operation,
            duration_ms=duration_ms,
            **context,
        )
