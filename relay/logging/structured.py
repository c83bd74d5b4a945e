"""Structured logging with structlog.

Provides:
- JSON-formatted log output for production
- Context processors for request_id, tenant_id
- Factory function for creating loggers
"""

import logging
import sys
from typing import Optional
from uuid import UUID

import structlog
from structlog.types import EventDict, WrappedLogger


SERVICE_NAME = "developer-portal"


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service information to log entries."""
    event_dict["service"] = SERVICE_NAME
    return event_dict


def configure_structlog(
    json_format: bool = True,
    log_level: str = "INFO",
) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production).
                     If False, output human-readable logs (for development).
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Request context lives in contextvars so concurrent deliveries
    # running on the same event loop never see each other's fields.
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_info,
    ]

    if json_format:
        renderer = [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger with the given name.

    Example:
        logger = get_logger(__name__)
        logger.info("webhook_created", webhook_id=str(webhook.id))
    """
    return structlog.get_logger(name)


def bind_context(
    request_id: Optional[str] = None,
    tenant_id: Optional[UUID] = None,
    **extra: object,
) -> None:
    """Bind context variables for the current request scope.

    These values are included in all subsequent log entries from the
    current task until clear_context() is called.
    """
    values: dict[str, str] = {}
    if request_id:
        values["request_id"] = request_id
    if tenant_id:
        values["tenant_id"] = str(tenant_id)
    for key, value in extra.items():
        if value is not None:
            values[key] = value if isinstance(value, str) else str(value)
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
