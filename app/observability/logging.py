"""
Structured logging for the portal.

Every entry is a structlog event dict rendered as JSON (or coloured console
output for local work). Request-scoped fields such as request_id are bound
through contextvars by the HTTP middleware; personal contact fields are
masked before rendering.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from app.config import Settings, get_settings

# Customer and lead contact data never reaches the log sink.
PERSONAL_FIELDS = frozenset({"email", "phone", "whatsapp", "address", "pin", "gst_no"})
MASK = "***"

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "stripe", "uvicorn.access")


def mask_personal_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace contact details with a mask, keeping the key so the event stays searchable."""
    for key in PERSONAL_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def app_context_processor(config: Settings) -> Processor:
    """Processor stamping service name and version on every entry."""
    service = config.service_name
    version = config.api_version

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        event_dict.setdefault("version", version)
        return event_dict

    return add_app_context


def build_processors(config: Settings) -> list[Processor]:
    """Processor chain for the configured level and format."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        app_context_processor(config),
        mask_personal_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if config.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.StackInfoRenderer())
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if config.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(config: Settings | None = None) -> None:
    """
    Configure stdlib logging and structlog for the process.

    A JSON entry looks like:
    {
        "event": "workflow_run_recorded",
        "level": "info",
        "timestamp": "2026-01-08T12:00:00.123456Z",
        "logger": "app.services.projects",
        "service": "digital-employee-portal",
        "version": "0.1.0",
        "request_id": "3f0c...",
        "run_id": "...",
        "credits_deducted": 10
    }
    """
    config = config or get_settings()
    level = getattr(logging, config.log_level.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=build_processors(config),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Bind fields to every entry logged inside the block.

    Usage:
        with log_context(request_id=request_id):
            ...
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield
