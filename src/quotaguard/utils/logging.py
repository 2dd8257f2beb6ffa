"""
Structured logging configuration for quotaguard.

Every event carries the service name and deployment environment. Dispatch
code binds ``request_url`` and ``retry_count`` through structlog
contextvars, so anything logged while a request is being admitted or
retried is tagged with it.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from quotaguard.core.config import get_settings

SERVICE_NAME = "quotaguard"


class ServiceContext:
    """Processor that stamps every event with the service and environment."""

    def __init__(self, service: str = SERVICE_NAME, environment: str | None = None):
        self.service = service
        self.environment = environment

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.service)
        if self.environment:
            event_dict.setdefault("environment", self.environment)
        return event_dict


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON output format
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    json_format = json_format if json_format is not None else (
        settings.log_format == "json"
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        ServiceContext(environment=settings.environment),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **context: Any) -> structlog.BoundLogger:
    """
    Get a logger bound to a component name.

    Args:
        name: Component name, emitted as ``logger``
        **context: Extra key/values bound to every event

    Returns:
        Bound structlog logger
    """
    if name:
        context.setdefault("logger", name)
    return structlog.get_logger().bind(**context)
