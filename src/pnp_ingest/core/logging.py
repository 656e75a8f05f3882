"""
Structured logging for the ingest service.

Manifesto:
    The pipeline has no synchronous caller to return errors to; logs and
    span tags are the only user-visible failure surface. Every log line is
    therefore a structured event that a log aggregator can filter on
    ``kind``, ``source_id`` or ``error_tag`` without regexes.

    - **Standardizes:** Same event shape from every worker thread
    - **Correlates:** record_id / source_id bound per message via contextvars
    - **Redacts:** Ticket free text never reaches the log stream

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="pnp-ingest")
              │
              ▼
        structlog processor chain
          1. TimeStamper(iso)
          2. merge_contextvars
          3. add_log_level / add_logger_name
          4. StackInfoRenderer / set_exc_info
          5. _add_service_metadata
          6. _elasticsearch_compatible   (JSON only)
          7. JSONRenderer | ConsoleRenderer
              │
              ▼
        stdlib logging handler (stdout)

Examples:
    >>> from pnp_ingest.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(kind="incident", source_id="INC0001"):
    ...     logger.info("message.received")

Tags:
    logging, structlog, observability, ecs, json-logging, pnp-ingest

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "pnp-ingest"

REDACTED = "[redacted]"

# Free-text ticket fields that may carry customer data
ATTRIBUTES_TO_REDACT = frozenset(
    {
        "long_description",
        "description",
        "new_work_notes",
        "backout_plan",
        "u_current_status",
        "u_description_customer_impact",
        "u_severity",
        "u_purpose_goal",
        "communications",
    }
)


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "pnp-ingest",
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(_elasticsearch_compatible)
        processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    numeric_level = getattr(logging, level.upper())

    structlog.configure(
        processors=processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
        force=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(kind="maintenance", source_id="CHG0012345"):
            logger.info("reconcile.start")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


def redact_attributes(attributes: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of a payload map safe to log.

    Nested maps (bulk envelopes) are redacted recursively.
    """
    redacted: dict[str, Any] = {}
    for key, value in attributes.items():
        if key in ATTRIBUTES_TO_REDACT:
            redacted[key] = REDACTED
        elif isinstance(value, Mapping):
            redacted[key] = redact_attributes(value)
        elif isinstance(value, list):
            redacted[key] = [redact_attributes(v) if isinstance(v, Mapping) else v for v in value]
        else:
            redacted[key] = value
    return redacted


__all__ = [
    "ATTRIBUTES_TO_REDACT",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "redact_attributes",
    "unbind_context",
]
