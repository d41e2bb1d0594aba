"""
Structured logging for spine-warden.

Manifesto:
    Security decisions must be traceable without leaking the rows they were
    made about. Events name the resource, operation, policy and subject;
    row payloads never reach a log line.

Every module logs through ``get_logger(__name__)`` with snake_case event
names and keyword fields. Nothing is configured at import time: structlog's
defaults apply until an application (or the CLI's ``--log-level``) calls
``configure_logging``.

Architecture:
    ::

        configure_logging(level=None, json_format=None)
            │   None → WardenSettings.log_level / log_format
            ▼
        processor chain
          merge_contextvars      subject_id / tenant_id bound per request
          add_log_level
          logger=<name>         bound by get_logger
          TimeStamper(iso)
          _add_service_metadata
          _drop_row_payloads     row / old_row / data removed
          JSONRenderer (ECS field names) | ConsoleRenderer

Examples:
    >>> configure_logging(level="DEBUG", service="orders-api")
    >>> logger = get_logger(__name__)
    >>> with log_context(subject_id=7, tenant_id=42):
    ...     logger.info("rls_filter_applied", resource="orders")

Guardrails:
    ❌ logger.info("rls_decision", row=old_row)
    ✅ logger.info("rls_decision", resource="orders", policy="owner-only")

Tags:
    logging, structlog, observability, spine-warden
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from warden.core.errors import ConfigError

_SERVICE_NAME = "warden"

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

#: Keys that may carry row values and are stripped from every event.
ROW_PAYLOAD_KEYS: frozenset[str] = frozenset({"row", "old_row", "data"})


# =============================================================================
# PROCESSORS
# =============================================================================


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _drop_row_payloads(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key in ROW_PAYLOAD_KEYS.intersection(event_dict):
        del event_dict[key]
    return event_dict


def _ecs_field_names(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename ``timestamp``, ``level`` and ``logger`` to their ECS names."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    if "logger" in event_dict:
        event_dict["log.logger"] = event_dict.pop("logger")
    return event_dict


# =============================================================================
# CONFIGURATION
# =============================================================================


def configure_logging(
    level: str | None = None,
    json_format: bool | None = None,
    service: str = "warden",
    *,
    add_timestamp: bool = True,
    stream: IO[str] | None = None,
    cache_loggers: bool = True,
) -> None:
    """Install the spine-warden processor chain.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. ``None`` reads
            ``WardenSettings.log_level``.
        json_format: ``True`` for JSON, ``False`` for console output.
            ``None`` reads ``WardenSettings.log_format``.
        service: Value of the ``service.name`` field.
        add_timestamp: Include an ISO timestamp.
        stream: Output stream; defaults to stdout.
        cache_loggers: Forwarded as ``cache_logger_on_first_use``.

    Raises:
        ConfigError: ``level`` is not one of :data:`LOG_LEVELS`.
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if level is None or json_format is None:
        from warden.core.settings import get_settings

        settings = get_settings()
        level = level or settings.log_level
        if json_format is None:
            json_format = settings.log_format.lower() == "json"

    if level.upper() not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level {level!r}; expected one of {', '.join(LOG_LEVELS)}")
    numeric_level = getattr(logging, level.upper())
    output = stream if stream is not None else sys.stdout

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        _drop_row_payloads,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors += [_ecs_field_names, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=output.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=cache_loggers,
    )
    logging.basicConfig(format="%(message)s", stream=output, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Logger whose events carry ``logger=name``."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger=name)


# =============================================================================
# CONTEXT BINDING
# =============================================================================


def bind_context(**kwargs: Any) -> None:
    """Bind fields onto every subsequent event in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of a block, restoring previous values after."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


__all__ = [
    "LOG_LEVELS",
    "ROW_PAYLOAD_KEYS",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "log_context",
    "unbind_context",
]
