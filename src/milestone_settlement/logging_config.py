"""Structured logging configuration using structlog.

JSON lines outside development, colored console output in development.
Every entry carries the service name and the configured settlement network
mode, plus the request_id bound by the HTTP middleware when there is one,
so a deposit can be followed from the HTTP edge through the fallback
controller down to the settlement peer call.

Event names are dotted ``<area>.<what_happened>`` strings, e.g.
``agreement.funded``, ``fallback.simulated``, ``peer.request_retry``.
Amounts are logged as strings so JSON consumers never see them as floats.

Usage:
    from milestone_settlement.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True, network_mode="LOCAL_DEV")
    logger = get_logger(__name__)
    logger.info("agreement.created", agreement_id="abc-123", total="100000")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping

SERVICE_NAME = "milestone-settlement"

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")


def _static_fields(**fields: Any) -> structlog.types.Processor:
    """Processor that stamps fixed fields onto every event without overriding bound ones."""

    def processor(
        logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def setup_logging(
    log_level: str = "DEBUG",
    json_logs: bool = False,
    network_mode: str | None = None,
) -> None:
    """Configure structlog and route stdlib logging through the same renderer.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, output JSON (for production). If False, colored console.
        network_mode: Configured settlement network, stamped on every entry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _static_fields(service=SERVICE_NAME, network_mode=network_mode),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        # JSON output needs the traceback as a string field.
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to ``name`` (usually ``__name__``)."""
    return structlog.get_logger(name)
