"""Structured logging for the escrow service, built on structlog.

Development gets colored console lines, everything else gets one JSON object
per line. Each entry carries the request_id bound by the API middleware, so a
transition, its audit event and any mediation call can be traced back to the
request that caused them.

Party email addresses are identifiers here, not secrets, but they are still
personal data: any event key ending in ``email`` is masked before rendering.

Usage:
    from trade_escrow.logging_config import setup_logging, get_logger
    setup_logging(get_settings())
    logger = get_logger(__name__)
    logger.info("escrow.created", transaction_id="abc-123", partner_email="b@x.ng")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from trade_escrow.config import Settings

# Third-party loggers that drown out escrow events below WARNING
_QUIET_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "httpx",
    "httpcore",
    "LiteLLM",
    "mcp",
)


def mask_email(address: str) -> str:
    """``buyer@example.com`` -> ``b***@example.com``."""
    local, sep, domain = address.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def mask_party_emails(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """structlog processor: mask every string value whose key ends in ``email``."""
    for key, value in event_dict.items():
        if key.endswith("email") and isinstance(value, str) and value:
            event_dict[key] = mask_email(value)
    return event_dict


def setup_logging(
    settings: Settings | None = None,
    *,
    log_level: str | None = None,
    json_logs: bool | None = None,
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Level and format come from ``settings`` (APP_LOG_LEVEL, APP_ENV) unless
    overridden by the keyword arguments.
    """
    if log_level is None:
        log_level = settings.app_log_level if settings else "INFO"
    if json_logs is None:
        json_logs = not settings.is_development if settings else False

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_party_emails,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        final_processors = [structlog.processors.format_exc_info, renderer]
    else:
        final_processors = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *final_processors,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger; pass ``__name__`` from the calling module."""
    return structlog.get_logger(name)
