"""Structured logging setup."""

import logging
import sys
from typing import Any, MutableMapping

import structlog

from .dsn import redact_dsn

# Levels used by the original tooling mapped onto the standard ones.
LEVEL_ALIASES = {
    "notice": "info",
    "warn": "warning",
    "fatal": "critical",
}


def redact_credentials(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking credentials in any string value."""
    for key, value in event_dict.items():
        if isinstance(value, str) and "://" in value:
            event_dict[key] = redact_dsn(value)
    return event_dict


def resolve_level(level: str) -> int:
    name = LEVEL_ALIASES.get(level.lower(), level.lower())
    resolved = logging.getLevelName(name.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog for the process.

    Args:
        level: Minimum level; accepts the standard names plus notice/warn/fatal.
        fmt: ``json`` for machine-readable lines, anything else for console output.
    """
    renderer: Any
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_credentials,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
