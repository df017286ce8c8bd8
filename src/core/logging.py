from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_CONFIGURED = False


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        from src.core.config import get_settings

        level = get_settings().log_level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logging(level: int | str | None = None) -> None:
    """Configure structlog to emit JSON logs with contextvars support.

    The level defaults to ``LOG_LEVEL`` from settings and accepts either a
    stdlib level number or its name.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = _resolve_level(level)
    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        stream=sys.stdout,
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(resolved),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_component_logger(component: str, **context: Any) -> structlog.typing.FilteringBoundLogger:
    """Return a logger pre-bound with a ``component`` key, e.g. ``repository:evaluation``."""
    return structlog.get_logger().bind(component=component, **context)
