"""Structured logging setup for the store and its maintenance task."""

from __future__ import annotations

import logging
from typing import Iterable

import structlog


def configure_logging(
    handlers: Iterable[logging.Handler] | None = None,
    level: str | int = logging.INFO,
) -> None:
    """Route structlog events through stdlib logging as JSON lines.

    ``level`` accepts a stdlib level name (as validated by ``Settings.log_level``)
    or number. Per-entry snapshot rows of the maintenance sweep are emitted at
    debug level, so they only show up when the level is lowered.
    """

    if handlers is None:
        handlers = [logging.StreamHandler()]

    logging.basicConfig(
        level=level,
        handlers=list(handlers),
        format="%(message)s",
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
