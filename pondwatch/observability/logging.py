"""Logging setup for the monitor and the CLI.

Production emits one JSON object per line; anywhere else gets the
coloured console renderer. Each processing cycle binds ``trigger`` and
``data_signature`` so every record it logs carries them.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from pondwatch.config.settings import Settings, get_settings


def log_level_for(settings: Settings) -> str:
    """``DEBUG`` when the debug switch is on, otherwise the configured level."""
    return "DEBUG" if settings.debug else settings.log_level


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        settings: Defaults to the process-wide settings.
    """
    settings = settings or get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level_for(settings)),
    )

    # The relay client logs every request at INFO
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Attach fields to every record logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove fields previously attached with ``bind_context``."""
    structlog.contextvars.unbind_contextvars(*keys)
