"""
Structured logging for the DCA runtime and CLI.

Every record, whether it comes from structlog (``dca_tick_completed`` and
friends) or from a stdlib ``logging.getLogger(__name__)`` call, goes through
one ``ProcessorFormatter`` on stdout. Scheduler passes bind ``tick_at`` and
``strategy_id`` with :func:`tick_context` so execution logs can be joined to
the tick that produced them.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from .config import settings

_QUIET_LOGGERS = ("httpcore", "httpx", "solana.rpc")


def _renderer(level: int, log_format: str) -> structlog.types.Processor:
    fmt = log_format.lower()
    if fmt == "auto":
        fmt = "console" if level == logging.DEBUG else "json"
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    raise ValueError(f"Unknown log format: {log_format!r}")


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Override log level (default: settings.log_level)
        log_format: ``json``, ``console`` or ``auto`` (default: settings.log_format)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    renderer = _renderer(level, log_format or settings.log_format)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if isinstance(renderer, structlog.processors.JSONRenderer):
        shared_processors.append(structlog.processors.format_exc_info)

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
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def tick_context(**values: object) -> Iterator[None]:
    """Bind ``values`` to every log line emitted inside the block, then restore."""
    with structlog.contextvars.bound_contextvars(**values):
        yield
