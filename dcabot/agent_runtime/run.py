"""Serve the agent runtime until SIGINT/SIGTERM."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from . import get_runtime, register_builtin_strategies
from ..config import settings
from ..logging_config import setup_logging

logger = logging.getLogger(__name__)


async def serve(stop_event: Optional[asyncio.Event] = None) -> dict:
    """Run registered strategies until ``stop_event`` is set; returns the final runtime status."""
    if not settings.agent_runtime_enabled:
        raise RuntimeError("Agent runtime is disabled via configuration")

    register_builtin_strategies()
    runtime = get_runtime()

    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

    logger.info(
        "Serving DCA runtime (store=%s, tick=%ss)",
        "convex" if settings.has_convex else "memory",
        settings.dca_tick_interval_seconds,
    )
    await runtime.ensure_started()
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()

    status = runtime.status()
    for entry in status["strategies"]:
        logger.info(
            "Strategy %s stopped after %d ticks (%d consecutive errors)",
            entry["id"],
            entry["run_count"],
            entry["consecutive_errors"],
        )
    return status


def main(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    setup_logging(log_level, log_format)
    asyncio.run(serve())


if __name__ == "__main__":
    main()
