"""
DCA Scheduler

Calculates next execution times and runs the periodic tick: read the due
set, execute each strategy serially with a pacing delay, and isolate
per-strategy failures so one bad strategy never stops the tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog

from dcabot.config import settings
from dcabot.logging_config import tick_context

from .models import DcaFrequency, utcnow

if TYPE_CHECKING:
    from .executor import DcaExecutor, ExecutionResult
    from .store import StrategyStore

logger = logging.getLogger(__name__)
_slog = structlog.stdlib.get_logger("dca.scheduler")


_INTERVALS: Dict[DcaFrequency, timedelta] = {
    DcaFrequency.TEST: timedelta(minutes=1),
    DcaFrequency.HOURLY: timedelta(hours=1),
    DcaFrequency.DAILY: timedelta(days=1),
    DcaFrequency.WEEKLY: timedelta(weeks=1),
    DcaFrequency.MONTHLY: timedelta(days=30),
}

_DISPLAY: Dict[DcaFrequency, str] = {
    DcaFrequency.TEST: "Every 1 minute (Test mode)",
    DcaFrequency.HOURLY: "Every hour",
    DcaFrequency.DAILY: "Every day",
    DcaFrequency.WEEKLY: "Every week",
    DcaFrequency.MONTHLY: "Every month",
}


def interval_for(frequency: DcaFrequency) -> timedelta:
    """Fixed interval per frequency. MONTHLY is 30 days, not a calendar month."""
    return _INTERVALS[DcaFrequency.parse(frequency)]


def get_next_execution(frequency: DcaFrequency, after: Optional[datetime] = None) -> datetime:
    """
    Calculate the next execution time.

    Args:
        frequency: Strategy frequency
        after: Base time (default: now). Rescheduling always uses the actual
            execution time, so missed intervals are never replayed.
    """
    if after is None:
        after = utcnow()
    return after + interval_for(frequency)


def frequency_display(frequency: DcaFrequency) -> str:
    return _DISPLAY[DcaFrequency.parse(frequency)]


@dataclass
class TickSummary:
    """Outcome of one scheduler pass."""
    started_at: datetime
    due: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    paused: int = 0
    aborted: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0
    results: List["ExecutionResult"] = field(default_factory=list)


class DcaScheduler:
    """Runs due strategies through the executor, one at a time."""

    interval_for = staticmethod(interval_for)
    get_next_execution = staticmethod(get_next_execution)
    frequency_display = staticmethod(frequency_display)

    def __init__(
        self,
        store: "StrategyStore",
        executor: "DcaExecutor",
        pacing_delay_s: Optional[float] = None,
    ):
        self._store = store
        self._executor = executor
        self._pacing_delay_s = (
            pacing_delay_s if pacing_delay_s is not None else settings.dca_pacing_delay_seconds
        )
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None

    async def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Execute every due strategy once.

        Overlapping calls are serialized. A failure to read the due set aborts
        the tick with ``aborted=True``; nothing is executed.
        """
        async with self._lock:
            await self.drain()
            now = now or utcnow()
            with tick_context(tick_at=now.isoformat()):
                return await self._tick(now)

    async def drain(self) -> None:
        """Wait for an execution orphaned by a cancelled tick to finish its bookkeeping."""
        task = self._inflight
        if task is not None and not task.done():
            logger.info("Waiting for an in-flight DCA execution from a cancelled tick")
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"In-flight DCA execution failed: {task.exception()}")

    async def _tick(self, now: datetime) -> TickSummary:
        summary = TickSummary(started_at=now)
        _start = time.perf_counter()

        try:
            try:
                due = await self._store.get_due_strategies(now)
            except Exception as e:
                logger.error(f"Could not load due strategies: {e}")
                summary.aborted = True
                summary.error = str(e)
                return summary

            due.sort(key=lambda d: d.strategy.next_execution_time)
            summary.due = len(due)
            if due:
                logger.info(f"Processing {len(due)} due DCA strategies")

            for i, item in enumerate(due):
                if i > 0 and self._pacing_delay_s > 0:
                    await asyncio.sleep(self._pacing_delay_s)

                try:
                    with tick_context(strategy_id=item.strategy.id):
                        # Shielded: cancelling the tick must not abandon a trade between
                        # submission and its bookkeeping.
                        self._inflight = asyncio.ensure_future(self._executor.execute(item))
                    result = await asyncio.shield(self._inflight)
                except Exception as e:
                    logger.exception(f"Unhandled error executing strategy {item.strategy.id}: {e}")
                    summary.failed += 1
                    continue

                summary.results.append(result)
                if result.skipped:
                    summary.skipped += 1
                elif result.success:
                    summary.succeeded += 1
                else:
                    summary.failed += 1
                if result.paused:
                    summary.paused += 1

            return summary
        finally:
            summary.duration_ms = round((time.perf_counter() - _start) * 1000, 1)
            _slog.info(
                "dca_tick_completed",
                due=summary.due,
                succeeded=summary.succeeded,
                failed=summary.failed,
                skipped=summary.skipped,
                paused=summary.paused,
                aborted=summary.aborted,
                duration_ms=summary.duration_ms,
            )


__all__ = [
    "DcaScheduler",
    "TickSummary",
    "frequency_display",
    "get_next_execution",
    "interval_for",
]
