from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .strategy import ExecutionContext, Strategy
from ..config import settings


@dataclass(slots=True)
class StrategyState:
    status: str = "idle"
    run_count: int = 0
    skipped_overruns: int = 0
    consecutive_errors: int = 0
    last_started: Optional[datetime] = None
    last_completed: Optional[datetime] = None
    last_error: Optional[str] = None
    next_run: Optional[datetime] = None


class AgentRuntime:
    """Always-on fixed-interval runtime. A strategy never overlaps itself."""

    def __init__(
        self,
        *,
        logger: Optional[logging.Logger] = None,
        tick_timeout_seconds: Optional[int] = None,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self.logger = logger or logging.getLogger("agent_runtime")
        self._strategies: Dict[str, Strategy] = {}
        self._state: Dict[str, StrategyState] = {}
        self._loop_task: asyncio.Task | None = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._running = False
        self._started_at: Optional[datetime] = None
        self._tick_timeout = tick_timeout_seconds or settings.agent_runtime_tick_timeout_seconds
        self._poll_interval = poll_interval_seconds

    # ---------------------------
    # Registration
    # ---------------------------
    def register_strategy(self, strategy: Strategy) -> None:
        strategy_id = strategy.id
        if strategy_id in self._strategies:
            raise ValueError(f"Strategy '{strategy_id}' already registered")
        self._strategies[strategy_id] = strategy
        self._state[strategy_id] = StrategyState(next_run=datetime.now(timezone.utc))
        self.logger.info("Registered strategy %s", strategy_id)

    def get_state(self, strategy_id: str) -> Optional[StrategyState]:
        return self._state.get(strategy_id)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def ensure_started(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            self._started_at = datetime.now(timezone.utc)
            self.logger.info("Agent runtime starting with %d strategies", len(self._strategies))
            for strategy_id, strategy in self._strategies.items():
                try:
                    await strategy.on_start(self._make_context(strategy_id))
                except Exception as exc:  # noqa: BLE001
                    self.logger.warning("Strategy %s on_start failed: %s", strategy_id, exc, exc_info=True)
            self._loop_task = asyncio.create_task(self._run_loop(), name="agent-runtime-loop")

    async def stop(self) -> None:
        """Stop scheduling, let in-flight ticks finish (bounded by the tick timeout), then on_stop."""
        async with self._lock:
            if not self._running:
                return
            self._running = False
            self.logger.info("Agent runtime stopping")

            if self._loop_task:
                self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
                self._loop_task = None

            if self._inflight:
                await asyncio.gather(*self._inflight.values(), return_exceptions=True)
            self._inflight.clear()

            for strategy_id, strategy in self._strategies.items():
                try:
                    await strategy.on_stop(self._make_context(strategy_id))
                except Exception as exc:  # noqa: BLE001
                    self.logger.warning("Strategy %s on_stop failed: %s", strategy_id, exc, exc_info=True)

    @property
    def is_running(self) -> bool:
        return self._running

    # ---------------------------
    # Scheduling and execution
    # ---------------------------
    async def _run_loop(self) -> None:
        try:
            while self._running:
                self._schedule_due_ticks()
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            return
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Runtime loop crashed: %s", exc, exc_info=True)
            self._running = False

    def _schedule_due_ticks(self) -> None:
        now = datetime.now(timezone.utc)
        for strategy_id, strategy in self._strategies.items():
            state = self._state[strategy_id]
            if state.next_run and state.next_run > now:
                continue
            if state.status == "running":
                # previous tick overran its interval
                state.skipped_overruns += 1
                self.logger.warning("Strategy %s still running, skipping this interval", strategy_id)
                state.next_run = now + timedelta(seconds=strategy.interval_seconds)
                continue
            self._spawn(strategy_id, strategy)

    def _spawn(self, strategy_id: str, strategy: Strategy) -> None:
        task = asyncio.create_task(self._run_strategy_tick(strategy_id, strategy), name=f"tick-{strategy_id}")
        self._inflight[strategy_id] = task
        task.add_done_callback(lambda t, strategy_id=strategy_id: self._inflight.pop(strategy_id, None))

    async def _run_strategy_tick(self, strategy_id: str, strategy: Strategy) -> None:
        state = self._state[strategy_id]
        state.status = "running"
        state.last_started = datetime.now(timezone.utc)
        try:
            ctx = self._make_context(strategy_id, tick_number=state.run_count + 1)
            await asyncio.wait_for(strategy.on_tick(ctx), timeout=self._tick_timeout)
            state.last_error = None
            state.consecutive_errors = 0
        except asyncio.TimeoutError:
            state.last_error = f"tick timed out after {self._tick_timeout}s"
            state.consecutive_errors += 1
            self.logger.warning("Strategy %s timed out", strategy_id)
        except Exception as exc:  # noqa: BLE001
            state.last_error = str(exc)
            state.consecutive_errors += 1
            self.logger.warning("Strategy %s tick failed: %s", strategy_id, exc, exc_info=True)
        finally:
            state.run_count += 1
            state.last_completed = datetime.now(timezone.utc)
            state.next_run = state.last_started + timedelta(seconds=strategy.next_delay(state.consecutive_errors))
            state.status = "idle"

    async def run_strategy_now(self, strategy_id: str) -> bool:
        """Run one tick immediately and wait for it. False if unknown or already running."""
        strategy = self._strategies.get(strategy_id)
        state = self._state.get(strategy_id)
        if not strategy or not state or state.status == "running":
            return False
        await self._run_strategy_tick(strategy_id, strategy)
        return True

    # ---------------------------
    # Introspection
    # ---------------------------
    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "started_at": _iso(self._started_at),
            "inflight": len(self._inflight),
            "strategies": [
                {
                    "id": strategy_id,
                    "description": strategy.description,
                    "interval_seconds": strategy.interval_seconds,
                    "status": state.status,
                    "run_count": state.run_count,
                    "skipped_overruns": state.skipped_overruns,
                    "consecutive_errors": state.consecutive_errors,
                    "last_error": state.last_error,
                    "last_completed": _iso(state.last_completed),
                    "next_run": _iso(state.next_run),
                    **strategy.describe(),
                }
                for strategy_id, strategy in self._strategies.items()
                for state in (self._state[strategy_id],)
            ],
        }

    # ---------------------------
    # Helpers
    # ---------------------------
    def _make_context(self, strategy_id: str, tick_number: int = 0) -> ExecutionContext:
        return ExecutionContext(
            logger=self.logger.getChild(strategy_id),
            runtime=self,
            strategy_id=strategy_id,
            tick_number=tick_number,
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None
