from __future__ import annotations

from typing import Any, Callable, Optional

from pydantic import Field

from ..strategy import ExecutionContext, Strategy, StrategyConfig
from ...config import settings


class DcaTickConfig(StrategyConfig):
    interval_seconds: Optional[float] = Field(
        default_factory=lambda: float(settings.dca_tick_interval_seconds),
        description="Seconds between scheduler passes over the due set.",
    )


class DcaExecutionStrategy(Strategy):
    """Runs one DcaScheduler tick per interval."""

    id = "dca_execution"
    description = "Executes every due DCA strategy once per interval."
    ConfigModel = DcaTickConfig

    def __init__(
        self,
        scheduler: Any = None,
        scheduler_factory: Optional[Callable[[], Any]] = None,
        config: Optional[DcaTickConfig] = None,
        **kwargs,
    ) -> None:
        super().__init__(config=config, **kwargs)
        self._scheduler = scheduler
        self._scheduler_factory = scheduler_factory
        self.last_summary: Any = None

    async def on_start(self, ctx: ExecutionContext) -> None:
        if self._scheduler is None and self._scheduler_factory is not None:
            self._scheduler = self._scheduler_factory()
        ctx.logger.info("DCA execution online; interval=%ss", self.interval_seconds)

    async def on_tick(self, ctx: ExecutionContext) -> None:
        if self._scheduler is None:
            raise RuntimeError("DCA scheduler not configured")
        summary = await self._scheduler.tick()
        self.last_summary = summary
        if summary.aborted:
            raise RuntimeError(f"DCA tick aborted: {summary.error}")
        if summary.due:
            ctx.logger.info(
                "DCA tick %d: %d due, %d succeeded, %d failed, %d skipped",
                ctx.tick_number,
                summary.due,
                summary.succeeded,
                summary.failed,
                summary.skipped,
            )

    def describe(self) -> dict[str, Any]:
        summary = self.last_summary
        if summary is None:
            return {}
        return {
            "last_tick": {
                "due": summary.due,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "skipped": summary.skipped,
                "paused": summary.paused,
                "aborted": summary.aborted,
            }
        }

    async def on_stop(self, ctx: ExecutionContext) -> None:
        if self._scheduler is not None:
            await self._scheduler.drain()
        ctx.logger.info("DCA execution stopped")
