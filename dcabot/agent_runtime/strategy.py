"""Base types for strategies hosted by the agent runtime."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..config import Settings, settings


class StrategyConfig(BaseModel):
    interval_seconds: Optional[float] = Field(
        default=None,
        description="Seconds between on_tick calls; the runtime default applies when unset.",
    )
    max_backoff_multiplier: int = Field(
        default=5,
        ge=1,
        description="Cap on how far consecutive failed ticks stretch the interval.",
    )


@dataclass
class ExecutionContext:
    """Per-call context handed to a strategy hook."""

    logger: logging.Logger
    runtime: Any = None
    strategy_id: Optional[str] = None
    tick_number: int = 0
    settings: Settings = field(default_factory=lambda: settings, repr=False)


class Strategy:
    """Base class for runtime strategies. Subclasses implement on_tick."""

    id: str = "strategy"
    description: str = "runtime strategy"
    default_interval_seconds: Optional[float] = None
    ConfigModel = StrategyConfig

    def __init__(self, config: StrategyConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self.config = config or self.ConfigModel()
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    @property
    def interval_seconds(self) -> float:
        if self.config.interval_seconds and self.config.interval_seconds > 0:
            return float(self.config.interval_seconds)
        return float(self.default_interval_seconds or settings.agent_runtime_default_interval_seconds)

    def next_delay(self, consecutive_errors: int) -> float:
        """Seconds from the start of the last tick to the next one."""
        multiplier = min(max(1, consecutive_errors), self.config.max_backoff_multiplier)
        return self.interval_seconds * multiplier

    def describe(self) -> dict[str, Any]:
        """Strategy-specific fields merged into AgentRuntime.status()."""
        return {}

    async def on_start(self, ctx: ExecutionContext) -> None:
        return None

    async def on_tick(self, ctx: ExecutionContext) -> None:
        raise NotImplementedError

    async def on_stop(self, ctx: ExecutionContext) -> None:
        return None
