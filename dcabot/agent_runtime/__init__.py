from __future__ import annotations

import logging

from .runtime import AgentRuntime
from .strategies import DcaExecutionStrategy, DcaTickConfig
from ..config import settings


_runtime = AgentRuntime(logger=logging.getLogger("agent_runtime"))
_registered_defaults = False


def get_runtime() -> AgentRuntime:
    return _runtime


def _default_scheduler():
    from ..core.strategies.dca.providers import build_engine

    return build_engine().scheduler


def register_builtin_strategies() -> None:
    global _registered_defaults
    if _registered_defaults:
        return
    dca_cfg = DcaTickConfig(interval_seconds=settings.dca_tick_interval_seconds)
    _runtime.register_strategy(DcaExecutionStrategy(scheduler_factory=_default_scheduler, config=dca_cfg))
    _registered_defaults = True


__all__ = ["get_runtime", "register_builtin_strategies", "AgentRuntime"]
