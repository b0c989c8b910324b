"""
DCA error taxonomy.

Per-strategy errors are caught by the scheduler and turned into FAILED
execution records. Quoting converts them into zero quotes; execution
re-raises them.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Awaitable, Optional, TypeVar

from dcabot.config import settings

T = TypeVar("T")


class DcaError(Exception):
    """Base class for DCA engine errors."""
    pass


class InvalidAmountError(DcaError, ValueError):
    """Amount is zero, negative, or not a parseable decimal."""
    pass


class InvalidFrequencyError(DcaError, ValueError):
    """Frequency is not one of the supported schedules."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Unknown DCA frequency: {value!r}")


class InsufficientBalanceError(DcaError):
    """Wallet cannot cover the purchase plus the fee buffer.

    ``required`` and ``current`` are canonical decimal strings (``"0.11"``).
    """

    def __init__(self, required: str, current: str, symbol: str = "SOL"):
        self.required = Decimal(required)
        self.current = Decimal(current)
        self.symbol = symbol
        super().__init__(
            f"Insufficient balance: required {required} {symbol}, current {current} {symbol}"
        )


class NoRouteFoundError(DcaError):
    """No liquidity source can fill the trade with a direct route."""

    def __init__(self, mint: str, reason: Optional[str] = None):
        self.mint = mint
        self.reason = reason
        message = f"No route found for {mint}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ExecutionFailure(DcaError):
    """Submission, program, network, or timeout failure while trading."""
    pass


class StoreFailure(DcaError):
    """Persistence layer unavailable or rejected a write."""
    pass


class StrategyNotFoundError(DcaError):
    """Strategy id does not exist."""
    pass


class StrategyConflictError(DcaError):
    """An ACTIVE or PAUSED strategy already exists for this user and pair."""
    pass


class TokenPairNotFoundError(DcaError):
    """No active token pair is configured for the requested symbols."""

    def __init__(self, base_symbol: str, target_symbol: str):
        self.base_symbol = base_symbol
        self.target_symbol = target_symbol
        super().__init__(f"Token pair {base_symbol}/{target_symbol} not found")


async def bounded(awaitable: Awaitable[T], what: str, timeout_s: Optional[float] = None) -> T:
    """Await an external call with a deadline; a timeout becomes ExecutionFailure."""
    limit = timeout_s if timeout_s is not None else settings.dca_external_call_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except asyncio.TimeoutError as e:
        raise ExecutionFailure(f"{what} timed out after {limit}s") from e
