"""
DCA (Dollar Cost Averaging) Strategy Module

Recurring SOL -> token purchases with dual-route quoting and execution:
launchpad bonding curves for mints that have not graduated, the Jupiter
aggregator for everything else.

Production wiring lives in ``.providers`` (``build_engine``); it is not
imported here because the provider layer depends on these models.
"""

from .models import (
    SOL_DECIMALS,
    SOL_MINT,
    BondingCurveState,
    DcaExecution,
    DcaFrequency,
    DcaStatus,
    DcaStrategy,
    DcaUser,
    DueStrategy,
    ExecutionStatus,
    NewExecution,
    Quote,
    RouteType,
    TokenInfo,
    TokenPair,
    TradeResult,
)
from .errors import (
    DcaError,
    ExecutionFailure,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidFrequencyError,
    NoRouteFoundError,
    StoreFailure,
    StrategyConflictError,
    StrategyNotFoundError,
    TokenPairNotFoundError,
)
from .fixed_point import FixedPointConverter, format_amount, from_smallest_unit, to_smallest_unit
from .quoter import RouteQuoter
from .trade import TradeExecutor
from .store import ConvexStrategyStore, InMemoryStrategyStore, StrategyStore
from .scheduler import DcaScheduler, TickSummary
from .executor import DcaExecutor, ExecutionResult
from .service import DcaService
from .analytics import AnalyticsEngine, PortfolioAnalytics, PortfolioValuator, StrategyAnalytics

__all__ = [
    # Models
    "SOL_DECIMALS",
    "SOL_MINT",
    "BondingCurveState",
    "DcaExecution",
    "DcaFrequency",
    "DcaStatus",
    "DcaStrategy",
    "DcaUser",
    "DueStrategy",
    "ExecutionStatus",
    "NewExecution",
    "Quote",
    "RouteType",
    "TokenInfo",
    "TokenPair",
    "TradeResult",
    # Errors
    "DcaError",
    "ExecutionFailure",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidFrequencyError",
    "NoRouteFoundError",
    "StoreFailure",
    "StrategyConflictError",
    "StrategyNotFoundError",
    "TokenPairNotFoundError",
    # Fixed point
    "FixedPointConverter",
    "format_amount",
    "from_smallest_unit",
    "to_smallest_unit",
    # Engine
    "RouteQuoter",
    "TradeExecutor",
    "ConvexStrategyStore",
    "InMemoryStrategyStore",
    "StrategyStore",
    "DcaScheduler",
    "TickSummary",
    "DcaExecutor",
    "ExecutionResult",
    "DcaService",
    "AnalyticsEngine",
    "PortfolioAnalytics",
    "PortfolioValuator",
    "StrategyAnalytics",
]
