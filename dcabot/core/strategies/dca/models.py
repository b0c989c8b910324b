"""
DCA Strategy Models

Data models for recurring Solana purchases, their execution history, and the
quotes/trade results produced by the dual-route engine. Amounts that are
stored or submitted are integers in smallest units; human amounts are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Optional

from .errors import InvalidFrequencyError

SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)


class DcaFrequency(str, Enum):
    """DCA execution frequency."""
    TEST = "test"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Any) -> "DcaFrequency":
        """Case-insensitive parse; unknown values raise InvalidFrequencyError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidFrequencyError(value) from None


class DcaStatus(str, Enum):
    """DCA strategy status."""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"  # reserved, never set by the engine

    @property
    def is_open(self) -> bool:
        """ACTIVE and PAUSED strategies block a second strategy on the same pair."""
        return self in (DcaStatus.ACTIVE, DcaStatus.PAUSED)


class ExecutionStatus(str, Enum):
    """Individual execution status."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RouteType(str, Enum):
    """Liquidity source used to price or fill a trade."""
    BONDING_CURVE = "bonding_curve"
    EXTERNAL_AMM = "external_amm"


@dataclass
class TokenInfo:
    """Token identity within a pair."""
    symbol: str
    mint: str
    decimals: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "mint": self.mint,
            "decimals": self.decimals,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TokenInfo:
        return cls(
            symbol=data["symbol"],
            mint=data["mint"],
            decimals=int(data["decimals"]),
        )


@dataclass
class TokenPair:
    """Admin-configured tradable pair, read-only to the scheduler."""
    id: str
    base: TokenInfo
    target: TokenInfo
    active: bool = True

    @property
    def label(self) -> str:
        return f"{self.base.symbol}/{self.target.symbol}"

    @classmethod
    def from_convex(cls, data: Dict[str, Any]) -> TokenPair:
        return cls(
            id=data["_id"],
            base=TokenInfo(
                symbol=data["baseToken"],
                mint=data["baseTokenMint"],
                decimals=int(data["baseTokenDecimals"]),
            ),
            target=TokenInfo(
                symbol=data["targetToken"],
                mint=data["targetTokenMint"],
                decimals=int(data["targetTokenDecimals"]),
            ),
            active=bool(data.get("isActive", True)),
        )


@dataclass
class DcaUser:
    """Strategy owner with custodial wallet reference."""
    id: str
    telegram_id: Optional[int]
    wallet_pubkey: str
    encrypted_private_key: Optional[str] = None

    @classmethod
    def from_convex(cls, data: Dict[str, Any]) -> DcaUser:
        telegram_id = data.get("telegramId")
        return cls(
            id=data["_id"],
            telegram_id=int(telegram_id) if telegram_id is not None else None,
            wallet_pubkey=data["walletPubkey"],
            encrypted_private_key=data.get("encryptedPrivateKey"),
        )


@dataclass
class DcaStrategy:
    """Recurring purchase instruction with its mutable scheduling state."""
    # Identity
    id: str
    user_id: str

    # Pair
    base: TokenInfo
    target: TokenInfo

    # Schedule
    frequency: DcaFrequency
    next_execution_time: datetime
    amount_per_interval: int  # base-token smallest units

    # State
    status: DcaStatus = DcaStatus.ACTIVE
    consecutive_failures: int = 0
    execution_count: int = 0
    total_invested: int = 0
    version: int = 0

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_due(self, now: datetime) -> bool:
        return self.status == DcaStatus.ACTIVE and self.next_execution_time <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "baseToken": self.base.symbol,
            "baseTokenMint": self.base.mint,
            "baseTokenDecimals": self.base.decimals,
            "targetToken": self.target.symbol,
            "targetTokenMint": self.target.mint,
            "targetTokenDecimals": self.target.decimals,
            "frequency": self.frequency.value,
            "nextExecutionTime": _to_ms(self.next_execution_time),
            "amountPerInterval": str(self.amount_per_interval),
            "status": self.status.value,
            "consecutiveFailures": self.consecutive_failures,
            "executionCount": self.execution_count,
            "totalInvested": str(self.total_invested),
            "version": self.version,
            "createdAt": _to_ms(self.created_at),
            "updatedAt": _to_ms(self.updated_at),
        }

    @classmethod
    def from_convex(cls, data: Dict[str, Any]) -> DcaStrategy:
        """Create from Convex document. Big integers are stored as strings."""
        return cls(
            id=data["_id"],
            user_id=data["userId"],
            base=TokenInfo(
                symbol=data["baseToken"],
                mint=data["baseTokenMint"],
                decimals=int(data["baseTokenDecimals"]),
            ),
            target=TokenInfo(
                symbol=data["targetToken"],
                mint=data["targetTokenMint"],
                decimals=int(data["targetTokenDecimals"]),
            ),
            frequency=DcaFrequency.parse(data["frequency"]),
            next_execution_time=_from_ms(data["nextExecutionTime"]),
            amount_per_interval=int(data["amountPerInterval"]),
            status=DcaStatus(data["status"]),
            consecutive_failures=int(data.get("consecutiveFailures", 0)),
            execution_count=int(data.get("executionCount", 0)),
            total_invested=int(data.get("totalInvested", 0)),
            version=int(data.get("version", 0)),
            created_at=_from_ms(data["createdAt"]) if data.get("createdAt") else utcnow(),
            updated_at=_from_ms(data["updatedAt"]) if data.get("updatedAt") else utcnow(),
        )


@dataclass
class DcaExecution:
    """Append-only record of one execution attempt."""
    id: str
    strategy_id: str
    amount_invested: int
    tokens_received: int
    execution_price: int
    status: ExecutionStatus
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None
    execution_time: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "strategyId": self.strategy_id,
            "amountInvested": str(self.amount_invested),
            "tokensReceived": str(self.tokens_received),
            "executionPrice": str(self.execution_price),
            "status": self.status.value,
            "txHash": self.tx_hash,
            "errorMessage": self.error_message,
            "executionTime": _to_ms(self.execution_time),
        }

    @classmethod
    def from_convex(cls, data: Dict[str, Any]) -> DcaExecution:
        return cls(
            id=data["_id"],
            strategy_id=data["strategyId"],
            amount_invested=int(data.get("amountInvested", 0)),
            tokens_received=int(data.get("tokensReceived", 0)),
            execution_price=int(data.get("executionPrice", 0)),
            status=ExecutionStatus(data["status"]),
            tx_hash=data.get("txHash"),
            error_message=data.get("errorMessage"),
            execution_time=_from_ms(data["executionTime"]),
        )


@dataclass
class NewExecution:
    """Parameters for recording an execution; the store assigns id and time."""
    strategy_id: str
    amount_invested: int
    status: ExecutionStatus
    tokens_received: int = 0
    execution_price: int = 0
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, strategy_id: str, amount_invested: int, error: str) -> NewExecution:
        return cls(
            strategy_id=strategy_id,
            amount_invested=amount_invested,
            status=ExecutionStatus.FAILED,
            error_message=error,
        )


@dataclass
class DueStrategy:
    """A due strategy joined with its owner."""
    strategy: DcaStrategy
    user: DcaUser


@dataclass
class BondingCurveState:
    """Launchpad curve account for one mint, read from chain."""
    address: str
    mint: str
    creator: str
    virtual_sol_reserves: int
    virtual_token_reserves: int
    real_sol_reserves: int = 0
    real_token_reserves: int = 0
    graduated: bool = False
    pool: Optional[str] = None


@dataclass
class Quote:
    """Normalized quote. ``route_type`` is None when no route could be priced."""
    input_mint: str
    output_mint: str
    input_amount: Decimal
    output_amount: Decimal
    output_amount_raw: int
    price_impact_pct: Optional[Decimal]
    route_type: Optional[RouteType]
    pool_ref: Optional[str] = None
    output_decimals: Optional[int] = None
    raw: Any = field(default=None, repr=False)

    @property
    def has_route(self) -> bool:
        return self.route_type is not None and self.output_amount_raw > 0

    @classmethod
    def empty(cls, input_mint: str, output_mint: str, input_amount: Decimal) -> Quote:
        return cls(
            input_mint=input_mint,
            output_mint=output_mint,
            input_amount=input_amount,
            output_amount=Decimal("0"),
            output_amount_raw=0,
            price_impact_pct=None,
            route_type=None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputMint": self.input_mint,
            "outputMint": self.output_mint,
            "inputAmount": str(self.input_amount),
            "outputAmount": str(self.output_amount),
            "priceImpact": str(self.price_impact_pct) if self.price_impact_pct is not None else "-",
            "routeType": self.route_type.value if self.route_type else None,
            "poolRef": self.pool_ref,
        }


@dataclass
class TradeResult:
    """Successful trade. Failures raise instead of returning."""
    signature: str
    input_amount: Decimal
    output_amount: Decimal
    output_amount_raw: int
    route_type: RouteType
    explorer_link: Optional[str] = None


def fraction_to_decimal(value: Fraction, places: int = 6) -> Decimal:
    """Round a rational to ``places`` decimals for display."""
    quantum = Decimal(1).scaleb(-places)
    return (Decimal(value.numerator) / Decimal(value.denominator)).quantize(quantum)
