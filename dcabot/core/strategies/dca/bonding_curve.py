"""
Constant-product bonding curve math.

All trade amounts are integers in smallest units (lamports, token base
units). Prices stay rational (``Fraction``) until a caller converts them
for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction

from .errors import InvalidAmountError


def _check_inputs(amount_in: int, reserve_in: int, reserve_out: int) -> None:
    if reserve_in < 0 or reserve_out < 0:
        raise InvalidAmountError(
            f"Reserves must be non-negative (in={reserve_in}, out={reserve_out})"
        )
    if amount_in <= 0:
        raise InvalidAmountError(f"Trade amount must be positive, got {amount_in}")


def _amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    k = reserve_in * reserve_out
    new_reserve_out = k // (reserve_in + amount_in)
    return reserve_out - new_reserve_out


def tokens_out_for_sol_in(lamports_in: int, sol_reserves: int, token_reserves: int) -> int:
    """Tokens received for ``lamports_in``. Returns 0 on an empty curve."""
    if sol_reserves == 0 or token_reserves == 0:
        return 0
    _check_inputs(lamports_in, sol_reserves, token_reserves)
    return _amount_out(lamports_in, sol_reserves, token_reserves)


def sol_out_for_tokens_in(tokens_in: int, sol_reserves: int, token_reserves: int) -> int:
    """Lamports received for ``tokens_in``. Returns 0 on an empty curve."""
    if sol_reserves == 0 or token_reserves == 0:
        return 0
    _check_inputs(tokens_in, token_reserves, sol_reserves)
    return _amount_out(tokens_in, token_reserves, sol_reserves)


def spot_price(sol_reserves: int, token_reserves: int) -> Fraction:
    """Lamports per smallest token unit."""
    if token_reserves <= 0:
        raise InvalidAmountError("Token reserves must be positive to price the curve")
    if sol_reserves < 0:
        raise InvalidAmountError("SOL reserves must be non-negative")
    return Fraction(sol_reserves, token_reserves)


def price_impact(old_price: Fraction, new_price: Fraction) -> Fraction:
    """Signed percent change: positive when the price falls."""
    if old_price == 0:
        raise InvalidAmountError("Cannot compute price impact from a zero price")
    return (Fraction(old_price) - Fraction(new_price)) / Fraction(old_price) * 100


@dataclass(frozen=True)
class CurveTrade:
    """Result of simulating one trade against the curve."""
    amount_in: int
    amount_out: int
    price_before: Fraction
    price_after: Fraction
    price_impact_pct: Fraction

    @property
    def is_empty(self) -> bool:
        return self.amount_out == 0


def simulate_buy(lamports_in: int, sol_reserves: int, token_reserves: int) -> CurveTrade:
    """Full invariant simulation of a SOL -> token buy."""
    tokens_out = tokens_out_for_sol_in(lamports_in, sol_reserves, token_reserves)
    if tokens_out == 0:
        return CurveTrade(lamports_in, 0, Fraction(0), Fraction(0), Fraction(0))

    before = spot_price(sol_reserves, token_reserves)
    after = spot_price(sol_reserves + lamports_in, token_reserves - tokens_out)
    return CurveTrade(
        amount_in=lamports_in,
        amount_out=tokens_out,
        price_before=before,
        price_after=after,
        price_impact_pct=price_impact(before, after),
    )


def simulate_sell(tokens_in: int, sol_reserves: int, token_reserves: int) -> CurveTrade:
    """Full invariant simulation of a token -> SOL sell."""
    lamports_out = sol_out_for_tokens_in(tokens_in, sol_reserves, token_reserves)
    if lamports_out == 0:
        return CurveTrade(tokens_in, 0, Fraction(0), Fraction(0), Fraction(0))

    before = spot_price(sol_reserves, token_reserves)
    after = spot_price(sol_reserves - lamports_out, token_reserves + tokens_in)
    return CurveTrade(
        amount_in=tokens_in,
        amount_out=lamports_out,
        price_before=before,
        price_after=after,
        price_impact_pct=price_impact(before, after),
    )


__all__ = [
    "CurveTrade",
    "tokens_out_for_sol_in",
    "sol_out_for_tokens_in",
    "spot_price",
    "price_impact",
    "simulate_buy",
    "simulate_sell",
]
