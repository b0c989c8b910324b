"""
Fixed-point conversion between human decimal amounts and integer smallest units.

Conversion to smallest units is done by string shifting so no binary float
ever reaches a stored or submitted amount.
"""

from __future__ import annotations

import re
from decimal import Decimal, localcontext
from typing import Union

from .errors import InvalidAmountError

AmountLike = Union[str, int, float, Decimal]

_DECIMAL_RE = re.compile(r"^(\d*)(?:\.(\d*))?$")


def _normalize(amount: AmountLike) -> str:
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    if isinstance(amount, int):
        return str(amount)
    if isinstance(amount, Decimal):
        if not amount.is_finite():
            raise InvalidAmountError(f"Invalid amount: {amount}")
        return format(amount, "f")
    if isinstance(amount, float):
        # repr of a float is its shortest round-tripping decimal form
        return format(Decimal(repr(amount)), "f")
    if isinstance(amount, str):
        return amount.strip()
    raise InvalidAmountError(f"Unsupported amount type: {type(amount).__name__}")


def to_smallest_unit(amount: AmountLike, decimals: int) -> int:
    """
    Convert a decimal amount to integer smallest units.

    The fractional part is right-padded or truncated to exactly ``decimals``
    digits, concatenated with the integer part, and parsed as an int.

    Args:
        amount: Decimal string, int, Decimal, or float ("1.5", 2, Decimal("0.1"))
        decimals: Token decimals (9 for SOL, 6 for launchpad tokens)

    Returns:
        Integer amount in smallest units

    Raises:
        InvalidAmountError: Negative, empty, or malformed amount
    """
    if decimals < 0:
        raise InvalidAmountError(f"decimals must be >= 0, got {decimals}")

    text = _normalize(amount)
    if text.startswith("-"):
        raise InvalidAmountError(f"Amount must be non-negative: {text}")
    if text.startswith("+"):
        text = text[1:]

    match = _DECIMAL_RE.match(text)
    if not match or text in ("", "."):
        raise InvalidAmountError(f"Invalid amount: {amount!r}")

    integer_part = match.group(1) or "0"
    fraction_part = (match.group(2) or "")[:decimals].ljust(decimals, "0")

    return int(integer_part + fraction_part)


def from_smallest_unit(units: int, decimals: int) -> Decimal:
    """Exact ``units / 10**decimals`` as a Decimal."""
    if decimals < 0:
        raise InvalidAmountError(f"decimals must be >= 0, got {decimals}")
    with localcontext() as ctx:
        ctx.prec = max(len(str(abs(units))) + decimals, 28)
        return Decimal(units).scaleb(-decimals)


def format_amount(units: int, decimals: int) -> str:
    """Canonical decimal string for ``units`` with trailing zeros stripped."""
    if units < 0:
        raise InvalidAmountError(f"Amount must be non-negative: {units}")
    digits = str(units)
    if decimals == 0:
        return digits
    digits = digits.rjust(decimals + 1, "0")
    integer_part, fraction_part = digits[:-decimals], digits[-decimals:].rstrip("0")
    return f"{integer_part}.{fraction_part}" if fraction_part else integer_part


class FixedPointConverter:
    """Decimals-bound converter, convenient when a token's decimals are fixed."""

    def __init__(self, decimals: int):
        if decimals < 0:
            raise InvalidAmountError(f"decimals must be >= 0, got {decimals}")
        self.decimals = decimals

    def to_units(self, amount: AmountLike) -> int:
        return to_smallest_unit(amount, self.decimals)

    def from_units(self, units: int) -> Decimal:
        return from_smallest_unit(units, self.decimals)

    def format(self, units: int) -> str:
        return format_amount(units, self.decimals)


__all__ = [
    "AmountLike",
    "FixedPointConverter",
    "to_smallest_unit",
    "from_smallest_unit",
    "format_amount",
]
