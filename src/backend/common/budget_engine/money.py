from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce user/store input to Decimal without float binary artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric amount: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError(f"Not a finite amount: {value!r}")
        # Go through str: Decimal(0.1) != Decimal("0.1").
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        try:
            parsed = Decimal(s)
        except InvalidOperation as exc:
            raise ValueError(f"Not a numeric amount: {value!r}") from exc
        if not parsed.is_finite():
            raise ValueError(f"Not a finite amount: {value!r}")
        return parsed
    raise ValueError(f"Not a numeric amount: {value!r}")


def sum_amounts(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += value
    return total


def quantize_amount(value: Decimal, quantize: Optional[Decimal] = CENTS) -> Decimal:
    # Display only: stored amounts keep full precision.
    if quantize is None:
        return value
    return value.quantize(quantize, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal, quantize: Optional[Decimal] = CENTS, symbol: str = "$") -> str:
    return f"{symbol}{quantize_amount(value, quantize):,}"
