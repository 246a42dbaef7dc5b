from __future__ import annotations

from decimal import Decimal
from typing import Optional

from .config import EngineConfig
from .exceptions import ValidationFailure
from .models import FringeRule, LineItemInputs
from .money import to_decimal
from .rulesets import get_ruleset

HUNDRED = Decimal("100")


def validate_fringe_percentage(percentage) -> Decimal:
    try:
        pct = to_decimal(percentage)
    except ValueError as exc:
        raise ValidationFailure("Fringe percentage must be a number.", field="percentage") from exc
    if pct < 0 or pct > HUNDRED:
        raise ValidationFailure("Fringe percentage must be between 0 and 100.", field="percentage")
    return pct


def apply_fringe(base_estimate: Decimal, fringe_percentage: Optional[Decimal]) -> Decimal:
    """base * (1 + pct / 100). ``None`` means no fringe."""
    if fringe_percentage is None:
        return base_estimate
    return base_estimate * (1 + fringe_percentage / HUNDRED)


def estimate_line(
    line: LineItemInputs,
    ruleset: Optional[str],
    fringe_rule: Optional[FringeRule] = None,
    config: Optional[EngineConfig] = None,
) -> Decimal:
    """Full estimate for a line, always starting from its raw inputs.

    The stored ``estimate`` is never an input here, so switching or removing a
    fringe rule cannot compound on a previously adjusted value.
    """
    base = get_ruleset(ruleset, config).calculate_estimate(line)
    return apply_fringe(base, fringe_rule.percentage if fringe_rule is not None else None)
