"""Budget rulesets.

The set of rulesets is closed (FLAT_RATE, APA); a project's ruleset string is
resolved once per call through `resolve_ruleset_name`, never through dynamic
registration.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from ..config import EngineConfig
from ..logging_config import get_logger
from ..models import LineItemInputs, RulesetName
from .apa import APARuleset, RateTier
from .base import BudgetRuleset
from .flat_rate import FlatRateRuleset

logger = get_logger("rulesets")

# Legacy spelling still found on older projects.
_ALIASES = {"FLATRATE": RulesetName.FLAT_RATE}

_DEFAULT_CONFIG = EngineConfig()


def resolve_ruleset_name(name: Optional[str]) -> RulesetName:
    """Map a stored ruleset string to a ruleset, case-insensitively.

    Missing values and unknown names degrade to FLAT_RATE; unknown names log a
    warning. This is the only silent fallback in the engine.
    """
    if name is None or not str(name).strip():
        return RulesetName.FLAT_RATE
    key = str(name).strip().upper()
    try:
        return RulesetName(key)
    except ValueError:
        pass
    if key in _ALIASES:
        return _ALIASES[key]
    logger.warning("unknown_ruleset_fallback", extra={"ruleset": name, "fallback": RulesetName.FLAT_RATE.value})
    return RulesetName.FLAT_RATE


def get_ruleset(name: Optional[str], config: Optional[EngineConfig] = None) -> BudgetRuleset:
    cfg = config or _DEFAULT_CONFIG
    resolved = resolve_ruleset_name(name)
    if resolved is RulesetName.APA:
        return APARuleset(cfg.apa)
    return FlatRateRuleset(cfg.flat_rate)


def available_rulesets() -> List[str]:
    return [member.value for member in RulesetName]


def is_valid_ruleset(name: str) -> bool:
    return str(name).strip().upper() in available_rulesets()


def calculate_estimate(
    line: LineItemInputs, ruleset: Optional[str], config: Optional[EngineConfig] = None
) -> Decimal:
    return get_ruleset(ruleset, config).calculate_estimate(line)


def calculate_overtime(
    line: LineItemInputs, ruleset: Optional[str], config: Optional[EngineConfig] = None
) -> Decimal:
    return get_ruleset(ruleset, config).calculate_overtime(line)


def has_filled_data(line: LineItemInputs) -> bool:
    """True when any numeric input is set to a non-zero value."""
    return any(getattr(line, name) for name in LineItemInputs.model_fields)


__all__ = [
    "APARuleset",
    "BudgetRuleset",
    "FlatRateRuleset",
    "RateTier",
    "available_rulesets",
    "calculate_estimate",
    "calculate_overtime",
    "get_ruleset",
    "has_filled_data",
    "is_valid_ruleset",
    "resolve_ruleset_name",
]
