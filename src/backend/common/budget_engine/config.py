from __future__ import annotations

import os
from decimal import Decimal
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ValidationFailure
from .models import RulesetName


class APAAgreementConfig(BaseModel):
    # Tier boundaries are inclusive on the upper side: 426 -> LOW, 650 -> MID, 651 -> HIGH.
    low_rate_threshold: Decimal = Decimal("426")
    mid_rate_threshold: Decimal = Decimal("650")
    low_ot_multiplier: Decimal = Decimal("1.5")
    mid_ot_multiplier: Decimal = Decimal("1.25")
    high_ot_multiplier: Decimal = Decimal("1.0")
    midnight_multiplier: Decimal = Decimal("3.0")
    # Base hourly rate = daily rate / bhr_divisor.
    bhr_divisor: Decimal = Decimal("10")


class FlatRateConfig(BaseModel):
    ot1_5_multiplier: Decimal = Decimal("1.5")
    ot2_multiplier: Decimal = Decimal("2")
    ot2_5_multiplier: Decimal = Decimal("2.5")


class EngineConfig(BaseModel):
    """Engine-wide settings.

    Built from ``BUDGET_*`` environment variables by `get_engine_config`; tests
    construct it directly.
    """

    # Ruleset given to new projects that do not name one. Unknown names still fall back to FLAT_RATE.
    default_ruleset: RulesetName = RulesetName.FLAT_RATE
    # Display rounding only. Stored amounts are never quantized.
    amount_quantize: Optional[Decimal] = Decimal("0.01")
    apa: APAAgreementConfig = Field(default_factory=APAAgreementConfig)
    flat_rate: FlatRateConfig = Field(default_factory=FlatRateConfig)
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"


def get_engine_config() -> EngineConfig:
    """Load engine configuration from the environment (and a local .env file).

    Reads:
      BUDGET_DEFAULT_RULESET, BUDGET_AMOUNT_QUANTIZE, BUDGET_LOG_LEVEL,
      BUDGET_LOG_FORMAT, BUDGET_APA_LOW_RATE_THRESHOLD, BUDGET_APA_MID_RATE_THRESHOLD
    """
    load_dotenv()

    raw: dict = {}
    default_ruleset = os.getenv("BUDGET_DEFAULT_RULESET", "").strip().upper()
    if default_ruleset:
        # Unknown names degrade like stored project rulesets do.
        raw["default_ruleset"] = default_ruleset if default_ruleset in RulesetName.__members__ else "FLAT_RATE"

    quantize = os.getenv("BUDGET_AMOUNT_QUANTIZE")
    if quantize is not None:
        quantize = quantize.strip()
        raw["amount_quantize"] = None if quantize.lower() in ("", "none", "off") else quantize

    log_level = os.getenv("BUDGET_LOG_LEVEL", "").strip()
    if log_level:
        raw["log_level"] = log_level.upper()
    log_format = os.getenv("BUDGET_LOG_FORMAT", "").strip().lower()
    if log_format:
        raw["log_format"] = log_format

    apa: dict = {}
    low = os.getenv("BUDGET_APA_LOW_RATE_THRESHOLD", "").strip()
    if low:
        apa["low_rate_threshold"] = low
    mid = os.getenv("BUDGET_APA_MID_RATE_THRESHOLD", "").strip()
    if mid:
        apa["mid_rate_threshold"] = mid
    if apa:
        raw["apa"] = apa

    try:
        return EngineConfig.model_validate(raw)
    except ValidationError as exc:
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
        raise ValidationFailure(f"Invalid engine configuration: {exc}", field=field) from exc
