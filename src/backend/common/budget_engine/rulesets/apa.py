from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from ..config import APAAgreementConfig
from ..models import LineItemInputs, RulesetName
from .base import BudgetRuleset


class RateTier(str, Enum):
    LOW = "LOW"
    MID = "MID"
    HIGH = "HIGH"


class APARuleset(BudgetRuleset):
    """Associated Production Agreement overtime.

    Overtime is paid per person (quantity) in units of the base hourly rate
    (BHR = rate / 10):

    - general OT: quantity * ot_hours * BHR * tier multiplier
      (1.5 up to 426/day, 1.25 up to 650/day, 1.0 above)
    - midnight OT: quantity * midnight_hours * BHR * 3.0
    """

    ruleset_name = RulesetName.APA

    def __init__(self, config: Optional[APAAgreementConfig] = None):
        self.config = config or APAAgreementConfig()

    def calculate_estimate(self, line: LineItemInputs) -> Decimal:
        regular = line.value("quantity") * line.value("days") * line.value("rate")
        return regular + self.calculate_overtime(line)

    def calculate_overtime(self, line: LineItemInputs) -> Decimal:
        rate = line.value("rate")
        quantity = line.value("quantity")
        bhr = self.base_hourly_rate(rate)

        general_ot = quantity * line.value("ot_hours") * bhr * self.ot_multiplier(rate)
        midnight_ot = quantity * line.value("midnight_hours") * bhr * self.config.midnight_multiplier
        return general_ot + midnight_ot

    def base_hourly_rate(self, rate: Decimal) -> Decimal:
        return rate / self.config.bhr_divisor

    def rate_tier(self, rate: Decimal) -> RateTier:
        if rate <= self.config.low_rate_threshold:
            return RateTier.LOW
        if rate <= self.config.mid_rate_threshold:
            return RateTier.MID
        return RateTier.HIGH

    def ot_multiplier(self, rate: Decimal) -> Decimal:
        return {
            RateTier.LOW: self.config.low_ot_multiplier,
            RateTier.MID: self.config.mid_ot_multiplier,
            RateTier.HIGH: self.config.high_ot_multiplier,
        }[self.rate_tier(rate)]
