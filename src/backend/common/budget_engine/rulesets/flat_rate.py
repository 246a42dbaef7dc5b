from __future__ import annotations

from decimal import Decimal
from typing import Optional

from ..config import FlatRateConfig
from ..models import LineItemInputs, RulesetName
from .base import BudgetRuleset


class FlatRateRuleset(BudgetRuleset):
    """Traditional flat-rate overtime.

    estimate = days * rate + ot1_5 * rate * 1.5 + ot2 * rate * 2 + ot2_5 * rate * 2.5

    Quantity is not a multiplier under this ruleset.
    """

    ruleset_name = RulesetName.FLAT_RATE

    def __init__(self, config: Optional[FlatRateConfig] = None):
        self.config = config or FlatRateConfig()

    def calculate_estimate(self, line: LineItemInputs) -> Decimal:
        base_amount = line.value("days") * line.value("rate")
        return base_amount + self.calculate_overtime(line)

    def calculate_overtime(self, line: LineItemInputs) -> Decimal:
        rate = line.value("rate")
        cfg = self.config
        return (
            line.value("ot1_5") * rate * cfg.ot1_5_multiplier
            + line.value("ot2") * rate * cfg.ot2_multiplier
            + line.value("ot2_5") * rate * cfg.ot2_5_multiplier
        )
