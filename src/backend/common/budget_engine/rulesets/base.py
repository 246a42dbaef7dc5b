from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from ..models import LineItemInputs, RulesetName


class BudgetRuleset(ABC):
    """Turns a line's raw numeric inputs into a monetary estimate.

    Implementations are pure: no store access, no rounding. Missing inputs
    count as zero; negative inputs are neither clamped nor rejected.
    """

    ruleset_name: RulesetName

    @property
    def name(self) -> str:
        return self.ruleset_name.value

    @abstractmethod
    def calculate_estimate(self, line: LineItemInputs) -> Decimal:  # pragma: no cover
        raise NotImplementedError

    @abstractmethod
    def calculate_overtime(self, line: LineItemInputs) -> Decimal:  # pragma: no cover
        raise NotImplementedError
