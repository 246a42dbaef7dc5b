"""Budget calculation and reconciliation engine.

This package intentionally contains only domain logic:
- Inputs are project, budget line, fringe rule, invoice and contact records.
- Persistence goes through the `BudgetStore` protocol; no HTTP or database
  code lives here.
"""

from .aggregation import AggregationEngine
from .budget import BudgetService
from .config import EngineConfig, get_engine_config
from .engine import BudgetEngine
from .exceptions import (
    AggregationInconsistency,
    BudgetEngineError,
    EmailNotFound,
    MatchFailure,
    ProjectCodeMismatch,
    RecordNotFound,
    ValidationFailure,
)
from .fringe import apply_fringe, estimate_line
from .invoices import InvoiceService
from .matching import AutoMatchEngine
from .models import (
    BudgetLine,
    Contact,
    FringeRule,
    Invoice,
    InvoiceStatus,
    InvoiceSummary,
    LineItemInputs,
    MatchResult,
    Project,
    RulesetName,
)
from .rulesets import get_ruleset
from .store import BudgetStore, InMemoryBudgetStore
