from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .money import ZERO, to_decimal


class RulesetName(str, Enum):
    FLAT_RATE = "FLAT_RATE"
    APA = "APA"


class ProjectStatus(str, Enum):
    PLANNING = "PLANNING"
    LIVE = "LIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class BudgetCategory(str, Enum):
    PRE_PRODUCTION = "PRE_PRODUCTION"
    PRODUCTION = "PRODUCTION"
    POST_PRODUCTION = "POST_PRODUCTION"


class InvoiceStatus(str, Enum):
    MISSING = "MISSING"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    APPROVED = "APPROVED"
    FLAGGED = "FLAGGED"
    PAID = "PAID"


# Invoice statuses that count towards line actuals and project spent.
COUNTED_INVOICE_STATUSES = frozenset({InvoiceStatus.APPROVED, InvoiceStatus.PAID})


def is_counted(status: InvoiceStatus) -> bool:
    return status in COUNTED_INVOICE_STATUSES


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LineItemInputs(BaseModel):
    """Raw numeric inputs a ruleset turns into an estimate.

    Every field is optional; absent values count as zero.
    """

    rate: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    days: Optional[Decimal] = None
    # Flat-rate overtime hours
    ot1_5: Optional[Decimal] = None
    ot2: Optional[Decimal] = None
    ot2_5: Optional[Decimal] = None
    # APA overtime hours
    ot_hours: Optional[Decimal] = None
    midnight_hours: Optional[Decimal] = None

    @field_validator(
        "rate", "quantity", "days", "ot1_5", "ot2", "ot2_5", "ot_hours", "midnight_hours", mode="before"
    )
    @classmethod
    def _coerce_decimal(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return to_decimal(value)

    def value(self, name: str) -> Decimal:
        raw = getattr(self, name)
        return ZERO if raw is None else raw


NUMERIC_INPUT_FIELDS = tuple(LineItemInputs.model_fields.keys())


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    owner_id: str
    project_code: str
    # Raw string so unknown legacy values survive a round-trip; resolved per call.
    ruleset: Optional[str] = RulesetName.FLAT_RATE.value
    status: ProjectStatus = ProjectStatus.PLANNING
    client_name: Optional[str] = None
    # Stored for display; no total is derived from them.
    insurance_percent: Decimal = ZERO
    production_fee_percent: Decimal = ZERO

    total_budget: Decimal = ZERO
    total_spent: Decimal = ZERO

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("insurance_percent", "production_fee_percent", mode="before")
    @classmethod
    def _coerce_percent(cls, value):
        return ZERO if value is None else to_decimal(value)


class BudgetLine(LineItemInputs):
    id: str = Field(default_factory=new_id)
    project_id: str
    category: str = BudgetCategory.PRODUCTION.value
    line_number: int
    name: str = "New Line Item"

    estimate: Decimal = ZERO
    actual_spent: Decimal = ZERO
    # Manually tracked figure; aggregation never touches it.
    running_amount: Optional[Decimal] = None

    payee_id: Optional[str] = None
    fringe_rule_id: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("estimate", "actual_spent", mode="before")
    @classmethod
    def _coerce_totals(cls, value):
        return ZERO if value is None else to_decimal(value)

    @field_validator("running_amount", mode="before")
    @classmethod
    def _coerce_running_amount(cls, value):
        return None if value is None else to_decimal(value)

    def inputs(self) -> LineItemInputs:
        return LineItemInputs(**{name: getattr(self, name) for name in NUMERIC_INPUT_FIELDS})


class BudgetLineDraft(LineItemInputs):
    """Input shape for lines created together with their project."""

    category: str = BudgetCategory.PRODUCTION.value
    name: str = "New Line Item"
    line_number: Optional[int] = None
    payee_id: Optional[str] = None
    running_amount: Optional[Decimal] = None
    # Key of a FringeRuleDraft created in the same call.
    fringe_rule: Optional[str] = None


class FringeRuleDraft(BaseModel):
    """Fringe rule created together with its project; ``key`` is what line drafts refer to."""

    key: str
    name: str
    percentage: Decimal

    @field_validator("percentage", mode="before")
    @classmethod
    def _coerce_percentage(cls, value):
        return to_decimal(value)


class FringeRule(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    name: str
    percentage: Decimal

    @field_validator("percentage", mode="before")
    @classmethod
    def _coerce_percentage(cls, value):
        return to_decimal(value)


class Invoice(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: Optional[str] = None
    budget_line_id: Optional[str] = None
    payee_id: Optional[str] = None
    invoice_number: Optional[str] = None

    amount: Decimal
    status: InvoiceStatus = InvoiceStatus.WAITING_APPROVAL

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return to_decimal(value)

    @property
    def counted(self) -> bool:
        return is_counted(self.status)


class Contact(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    name: str
    email: str
    company: Optional[str] = None


class ProjectTotals(BaseModel):
    project_id: str
    total_budget: Optional[Decimal] = None
    total_spent: Optional[Decimal] = None


class LineTotals(BaseModel):
    budget_line_id: str
    estimate: Optional[Decimal] = None
    actual_spent: Optional[Decimal] = None


class MatchResult(BaseModel):
    payee: Contact
    project: Project
    budget_line: Optional[BudgetLine] = None


class InvoiceSummary(BaseModel):
    id: str
    status: InvoiceStatus
    amount: Decimal
    payee_name: Optional[str] = None
    project_name: Optional[str] = None
    budget_line_id: Optional[str] = None
    invoice_number: Optional[str] = None


class LineReport(BaseModel):
    budget_line_id: str
    line_number: int
    category: str
    name: str
    estimate: Decimal
    actual_spent: Decimal
    running_amount: Optional[Decimal] = None
    variance: Decimal
    over_budget: bool


class ProjectReport(BaseModel):
    project_id: str
    project_name: str
    project_code: str
    ruleset: RulesetName
    status: ProjectStatus
    total_budget: Decimal
    total_spent: Decimal
    variance: Decimal
    over_budget: bool
    insurance_percent: Decimal = ZERO
    production_fee_percent: Decimal = ZERO
    lines: List[LineReport] = Field(default_factory=list)
    invoice_counts: Dict[InvoiceStatus, int] = Field(default_factory=dict)
    unassigned_invoice_total: Decimal = ZERO


class DashboardReport(BaseModel):
    generated_at: datetime
    total_budget: Decimal
    total_spent: Decimal
    variance: Decimal
    active_projects: int
    pending_invoices: int
    projects: List[ProjectReport] = Field(default_factory=list)
