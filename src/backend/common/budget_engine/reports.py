from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from .models import (
    BudgetLine,
    DashboardReport,
    InvoiceStatus,
    LineReport,
    ProjectReport,
    ProjectStatus,
)
from .money import sum_amounts
from .rulesets import has_filled_data, resolve_ruleset_name
from .store import BudgetStore

ACTIVE_PROJECT_STATUSES = frozenset({ProjectStatus.PLANNING, ProjectStatus.LIVE})
PENDING_INVOICE_STATUSES = frozenset({InvoiceStatus.MISSING, InvoiceStatus.WAITING_APPROVAL})


def calculate_variance(estimate: Decimal, actual: Decimal) -> Decimal:
    """Positive means under budget."""
    return estimate - actual


def is_over_budget(estimate: Decimal, actual: Decimal) -> bool:
    return actual > estimate


def _line_report(line: BudgetLine) -> LineReport:
    return LineReport(
        budget_line_id=line.id,
        line_number=line.line_number,
        category=line.category,
        name=line.name,
        estimate=line.estimate,
        actual_spent=line.actual_spent,
        running_amount=line.running_amount,
        variance=calculate_variance(line.estimate, line.actual_spent),
        over_budget=is_over_budget(line.estimate, line.actual_spent),
    )


def build_project_report(store: BudgetStore, project_id: str, *, skip_empty_lines: bool = False) -> ProjectReport:
    """Budget vs. actuals for one project, read from stored (already reconciled) totals."""
    project = store.get_project(project_id)
    lines = store.list_budget_lines(project.id)
    if skip_empty_lines:
        lines = [line for line in lines if has_filled_data(line.inputs()) or line.actual_spent]

    invoices = store.list_invoices(project_id=project.id)
    counts: Dict[InvoiceStatus, int] = {}
    for inv in invoices:
        counts[inv.status] = counts.get(inv.status, 0) + 1
    unassigned_total = sum_amounts(inv.amount for inv in invoices if inv.budget_line_id is None and inv.counted)

    return ProjectReport(
        project_id=project.id,
        project_name=project.name,
        project_code=project.project_code,
        ruleset=resolve_ruleset_name(project.ruleset),
        status=project.status,
        total_budget=project.total_budget,
        total_spent=project.total_spent,
        variance=calculate_variance(project.total_budget, project.total_spent),
        over_budget=is_over_budget(project.total_budget, project.total_spent),
        insurance_percent=project.insurance_percent,
        production_fee_percent=project.production_fee_percent,
        lines=[_line_report(line) for line in lines],
        invoice_counts=counts,
        unassigned_invoice_total=unassigned_total,
    )


def build_dashboard(
    store: BudgetStore, *, owner_id: Optional[str] = None, skip_empty_lines: bool = False
) -> DashboardReport:
    projects = store.list_projects(owner_id=owner_id)
    reports: List[ProjectReport] = [
        build_project_report(store, p.id, skip_empty_lines=skip_empty_lines) for p in projects
    ]
    total_budget = sum_amounts(r.total_budget for r in reports)
    total_spent = sum_amounts(r.total_spent for r in reports)
    pending = _count_pending_invoices(store, owner_id)
    return DashboardReport(
        generated_at=datetime.now(timezone.utc),
        total_budget=total_budget,
        total_spent=total_spent,
        variance=calculate_variance(total_budget, total_spent),
        active_projects=sum(1 for p in projects if p.status in ACTIVE_PROJECT_STATUSES),
        pending_invoices=pending,
        projects=reports,
    )


def _count_pending_invoices(store: BudgetStore, owner_id: Optional[str]) -> int:
    # Unassigned invoices count too; their owner comes from the payee.
    count = 0
    for inv in store.list_invoices(statuses=PENDING_INVOICE_STATUSES):
        if owner_id is not None:
            if inv.project_id is not None:
                inv_owner = store.get_project(inv.project_id).owner_id
            elif inv.payee_id is not None:
                inv_owner = store.get_contact(inv.payee_id).owner_id
            else:
                inv_owner = None
            if inv_owner != owner_id:
                continue
        count += 1
    return count
