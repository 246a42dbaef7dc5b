"""Derived totals for lines and projects.

``actual_spent``, ``total_spent`` and ``total_budget`` are materialized views:
every recompute re-derives them from the current invoice and line sets and
writes them back in a single `BudgetStore.write_totals` call. Nothing is ever
patched by a delta, so every operation here is idempotent and safe to retry.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .exceptions import AggregationInconsistency
from .logging_config import get_logger
from .models import (
    COUNTED_INVOICE_STATUSES,
    BudgetLine,
    Invoice,
    InvoiceStatus,
    LineTotals,
    Project,
    ProjectTotals,
    is_counted,
)
from .money import sum_amounts
from .store import BudgetStore

logger = get_logger("aggregation")


class AggregationEngine:
    def __init__(self, store: BudgetStore):
        self.store = store

    # -- recomputes ------------------------------------------------------

    def recompute_budget_line_actuals(self, budget_line_id: str) -> Decimal:
        line = self.store.get_budget_line(budget_line_id)
        actual = self._line_actuals(line)
        self.store.write_totals(line_totals=[LineTotals(budget_line_id=line.id, actual_spent=actual)])
        logger.info(
            "line_actuals_recomputed",
            extra={"budget_line_id": line.id, "project_id": line.project_id, "actual_spent": actual},
        )
        return actual

    def recompute_project_spent(self, project_id: str) -> Decimal:
        project = self.store.get_project(project_id)
        spent = self._project_spent(project)
        self.store.write_totals(project_totals=[ProjectTotals(project_id=project.id, total_spent=spent)])
        logger.info("project_spent_recomputed", extra={"project_id": project.id, "total_spent": spent})
        return spent

    def recompute_project_budget(self, project_id: str) -> Decimal:
        project = self.store.get_project(project_id)
        budget = sum_amounts(line.estimate for line in self.store.list_budget_lines(project.id))
        self.store.write_totals(project_totals=[ProjectTotals(project_id=project.id, total_budget=budget)])
        logger.info("project_budget_recomputed", extra={"project_id": project.id, "total_budget": budget})
        return budget

    def reconcile_project(self, project_id: str) -> Project:
        """Recompute every derived field of a project and its lines in one write."""
        project = self.store.get_project(project_id)
        lines = self.store.list_budget_lines(project.id)

        line_totals = [LineTotals(budget_line_id=line.id, actual_spent=self._line_actuals(line)) for line in lines]
        self._check_project_invoices(project, {line.id for line in lines})
        project_totals = ProjectTotals(
            project_id=project.id,
            total_budget=sum_amounts(line.estimate for line in lines),
            total_spent=self._project_spent(project),
        )
        self.store.write_totals(project_totals=[project_totals], line_totals=line_totals)
        logger.info(
            "project_reconciled",
            extra={
                "project_id": project.id,
                "total_budget": project_totals.total_budget,
                "total_spent": project_totals.total_spent,
                "line_count": len(lines),
            },
        )
        return self.store.get_project(project.id)

    # -- triggers --------------------------------------------------------

    def on_invoice_created(self, invoice: Invoice) -> None:
        # WAITING_APPROVAL / MISSING invoices do not move any aggregate.
        if not is_counted(invoice.status):
            return
        self._recompute_targets((invoice.project_id, invoice.budget_line_id))

    def on_invoice_status_changed(
        self, invoice_id: str, old_status: InvoiceStatus, new_status: InvoiceStatus
    ) -> None:
        if not (is_counted(old_status) or is_counted(new_status)):
            logger.debug(
                "status_change_not_counted",
                extra={"invoice_id": invoice_id, "old_status": old_status, "new_status": new_status},
            )
            return
        invoice = self.store.get_invoice(invoice_id)
        self._recompute_targets((invoice.project_id, invoice.budget_line_id))

    def on_invoice_deleted(
        self,
        invoice_id: str,
        *,
        project_id: Optional[str] = None,
        budget_line_id: Optional[str] = None,
    ) -> None:
        """Recompute the aggregates the deleted invoice used to belong to."""
        logger.info(
            "invoice_deleted_recompute",
            extra={"invoice_id": invoice_id, "project_id": project_id, "budget_line_id": budget_line_id},
        )
        self._recompute_targets((project_id, budget_line_id))

    def on_invoice_reassigned(
        self,
        invoice_id: str,
        old_project_id: Optional[str],
        old_line_id: Optional[str],
        new_project_id: Optional[str],
        new_line_id: Optional[str],
    ) -> None:
        # Both sides are re-derived and written together.
        self._recompute_targets((old_project_id, old_line_id), (new_project_id, new_line_id))
        logger.info(
            "invoice_reassigned_recompute",
            extra={
                "invoice_id": invoice_id,
                "old_project_id": old_project_id,
                "old_line_id": old_line_id,
                "new_project_id": new_project_id,
                "new_line_id": new_line_id,
            },
        )

    def on_line_estimate_changed(self, budget_line_id: str) -> Decimal:
        line = self.store.get_budget_line(budget_line_id)
        return self.recompute_project_budget(line.project_id)

    # -- internals -------------------------------------------------------

    def _recompute_targets(self, *targets: Tuple[Optional[str], Optional[str]]) -> None:
        """Re-derive actuals and spent for ``(project_id, line_id)`` pairs in one store write.

        Everything is computed before the store is touched, so a refused line
        leaves every total as it was.
        """
        line_ids: List[str] = []
        project_ids: List[str] = []
        for project_id, budget_line_id in targets:
            if budget_line_id is not None and budget_line_id not in line_ids:
                line_ids.append(budget_line_id)
            if project_id is not None and project_id not in project_ids:
                project_ids.append(project_id)
        if not line_ids and not project_ids:
            return

        line_totals = []
        for line_id in line_ids:
            line = self.store.get_budget_line(line_id)
            line_totals.append(LineTotals(budget_line_id=line.id, actual_spent=self._line_actuals(line)))
        project_totals = []
        for project_id in project_ids:
            project = self.store.get_project(project_id)
            project_totals.append(ProjectTotals(project_id=project.id, total_spent=self._project_spent(project)))

        self.store.write_totals(project_totals=project_totals, line_totals=line_totals)
        logger.info(
            "aggregates_recomputed",
            extra={
                "line_actuals": {lt.budget_line_id: lt.actual_spent for lt in line_totals},
                "project_spent": {pt.project_id: pt.total_spent for pt in project_totals},
            },
        )

    def _line_actuals(self, line: BudgetLine) -> Decimal:
        invoices = self.store.list_invoices(budget_line_id=line.id, statuses=COUNTED_INVOICE_STATUSES)
        for inv in invoices:
            if inv.project_id != line.project_id:
                logger.error(
                    "aggregation_inconsistency",
                    extra={
                        "invoice_id": inv.id,
                        "invoice_project_id": inv.project_id,
                        "budget_line_id": line.id,
                        "line_project_id": line.project_id,
                    },
                )
                raise AggregationInconsistency(
                    f"Invoice {inv.id} references budget line {line.id} of another project.",
                    invoice_id=inv.id,
                    budget_line_id=line.id,
                    project_id=inv.project_id,
                )
        return _sum_invoices(invoices)

    def _project_spent(self, project: Project) -> Decimal:
        # Every counted invoice of the project, assigned to a line or not.
        return _sum_invoices(self.store.list_invoices(project_id=project.id, statuses=COUNTED_INVOICE_STATUSES))

    def _check_project_invoices(self, project: Project, line_ids: set) -> None:
        for inv in self.store.list_invoices(project_id=project.id):
            if inv.budget_line_id is not None and inv.budget_line_id not in line_ids:
                raise AggregationInconsistency(
                    f"Invoice {inv.id} references budget line {inv.budget_line_id} outside project {project.id}.",
                    invoice_id=inv.id,
                    budget_line_id=inv.budget_line_id,
                    project_id=project.id,
                )


def _sum_invoices(invoices: Iterable[Invoice]) -> Decimal:
    return sum_amounts(inv.amount for inv in invoices)