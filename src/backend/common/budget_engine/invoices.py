from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional, Tuple, Union

from .aggregation import AggregationEngine
from .exceptions import AggregationInconsistency, BudgetEngineError, ValidationFailure
from .logging_config import get_logger
from .models import BudgetLine, Invoice, InvoiceStatus, is_counted
from .money import to_decimal
from .store import BudgetStore

logger = get_logger("invoices")


def parse_invoice_status(value: Union[InvoiceStatus, str]) -> InvoiceStatus:
    if isinstance(value, InvoiceStatus):
        return value
    # Accept display forms like "Waiting Approval".
    key = str(value or "").strip().upper().replace(" ", "_")
    try:
        return InvoiceStatus(key)
    except ValueError as exc:
        raise ValidationFailure(f"Unknown invoice status: {value}", field="status") from exc


def validate_amount(amount: Any) -> Decimal:
    try:
        parsed = to_decimal(amount)
    except ValueError as exc:
        raise ValidationFailure("Invalid amount", field="amount") from exc
    if parsed <= 0:
        raise ValidationFailure("Invalid amount", field="amount")
    return parsed


class InvoiceService:
    """Invoice lifecycle wired to the aggregation triggers.

    Assignment checks run before anything is written: an invoice may only
    point at a budget line of its own project.
    """

    def __init__(self, store: BudgetStore, *, aggregation: Optional[AggregationEngine] = None):
        self.store = store
        self.aggregation = aggregation or AggregationEngine(store)

    def create_invoice(
        self,
        *,
        amount: Any,
        project_id: Optional[str] = None,
        budget_line_id: Optional[str] = None,
        payee_id: Optional[str] = None,
        status: Union[InvoiceStatus, str] = InvoiceStatus.WAITING_APPROVAL,
        invoice_number: Optional[str] = None,
    ) -> Invoice:
        parsed_amount = validate_amount(amount)
        parsed_status = parse_invoice_status(status)
        project_id, budget_line_id = self._resolve_assignment(project_id, budget_line_id)
        if payee_id is not None:
            self.store.get_contact(payee_id)

        invoice = self.store.add_invoice(
            Invoice(
                project_id=project_id,
                budget_line_id=budget_line_id,
                payee_id=payee_id,
                invoice_number=invoice_number,
                amount=parsed_amount,
                status=parsed_status,
            )
        )
        logger.info(
            "invoice_created",
            extra={
                "invoice_id": invoice.id,
                "project_id": project_id,
                "budget_line_id": budget_line_id,
                "status": invoice.status,
                "amount": invoice.amount,
            },
        )
        self.aggregation.on_invoice_created(invoice)
        return invoice

    def update_invoice_status(self, invoice_id: str, status: Union[InvoiceStatus, str]) -> Invoice:
        new_status = parse_invoice_status(status)
        previous = self.store.get_invoice(invoice_id)
        old_status = previous.status
        if old_status == new_status:
            return previous
        if is_counted(old_status) or is_counted(new_status):
            self._check_line_ownership(previous)

        invoice = self.store.update_invoice(previous.model_copy(update={"status": new_status}))
        logger.info(
            "invoice_status_changed",
            extra={"invoice_id": invoice.id, "old_status": old_status, "new_status": new_status},
        )
        try:
            self.aggregation.on_invoice_status_changed(invoice.id, old_status, new_status)
        except BudgetEngineError:
            self._restore(previous, "update_invoice_status")
            raise
        return invoice

    def reassign_invoice(
        self,
        invoice_id: str,
        *,
        project_id: Optional[str] = None,
        budget_line_id: Optional[str] = None,
    ) -> Invoice:
        """Move an invoice to another project/line (``None`` for both unassigns it).

        Passing only ``budget_line_id`` takes the project from the line. If the
        totals cannot be re-derived the old assignment is put back.
        """
        previous = self.store.get_invoice(invoice_id)
        new_project_id, new_line_id = self._resolve_assignment(project_id, budget_line_id)
        old_project_id, old_line_id = previous.project_id, previous.budget_line_id

        invoice = self.store.update_invoice(
            previous.model_copy(update={"project_id": new_project_id, "budget_line_id": new_line_id})
        )
        try:
            self.aggregation.on_invoice_reassigned(
                invoice.id, old_project_id, old_line_id, new_project_id, new_line_id
            )
        except BudgetEngineError:
            self._restore(previous, "reassign_invoice")
            raise
        return invoice

    def assign_invoice_to_line(self, invoice_id: str, budget_line_id: str) -> Invoice:
        return self.reassign_invoice(invoice_id, budget_line_id=budget_line_id)

    def delete_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.store.delete_invoice(invoice_id)
        try:
            self.aggregation.on_invoice_deleted(
                invoice.id, project_id=invoice.project_id, budget_line_id=invoice.budget_line_id
            )
        except BudgetEngineError:
            self.store.add_invoice(invoice)
            logger.error("invoice_change_rolled_back", extra={"invoice_id": invoice.id, "operation": "delete_invoice"})
            raise
        return invoice

    def list_unmatched_invoices(self, *, owner_id: Optional[str] = None) -> List[Invoice]:
        """Invoices not yet attached to a budget line, oldest first."""
        out = []
        for invoice in self.store.list_invoices():
            if invoice.budget_line_id is not None:
                continue
            if owner_id is not None and self._invoice_owner(invoice) != owner_id:
                continue
            out.append(invoice)
        return out

    def suggest_budget_lines(self, invoice_id: str, *, limit: int = 10) -> List[BudgetLine]:
        """Lines whose payee hint matches the invoice's payee, earliest created first."""
        invoice = self.store.get_invoice(invoice_id)
        if invoice.payee_id is None:
            return []
        if invoice.project_id is not None:
            project_ids = [invoice.project_id]
        else:
            payee = self.store.get_contact(invoice.payee_id)
            project_ids = [p.id for p in self.store.list_projects(owner_id=payee.owner_id)]

        lines: List[BudgetLine] = []
        for pid in project_ids:
            lines.extend(self.store.list_budget_lines(pid, payee_id=invoice.payee_id))
        lines.sort(key=lambda line: (line.created_at, line.line_number, line.id))
        return lines[:limit]

    def _resolve_assignment(
        self, project_id: Optional[str], budget_line_id: Optional[str]
    ) -> Tuple[Optional[str], Optional[str]]:
        if budget_line_id is None:
            if project_id is not None:
                self.store.get_project(project_id)
            return project_id, None

        line = self.store.get_budget_line(budget_line_id)
        if project_id is None:
            project_id = line.project_id
        elif line.project_id != project_id:
            logger.error(
                "cross_project_assignment_refused",
                extra={"project_id": project_id, "budget_line_id": line.id, "line_project_id": line.project_id},
            )
            raise AggregationInconsistency(
                f"Budget line {line.id} does not belong to project {project_id}.",
                budget_line_id=line.id,
                project_id=project_id,
            )
        return project_id, line.id

    def _invoice_owner(self, invoice: Invoice) -> Optional[str]:
        if invoice.project_id is not None:
            return self.store.get_project(invoice.project_id).owner_id
        if invoice.payee_id is not None:
            return self.store.get_contact(invoice.payee_id).owner_id
        return None

    def _check_line_ownership(self, invoice: Invoice) -> None:
        if invoice.budget_line_id is None:
            return
        line = self.store.get_budget_line(invoice.budget_line_id)
        if line.project_id != invoice.project_id:
            logger.error(
                "invoice_line_mismatch",
                extra={
                    "invoice_id": invoice.id,
                    "project_id": invoice.project_id,
                    "budget_line_id": line.id,
                    "line_project_id": line.project_id,
                },
            )
            raise AggregationInconsistency(
                f"Invoice {invoice.id} references budget line {line.id} of another project.",
                invoice_id=invoice.id,
                budget_line_id=line.id,
                project_id=invoice.project_id,
            )

    def _restore(self, previous: Invoice, operation: str) -> None:
        self.store.update_invoice(previous)
        logger.error("invoice_change_rolled_back", extra={"invoice_id": previous.id, "operation": operation})
