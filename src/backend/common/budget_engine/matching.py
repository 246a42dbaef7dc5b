"""Auto-matching of externally submitted invoices.

An unauthenticated submitter only gives an email address, a project code and
an amount. Resolution order (first failure wins, nothing is written on
failure):

1. payee by case-insensitive exact email,
2. project by code, restricted to the payee's owner in the same query,
3. budget line of that project whose payee hint is the payee (earliest
   created wins); no line is a partial match, not a failure.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Optional, Tuple, Union

from .exceptions import EmailNotFound, ProjectCodeMismatch, ValidationFailure
from .invoices import InvoiceService, validate_amount
from .logging_config import LogContext, get_logger
from .models import BudgetLine, InvoiceStatus, InvoiceSummary, MatchResult
from .store import BudgetStore

logger = get_logger("matching")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_submission(email: str, amount: Any, project_code: str) -> Tuple[str, Decimal, str]:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        raise ValidationFailure("Invalid email address", field="email")
    parsed_amount = validate_amount(amount)
    project_code = (project_code or "").strip()
    if not project_code:
        raise ValidationFailure("Project code is required", field="project_code")
    return email, parsed_amount, project_code


class AutoMatchEngine:
    def __init__(self, store: BudgetStore, *, invoices: Optional[InvoiceService] = None):
        self.store = store
        self.invoices = invoices or InvoiceService(store)

    def match_external_invoice(self, email: str, project_code: str, amount: Any) -> MatchResult:
        email, _, project_code = validate_submission(email, amount, project_code)

        payee = self.store.find_contact_by_email(email)
        if payee is None:
            logger.info("match_failed_email_not_found")
            raise EmailNotFound(email)

        # Owner scoping happens inside the lookup; a code owned by someone
        # else is indistinguishable from an unknown code.
        project = self.store.find_project_by_code(project_code, payee.owner_id)
        if project is None:
            logger.info("match_failed_project_code", extra={"payee_id": payee.id})
            raise ProjectCodeMismatch(project_code)

        line = self._pick_line(project.id, payee.id)
        logger.info(
            "external_invoice_matched",
            extra={
                "payee_id": payee.id,
                "project_id": project.id,
                "budget_line_id": line.id if line else None,
            },
        )
        return MatchResult(payee=payee, project=project, budget_line=line)

    def submit_external_invoice(
        self,
        email: str,
        project_code: str,
        amount: Any,
        *,
        invoice_number: Optional[str] = None,
        initial_status: Union[InvoiceStatus, str] = InvoiceStatus.WAITING_APPROVAL,
    ) -> InvoiceSummary:
        match = self.match_external_invoice(email, project_code, amount)
        with LogContext.bind(owner_id=match.project.owner_id, project_id=match.project.id):
            invoice = self.invoices.create_invoice(
                amount=amount,
                project_id=match.project.id,
                budget_line_id=match.budget_line.id if match.budget_line else None,
                payee_id=match.payee.id,
                status=initial_status,
                invoice_number=invoice_number,
            )
        return InvoiceSummary(
            id=invoice.id,
            status=invoice.status,
            amount=invoice.amount,
            payee_name=match.payee.name,
            project_name=match.project.name,
            budget_line_id=invoice.budget_line_id,
            invoice_number=invoice.invoice_number,
        )

    def validate_payee_email(self, email: str) -> bool:
        return self.store.find_contact_by_email((email or "").strip()) is not None

    def _pick_line(self, project_id: str, payee_id: str) -> Optional[BudgetLine]:
        candidates = self.store.list_budget_lines(project_id, payee_id=payee_id)
        if not candidates:
            return None
        return min(candidates, key=lambda line: (line.created_at, line.line_number, line.id))
