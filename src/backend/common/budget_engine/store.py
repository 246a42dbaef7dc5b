from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, TypeVar

from pydantic import BaseModel

from .exceptions import (
    BudgetLineNotFound,
    ContactNotFound,
    FringeRuleNotFound,
    InvoiceNotFound,
    PersistenceError,
    ProjectNotFound,
    RecordNotFound,
)
from .models import (
    BudgetLine,
    Contact,
    FringeRule,
    Invoice,
    InvoiceStatus,
    LineTotals,
    Project,
    ProjectTotals,
)

M = TypeVar("M", bound=BaseModel)


class BudgetStore(Protocol):
    """Persistence collaborator.

    Reads return detached copies; callers persist changes through the
    ``update_*`` methods. Unknown ids raise `RecordNotFound` subclasses.
    """

    def get_project(self, project_id: str) -> Project: ...

    def get_budget_line(self, budget_line_id: str) -> BudgetLine: ...

    def get_invoice(self, invoice_id: str) -> Invoice: ...

    def get_fringe_rule(self, fringe_rule_id: str) -> FringeRule: ...

    def get_contact(self, contact_id: str) -> Contact: ...

    def list_projects(self, *, owner_id: Optional[str] = None) -> List[Project]: ...

    def list_budget_lines(self, project_id: str, *, payee_id: Optional[str] = None) -> List[BudgetLine]: ...

    def list_fringe_rules(self, project_id: str) -> List[FringeRule]: ...

    def list_invoices(
        self,
        *,
        project_id: Optional[str] = None,
        budget_line_id: Optional[str] = None,
        statuses: Optional[Iterable[InvoiceStatus]] = None,
        unassigned: bool = False,
    ) -> List[Invoice]: ...

    def find_contact_by_email(self, email: str) -> Optional[Contact]:
        """Case-insensitive exact match."""
        ...

    def find_project_by_code(self, project_code: str, owner_id: str) -> Optional[Project]:
        """Exact ``project_code`` match restricted to one owner's projects."""
        ...

    def add_project(self, project: Project) -> Project: ...

    def add_budget_line(self, line: BudgetLine) -> BudgetLine: ...

    def add_fringe_rule(self, rule: FringeRule) -> FringeRule: ...

    def add_invoice(self, invoice: Invoice) -> Invoice: ...

    def add_contact(self, contact: Contact) -> Contact: ...

    def update_project(self, project: Project) -> Project: ...

    def update_budget_line(self, line: BudgetLine) -> BudgetLine: ...

    def update_fringe_rule(self, rule: FringeRule) -> FringeRule: ...

    def update_invoice(self, invoice: Invoice) -> Invoice: ...

    def delete_project(self, project_id: str) -> Project:
        """Remove a project with its lines, fringe rules and invoices."""
        ...

    def delete_budget_line(self, budget_line_id: str) -> BudgetLine: ...

    def delete_fringe_rule(self, fringe_rule_id: str) -> FringeRule: ...

    def delete_invoice(self, invoice_id: str) -> Invoice: ...

    def write_totals(
        self,
        *,
        project_totals: Sequence[ProjectTotals] = (),
        line_totals: Sequence[LineTotals] = (),
    ) -> None:
        """Apply derived-field updates all or nothing."""
        ...


class InMemoryBudgetStore:
    """Dict-backed `BudgetStore` used by the CLI fixtures and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._projects: Dict[str, Project] = {}
        self._lines: Dict[str, BudgetLine] = {}
        self._fringe_rules: Dict[str, FringeRule] = {}
        self._invoices: Dict[str, Invoice] = {}
        self._contacts: Dict[str, Contact] = {}

    # -- reads -----------------------------------------------------------

    def get_project(self, project_id: str) -> Project:
        return self._get(self._projects, project_id, ProjectNotFound)

    def get_budget_line(self, budget_line_id: str) -> BudgetLine:
        return self._get(self._lines, budget_line_id, BudgetLineNotFound)

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._get(self._invoices, invoice_id, InvoiceNotFound)

    def get_fringe_rule(self, fringe_rule_id: str) -> FringeRule:
        return self._get(self._fringe_rules, fringe_rule_id, FringeRuleNotFound)

    def get_contact(self, contact_id: str) -> Contact:
        return self._get(self._contacts, contact_id, ContactNotFound)

    def list_projects(self, *, owner_id: Optional[str] = None) -> List[Project]:
        with self._lock:
            projects = [p for p in self._projects.values() if owner_id is None or p.owner_id == owner_id]
            return [p.model_copy(deep=True) for p in sorted(projects, key=lambda p: p.created_at)]

    def list_budget_lines(self, project_id: str, *, payee_id: Optional[str] = None) -> List[BudgetLine]:
        with self._lock:
            lines = [
                line
                for line in self._lines.values()
                if line.project_id == project_id and (payee_id is None or line.payee_id == payee_id)
            ]
            lines.sort(key=lambda line: (line.line_number, line.created_at))
            return [line.model_copy(deep=True) for line in lines]

    def list_fringe_rules(self, project_id: str) -> List[FringeRule]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._fringe_rules.values() if r.project_id == project_id]

    def list_invoices(
        self,
        *,
        project_id: Optional[str] = None,
        budget_line_id: Optional[str] = None,
        statuses: Optional[Iterable[InvoiceStatus]] = None,
        unassigned: bool = False,
    ) -> List[Invoice]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            out = []
            for inv in self._invoices.values():
                if unassigned and inv.project_id is not None:
                    continue
                if project_id is not None and inv.project_id != project_id:
                    continue
                if budget_line_id is not None and inv.budget_line_id != budget_line_id:
                    continue
                if wanted is not None and inv.status not in wanted:
                    continue
                out.append(inv.model_copy(deep=True))
            out.sort(key=lambda inv: inv.created_at)
            return out

    def find_contact_by_email(self, email: str) -> Optional[Contact]:
        needle = email.strip().casefold()
        with self._lock:
            for contact in self._contacts.values():
                if contact.email.strip().casefold() == needle:
                    return contact.model_copy(deep=True)
        return None

    def find_project_by_code(self, project_code: str, owner_id: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects.values():
                if project.project_code == project_code and project.owner_id == owner_id:
                    return project.model_copy(deep=True)
        return None

    # -- writes ----------------------------------------------------------

    def add_project(self, project: Project) -> Project:
        with self._lock:
            for existing in self._projects.values():
                if existing.owner_id == project.owner_id and existing.project_code == project.project_code:
                    raise PersistenceError(
                        f"Project code {project.project_code!r} already used by owner {project.owner_id}"
                    )
            return self._add(self._projects, project)

    def add_budget_line(self, line: BudgetLine) -> BudgetLine:
        with self._lock:
            self.get_project(line.project_id)
            return self._add(self._lines, line)

    def add_fringe_rule(self, rule: FringeRule) -> FringeRule:
        with self._lock:
            self.get_project(rule.project_id)
            return self._add(self._fringe_rules, rule)

    def add_invoice(self, invoice: Invoice) -> Invoice:
        return self._add(self._invoices, invoice)

    def add_contact(self, contact: Contact) -> Contact:
        return self._add(self._contacts, contact)

    def update_project(self, project: Project) -> Project:
        return self._replace(self._projects, project, ProjectNotFound)

    def update_budget_line(self, line: BudgetLine) -> BudgetLine:
        return self._replace(self._lines, line, BudgetLineNotFound)

    def update_fringe_rule(self, rule: FringeRule) -> FringeRule:
        return self._replace(self._fringe_rules, rule, FringeRuleNotFound)

    def update_invoice(self, invoice: Invoice) -> Invoice:
        return self._replace(self._invoices, invoice, InvoiceNotFound)

    def delete_project(self, project_id: str) -> Project:
        with self._lock:
            project = self._pop(self._projects, project_id, ProjectNotFound)
            line_ids = {rid for rid, line in self._lines.items() if line.project_id == project_id}
            for rid in line_ids:
                del self._lines[rid]
            for rid in [rid for rid, rule in self._fringe_rules.items() if rule.project_id == project_id]:
                del self._fringe_rules[rid]
            for rid in [
                rid
                for rid, inv in self._invoices.items()
                if inv.project_id == project_id or inv.budget_line_id in line_ids
            ]:
                del self._invoices[rid]
            return project

    def delete_budget_line(self, budget_line_id: str) -> BudgetLine:
        return self._pop(self._lines, budget_line_id, BudgetLineNotFound)

    def delete_fringe_rule(self, fringe_rule_id: str) -> FringeRule:
        return self._pop(self._fringe_rules, fringe_rule_id, FringeRuleNotFound)

    def delete_invoice(self, invoice_id: str) -> Invoice:
        return self._pop(self._invoices, invoice_id, InvoiceNotFound)

    def write_totals(
        self,
        *,
        project_totals: Sequence[ProjectTotals] = (),
        line_totals: Sequence[LineTotals] = (),
    ) -> None:
        with self._lock:
            # Resolve every target before touching any of them.
            for pt in project_totals:
                if pt.project_id not in self._projects:
                    raise ProjectNotFound(pt.project_id)
            for lt in line_totals:
                if lt.budget_line_id not in self._lines:
                    raise BudgetLineNotFound(lt.budget_line_id)

            for pt in project_totals:
                project = self._projects[pt.project_id]
                changes = pt.model_dump(exclude={"project_id"}, exclude_none=True)
                self._projects[pt.project_id] = project.model_copy(update=changes)
            for lt in line_totals:
                line = self._lines[lt.budget_line_id]
                changes = lt.model_dump(exclude={"budget_line_id"}, exclude_none=True)
                self._lines[lt.budget_line_id] = line.model_copy(update=changes)

    # -- helpers ---------------------------------------------------------

    def _get(self, table: Dict[str, M], record_id: str, not_found: type[RecordNotFound]) -> M:
        with self._lock:
            record = table.get(record_id)
            if record is None:
                raise not_found(record_id)
            return record.model_copy(deep=True)

    def _add(self, table: Dict[str, M], record: M) -> M:
        with self._lock:
            record_id = getattr(record, "id")
            if record_id in table:
                raise PersistenceError(f"Duplicate id: {record_id}")
            table[record_id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def _replace(self, table: Dict[str, M], record: M, not_found: type[RecordNotFound]) -> M:
        with self._lock:
            record_id = getattr(record, "id")
            if record_id not in table:
                raise not_found(record_id)
            table[record_id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def _pop(self, table: Dict[str, M], record_id: str, not_found: type[RecordNotFound]) -> M:
        with self._lock:
            record = table.pop(record_id, None)
            if record is None:
                raise not_found(record_id)
            return record
