import os
import sys


# Ensure `src/backend` is on sys.path so imports like `import common...` work.
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from pathlib import Path

import pytest

from common.budget_engine.engine import BudgetEngine
from common.budget_engine.logging_config import reset_logging
from common.budget_engine.models import Contact, InvoiceStatus
from common.budget_engine.store import InMemoryBudgetStore


FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def _reset_budget_logging():
    yield
    reset_logging()


@pytest.fixture
def sample_fixture_path() -> Path:
    return FIXTURES_DIR / "sample_production.json"


@pytest.fixture
def store() -> InMemoryBudgetStore:
    return InMemoryBudgetStore()


@pytest.fixture
def engine(store) -> BudgetEngine:
    return BudgetEngine(store)


@pytest.fixture
def make_contact(store):
    def _make(*, email: str, owner_id: str = "owner-1", name: str = "Crew Member", contact_id=None) -> Contact:
        kwargs = {"id": contact_id} if contact_id else {}
        return store.add_contact(Contact(owner_id=owner_id, name=name, email=email, **kwargs))

    return _make


@pytest.fixture
def make_project(engine):
    def _make(
        *,
        project_code: str = "PRJ-1",
        owner_id: str = "owner-1",
        ruleset: str = "FLAT_RATE",
        name: str = "Test Production",
        lines=(),
    ):
        return engine.budget.create_project(
            name=name, owner_id=owner_id, project_code=project_code, ruleset=ruleset, lines=lines
        )

    return _make


@pytest.fixture
def make_line(engine):
    def _make(project, *, category: str = "PRODUCTION", name: str = "Crew", payee_id=None, **inputs):
        line = engine.budget.add_budget_line(project.id, category, name)
        if inputs:
            line = engine.budget.update_line_fields(line.id, **inputs)
        if payee_id is not None:
            line = engine.budget.assign_line_payee(line.id, payee_id)
        return engine.store.get_budget_line(line.id)

    return _make


@pytest.fixture
def make_invoice(engine):
    def _make(*, amount, line=None, project=None, status=InvoiceStatus.APPROVED, payee_id=None):
        return engine.invoices.create_invoice(
            amount=amount,
            project_id=project.id if project is not None else None,
            budget_line_id=line.id if line is not None else None,
            payee_id=payee_id,
            status=status,
        )

    return _make
