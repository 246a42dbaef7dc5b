from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from common.budget_engine.models import BudgetLine, Contact, FringeRule, Invoice, Project
from common.budget_engine.store import BudgetStore, InMemoryBudgetStore


class DataSource(Protocol):
    def load_store(self) -> BudgetStore:
        """Return a store populated with the source's records."""
        ...


def get_data_source(name: str, *, fixture_path: Path | None = None) -> DataSource:
    """Resolve a data source implementation by name (fixtures|memory)."""
    source = (name or "").strip().lower()
    if source in ("fixtures", ""):
        return FixturesDataSource(fixture_path=fixture_path or _default_fixture_path())
    if source == "memory":
        return MemoryDataSource()
    raise ValueError(f"Unknown data source '{name}' (expected 'fixtures' or 'memory').")


class MemoryDataSource:
    def load_store(self) -> BudgetStore:
        return InMemoryBudgetStore()


@dataclass(frozen=True)
class FixturesDataSource:
    fixture_path: Path

    def load_store(self) -> BudgetStore:
        return load_fixture_store(self.fixture_path)


def load_fixture_store(path: Path) -> InMemoryBudgetStore:
    """Build an in-memory store from a fixture JSON file.

    Layout::

        {"contacts": [...],
         "projects": [{..., "fringe_rules": [...], "budget_lines": [...]}],
         "invoices": [...]}

    Stored totals in the fixture are loaded as-is; callers reconcile them.
    """
    payload = _load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Fixture {path} must be a JSON object.")

    store = InMemoryBudgetStore()
    for raw in payload.get("contacts", []):
        store.add_contact(Contact.model_validate(raw))

    for raw in payload.get("projects", []):
        raw = dict(raw)
        fringe_rules = raw.pop("fringe_rules", [])
        lines = raw.pop("budget_lines", [])
        project = store.add_project(Project.model_validate(raw))
        for rule in fringe_rules:
            store.add_fringe_rule(FringeRule.model_validate({**rule, "project_id": project.id}))
        for line in lines:
            store.add_budget_line(BudgetLine.model_validate({**line, "project_id": project.id}))

    for raw in payload.get("invoices", []):
        store.add_invoice(Invoice.model_validate(raw))
    return store


def _load_json(path: Path) -> Any:
    with Path(path).open(encoding="utf-8") as handle:
        return json.load(handle)


def _default_fixture_path() -> Path:
    return Path(__file__).resolve().parents[1] / "tests" / "budget_engine" / "fixtures" / "sample_production.json"
