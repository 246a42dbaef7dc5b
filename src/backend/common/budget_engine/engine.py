from __future__ import annotations

from typing import Optional

from .aggregation import AggregationEngine
from .budget import BudgetService
from .config import EngineConfig
from .invoices import InvoiceService
from .matching import AutoMatchEngine
from .store import BudgetStore


class BudgetEngine:
    """Wires the services around one store and one aggregation engine."""

    def __init__(self, store: BudgetStore, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()
        self.aggregation = AggregationEngine(store)
        self.budget = BudgetService(store, aggregation=self.aggregation, config=self.config)
        self.invoices = InvoiceService(store, aggregation=self.aggregation)
        self.matching = AutoMatchEngine(store, invoices=self.invoices)

    def reconcile_all(self, *, owner_id: Optional[str] = None) -> int:
        """Re-derive every project's totals; returns the number of projects touched."""
        projects = self.store.list_projects(owner_id=owner_id)
        for project in projects:
            self.aggregation.reconcile_project(project.id)
        return len(projects)
