import os
import sys


# Ensure `src/backend` is on sys.path so imports like `import api...` work.
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.uploads import get_engine, router
from common.budget_engine.engine import BudgetEngine
from common.budget_engine.models import Contact
from common.budget_engine.store import InMemoryBudgetStore


@pytest.fixture
def engine() -> BudgetEngine:
    return BudgetEngine(InMemoryBudgetStore())


@pytest.fixture
def client(engine):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seeded(engine):
    crew = engine.store.add_contact(
        Contact(id="c-grip", owner_id="owner-1", name="Sam Grip", email="grip@crew.example")
    )
    project = engine.budget.create_project(
        name="Spring Spot",
        owner_id="owner-1",
        project_code="SPOT-24",
        lines=[{"name": "Key Grip", "days": "3", "rate": "500", "payee_id": crew.id}],
    )
    engine.budget.create_project(name="Elsewhere", owner_id="owner-2", project_code="OTHER-1")
    line = engine.store.list_budget_lines(project.id)[0]
    return {"crew": crew, "project": project, "line": line}
