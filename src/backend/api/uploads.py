from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from common.budget_engine.config import get_engine_config
from common.budget_engine.engine import BudgetEngine
from common.budget_engine.exceptions import BudgetEngineError, MatchFailure, ValidationFailure
from common.budget_engine.logging_config import LogContext, get_logger
from common.budget_engine.models import InvoiceSummary, new_id
from common.budget_engine.store import InMemoryBudgetStore


router = APIRouter(prefix="/uploads", tags=["uploads"])
logger = get_logger("api.uploads")

_ENGINE: Optional[BudgetEngine] = None


class InvoiceUploadRequest(BaseModel):
    email: str
    # Left untyped so malformed amounts reach the engine's own validation.
    amount: Any
    project_code: str
    invoice_number: Optional[str] = None


def get_engine() -> BudgetEngine:
    """Process-wide engine over an in-memory store; override in tests or deployments."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = BudgetEngine(InMemoryBudgetStore(), get_engine_config())
    return _ENGINE


def _error_detail(exc: BudgetEngineError) -> dict[str, str]:
    return {"code": exc.code, "message": str(exc)}


@router.post("/invoices", status_code=201, response_model=InvoiceSummary)
def upload_invoice(payload: InvoiceUploadRequest, engine: BudgetEngine = Depends(get_engine)):
    with LogContext.bind(request_id=new_id()):
        try:
            return engine.matching.submit_external_invoice(
                payload.email,
                payload.project_code,
                payload.amount,
                invoice_number=payload.invoice_number,
            )
        except ValidationFailure as exc:
            raise HTTPException(status_code=400, detail=_error_detail(exc)) from exc
        except MatchFailure as exc:
            raise HTTPException(status_code=404, detail=_error_detail(exc)) from exc
        except BudgetEngineError as exc:
            logger.error("invoice_upload_failed", extra={"error_code": exc.code})
            raise HTTPException(status_code=500, detail=_error_detail(exc)) from exc
