"""Typed exceptions for the budget engine.

Every error carries a machine-readable ``code`` so the API layer and CLI can
map failures without parsing messages::

    BudgetEngineError
    +-- ValidationFailure           VALIDATION_FAILED
    +-- MatchFailure
    |   +-- EmailNotFound           EMAIL_NOT_FOUND
    |   +-- ProjectCodeMismatch     PROJECT_CODE_MISMATCH
    +-- AggregationInconsistency    AGGREGATION_INCONSISTENCY
    +-- RecordNotFound
    |   +-- ProjectNotFound
    |   +-- BudgetLineNotFound
    |   +-- InvoiceNotFound
    |   +-- FringeRuleNotFound
    |   +-- ContactNotFound
    +-- PersistenceError            PERSISTENCE_ERROR

An unknown ruleset name is deliberately not an exception: it degrades to
FLAT_RATE with a warning (see ``rulesets.get_ruleset``).
"""

from __future__ import annotations

from typing import Optional


class BudgetEngineError(Exception):
    code: str = "BUDGET_ENGINE_ERROR"


class ValidationFailure(BudgetEngineError):
    """Caller input rejected before any lookup; message is safe to display."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, *, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class MatchFailure(BudgetEngineError):
    """Terminal auto-match failure. No state has been created."""

    code: str = "MATCH_FAILED"


class EmailNotFound(MatchFailure):
    code: str = "EMAIL_NOT_FOUND"

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email not found in our system. Please contact the production team.")


class ProjectCodeMismatch(MatchFailure):
    # Same message whether the code is unknown or owned by someone else.
    code: str = "PROJECT_CODE_MISMATCH"

    def __init__(self, project_code: str):
        self.project_code = project_code
        super().__init__("Project code not recognised for this payee. Please check the code and try again.")


class AggregationInconsistency(BudgetEngineError):
    """An invoice or fringe rule points at a line of a different project."""

    code: str = "AGGREGATION_INCONSISTENCY"

    def __init__(
        self,
        message: str,
        *,
        invoice_id: Optional[str] = None,
        budget_line_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ):
        self.invoice_id = invoice_id
        self.budget_line_id = budget_line_id
        self.project_id = project_id
        super().__init__(message)


class RecordNotFound(BudgetEngineError):
    code: str = "RECORD_NOT_FOUND"
    record_type: str = "Record"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"{self.record_type} not found: {record_id}")


class ProjectNotFound(RecordNotFound):
    code: str = "PROJECT_NOT_FOUND"
    record_type = "Project"


class BudgetLineNotFound(RecordNotFound):
    code: str = "BUDGET_LINE_NOT_FOUND"
    record_type = "Budget line"


class InvoiceNotFound(RecordNotFound):
    code: str = "INVOICE_NOT_FOUND"
    record_type = "Invoice"


class FringeRuleNotFound(RecordNotFound):
    code: str = "FRINGE_RULE_NOT_FOUND"
    record_type = "Fringe rule"


class ContactNotFound(RecordNotFound):
    code: str = "CONTACT_NOT_FOUND"
    record_type = "Contact"


class PersistenceError(BudgetEngineError):
    code: str = "PERSISTENCE_ERROR"
