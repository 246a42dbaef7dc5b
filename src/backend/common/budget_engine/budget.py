from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

from .aggregation import AggregationEngine
from .config import EngineConfig
from .exceptions import AggregationInconsistency, ValidationFailure
from .fringe import estimate_line, validate_fringe_percentage
from .logging_config import LogContext, get_logger
from .models import (
    NUMERIC_INPUT_FIELDS,
    BudgetLine,
    BudgetLineDraft,
    FringeRule,
    FringeRuleDraft,
    LineTotals,
    Project,
    ProjectStatus,
    ProjectTotals,
    new_id,
    utc_now,
)
from .money import sum_amounts, to_decimal
from .rulesets import is_valid_ruleset, resolve_ruleset_name
from .store import BudgetStore

logger = get_logger("budget")

MAX_PROJECT_NAME_LENGTH = 255
EDITABLE_LINE_FIELDS = frozenset(NUMERIC_INPUT_FIELDS) | {"name", "category"}

D = TypeVar("D", BudgetLineDraft, FringeRuleDraft)


class BudgetService:
    """Project and budget-line lifecycle.

    Every path that changes a line's inputs, its fringe rule or the set of
    lines re-estimates from raw inputs and rewrites ``total_budget`` in the
    same store write.
    """

    def __init__(
        self,
        store: BudgetStore,
        *,
        aggregation: Optional[AggregationEngine] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.aggregation = aggregation or AggregationEngine(store)
        self.config = config or EngineConfig()

    # -- projects --------------------------------------------------------

    def create_project(
        self,
        *,
        name: str,
        owner_id: str,
        project_code: str,
        ruleset: Optional[str] = None,
        client_name: Optional[str] = None,
        lines: Iterable[Union[BudgetLineDraft, Mapping[str, Any]]] = (),
        fringe_rules: Iterable[Union[FringeRuleDraft, Mapping[str, Any]]] = (),
        insurance_percent: Optional[Any] = None,
        production_fee_percent: Optional[Any] = None,
    ) -> Project:
        """Create a project with its fringe rules and lines in one call.

        Line drafts name their fringe rule by the draft ``key``; every reference
        is checked before anything is written.
        """
        name = (name or "").strip()
        if not name or len(name) > MAX_PROJECT_NAME_LENGTH:
            raise ValidationFailure(
                f"Project name must be between 1 and {MAX_PROJECT_NAME_LENGTH} characters.", field="name"
            )
        project_code = (project_code or "").strip()
        if not project_code:
            raise ValidationFailure("Project code is required.", field="project_code")

        ruleset_value = resolve_ruleset_name(ruleset).value if ruleset else self.config.default_ruleset.value
        drafts = _parse_drafts(BudgetLineDraft, lines, "lines")
        rule_drafts = _parse_drafts(FringeRuleDraft, fringe_rules, "fringe_rules")
        _assign_line_numbers(drafts)
        _check_fringe_references(drafts, rule_drafts)
        percentages = {rule.key: validate_fringe_percentage(rule.percentage) for rule in rule_drafts}
        insurance = validate_project_percent(insurance_percent, "insurance_percent")
        production_fee = validate_project_percent(production_fee_percent, "production_fee_percent")

        project = self.store.add_project(
            Project(
                name=name,
                owner_id=owner_id,
                project_code=project_code,
                ruleset=ruleset_value,
                client_name=client_name,
                insurance_percent=insurance,
                production_fee_percent=production_fee,
            )
        )
        with LogContext.bind(project_id=project.id, owner_id=owner_id):
            rules_by_key: Dict[str, FringeRule] = {}
            for rule_draft in rule_drafts:
                rules_by_key[rule_draft.key] = self.store.add_fringe_rule(
                    FringeRule(project_id=project.id, name=rule_draft.name, percentage=percentages[rule_draft.key])
                )

            for draft in drafts:
                rule = rules_by_key.get(draft.fringe_rule)
                line = BudgetLine(
                    project_id=project.id,
                    fringe_rule_id=rule.id if rule is not None else None,
                    **draft.model_dump(exclude={"fringe_rule"}),
                )
                line.estimate = estimate_line(line.inputs(), project.ruleset, rule, self.config)
                self.store.add_budget_line(line)

            total_budget = self.aggregation.recompute_project_budget(project.id)
            logger.info(
                "project_created",
                extra={
                    "ruleset": project.ruleset,
                    "line_count": len(drafts),
                    "fringe_rule_count": len(rules_by_key),
                    "total_budget": total_budget,
                },
            )
        return self.store.get_project(project.id)

    def delete_project(self, project_id: str) -> Project:
        """Delete a project together with its lines, fringe rules and invoices."""
        project = self.store.get_project(project_id)
        deleted = self.store.delete_project(project.id)
        logger.info("project_deleted", extra={"project_id": project.id, "owner_id": project.owner_id})
        return deleted

    def update_project_percentages(
        self, project_id: str, insurance_percent: Any, production_fee_percent: Any
    ) -> Project:
        insurance = validate_project_percent(insurance_percent, "insurance_percent")
        production_fee = validate_project_percent(production_fee_percent, "production_fee_percent")
        project = self.store.get_project(project_id)
        project.insurance_percent = insurance
        project.production_fee_percent = production_fee
        project = self.store.update_project(project)
        logger.info(
            "project_percentages_updated",
            extra={
                "project_id": project.id,
                "insurance_percent": insurance,
                "production_fee_percent": production_fee,
            },
        )
        return project

    def update_project_status(self, project_id: str, status: Union[ProjectStatus, str]) -> Project:
        try:
            new_status = ProjectStatus(str(getattr(status, "value", status)).upper())
        except ValueError as exc:
            raise ValidationFailure(f"Unknown project status: {status}", field="status") from exc
        project = self.store.get_project(project_id)
        project.status = new_status
        return self.store.update_project(project)

    def change_project_ruleset(self, project_id: str, ruleset: str) -> Project:
        """Switch a project's ruleset and re-estimate all of its lines."""
        if not is_valid_ruleset(ruleset):
            raise ValidationFailure(f"Unknown ruleset: {ruleset}", field="ruleset")
        project = self.store.get_project(project_id)
        project.ruleset = resolve_ruleset_name(ruleset).value
        self.store.update_project(project)
        return self.reestimate_project(project_id)

    def reestimate_project(self, project_id: str) -> Project:
        """Recompute every line estimate from raw inputs plus the project budget."""
        project = self.store.get_project(project_id)
        lines = self.store.list_budget_lines(project.id)
        self._write_estimates(project, {line.id: self._estimate(project, line) for line in lines}, lines)
        return self.store.get_project(project.id)

    # -- budget lines ----------------------------------------------------

    def add_budget_line(self, project_id: str, category: str, name: str = "New Line Item") -> BudgetLine:
        project = self.store.get_project(project_id)
        line = BudgetLine(
            project_id=project.id,
            category=category,
            name=name,
            line_number=self._next_line_number(project.id),
            quantity=Decimal("0"),
            days=Decimal("0"),
            rate=Decimal("0"),
            ot1_5=Decimal("0"),
            ot2=Decimal("0"),
            ot2_5=Decimal("0"),
        )
        line = self.store.add_budget_line(line)
        self.aggregation.on_line_estimate_changed(line.id)
        logger.info("budget_line_added", extra={"project_id": project.id, "budget_line_id": line.id})
        return line

    def update_line_fields(self, budget_line_id: str, **fields: Any) -> BudgetLine:
        unknown = set(fields) - EDITABLE_LINE_FIELDS
        if unknown:
            raise ValidationFailure(f"Fields not editable: {', '.join(sorted(unknown))}")

        line = self.store.get_budget_line(budget_line_id)
        project = self.store.get_project(line.project_id)
        for key, value in fields.items():
            if key in NUMERIC_INPUT_FIELDS:
                try:
                    value = None if value is None else to_decimal(value)
                except ValueError as exc:
                    raise ValidationFailure(f"{key} must be a number.", field=key) from exc
            setattr(line, key, value)

        self.store.update_budget_line(line)
        self._write_estimates(project, {line.id: self._estimate(project, line)})
        return self.store.get_budget_line(line.id)

    def update_running_amount(self, budget_line_id: str, running_amount: Optional[Any]) -> BudgetLine:
        line = self.store.get_budget_line(budget_line_id)
        try:
            line.running_amount = None if running_amount is None else to_decimal(running_amount)
        except ValueError as exc:
            raise ValidationFailure("Running amount must be a number.", field="running_amount") from exc
        return self.store.update_budget_line(line)

    def assign_line_payee(self, budget_line_id: str, payee_id: Optional[str]) -> BudgetLine:
        line = self.store.get_budget_line(budget_line_id)
        if payee_id is not None:
            self.store.get_contact(payee_id)
        line.payee_id = payee_id
        return self.store.update_budget_line(line)

    def duplicate_budget_line(self, budget_line_id: str) -> BudgetLine:
        source = self.store.get_budget_line(budget_line_id)
        copy = source.model_copy(
            update={
                "id": new_id(),
                "name": f"{source.name} (Copy)",
                "line_number": self._next_line_number(source.project_id),
                "actual_spent": Decimal("0"),
                "running_amount": None,
                "created_at": utc_now(),
            }
        )
        copy = self.store.add_budget_line(copy)
        self.aggregation.on_line_estimate_changed(copy.id)
        return copy

    def delete_budget_line(self, budget_line_id: str) -> Decimal:
        """Delete a line; its invoices stay on the project, unassigned from any line."""
        line = self.store.get_budget_line(budget_line_id)
        for invoice in self.store.list_invoices(budget_line_id=line.id):
            invoice.budget_line_id = None
            self.store.update_invoice(invoice)
        self.store.delete_budget_line(line.id)
        logger.info("budget_line_deleted", extra={"project_id": line.project_id, "budget_line_id": line.id})
        return self.aggregation.recompute_project_budget(line.project_id)

    # -- fringe rules ----------------------------------------------------

    def create_fringe_rule(self, project_id: str, name: str, percentage: Any) -> FringeRule:
        project = self.store.get_project(project_id)
        rule = FringeRule(project_id=project.id, name=name, percentage=validate_fringe_percentage(percentage))
        return self.store.add_fringe_rule(rule)

    def update_fringe_rule(
        self, fringe_rule_id: str, *, name: Optional[str] = None, percentage: Optional[Any] = None
    ) -> FringeRule:
        rule = self.store.get_fringe_rule(fringe_rule_id)
        if name is not None:
            rule.name = name
        if percentage is not None:
            rule.percentage = validate_fringe_percentage(percentage)
        rule = self.store.update_fringe_rule(rule)

        if percentage is not None:
            project = self.store.get_project(rule.project_id)
            affected = [line for line in self.store.list_budget_lines(project.id) if line.fringe_rule_id == rule.id]
            self._write_estimates(project, {line.id: self._estimate(project, line, rule) for line in affected})
        return rule

    def delete_fringe_rule(self, fringe_rule_id: str) -> None:
        rule = self.store.get_fringe_rule(fringe_rule_id)
        project = self.store.get_project(rule.project_id)
        estimates: Dict[str, Decimal] = {}
        for line in self.store.list_budget_lines(project.id):
            if line.fringe_rule_id != rule.id:
                continue
            line.fringe_rule_id = None
            self.store.update_budget_line(line)
            estimates[line.id] = estimate_line(line.inputs(), project.ruleset, None, self.config)
        self.store.delete_fringe_rule(rule.id)
        self._write_estimates(project, estimates)

    def assign_fringe_to_line(self, budget_line_id: str, fringe_rule_id: Optional[str]) -> BudgetLine:
        """Assign (or with ``None`` remove) a line's fringe rule.

        The new estimate always comes from the ruleset's base estimate, never
        from the currently stored (possibly already fringed) value.
        """
        line = self.store.get_budget_line(budget_line_id)
        project = self.store.get_project(line.project_id)
        rule: Optional[FringeRule] = None
        if fringe_rule_id is not None:
            rule = self.store.get_fringe_rule(fringe_rule_id)
            if rule.project_id != line.project_id:
                raise AggregationInconsistency(
                    f"Fringe rule {rule.id} belongs to another project.",
                    budget_line_id=line.id,
                    project_id=line.project_id,
                )

        line.fringe_rule_id = fringe_rule_id
        self.store.update_budget_line(line)
        self._write_estimates(project, {line.id: estimate_line(line.inputs(), project.ruleset, rule, self.config)})
        logger.info(
            "fringe_assigned",
            extra={"project_id": project.id, "budget_line_id": line.id, "fringe_rule_id": fringe_rule_id},
        )
        return self.store.get_budget_line(line.id)

    # -- internals -------------------------------------------------------

    def _estimate(self, project: Project, line: BudgetLine, rule: Optional[FringeRule] = None) -> Decimal:
        if rule is None and line.fringe_rule_id is not None:
            rule = self.store.get_fringe_rule(line.fringe_rule_id)
        return estimate_line(line.inputs(), project.ruleset, rule, self.config)

    def _write_estimates(
        self,
        project: Project,
        estimates: Mapping[str, Decimal],
        lines: Optional[List[BudgetLine]] = None,
    ) -> None:
        """Write new line estimates and the matching project budget together."""
        if lines is None:
            lines = self.store.list_budget_lines(project.id)
        total_budget = sum_amounts(estimates.get(line.id, line.estimate) for line in lines)
        self.store.write_totals(
            project_totals=[ProjectTotals(project_id=project.id, total_budget=total_budget)],
            line_totals=[LineTotals(budget_line_id=line_id, estimate=est) for line_id, est in estimates.items()],
        )
        logger.info(
            "estimates_written",
            extra={"project_id": project.id, "line_count": len(estimates), "total_budget": total_budget},
        )

    def _next_line_number(self, project_id: str) -> int:
        lines = self.store.list_budget_lines(project_id)
        return max((line.line_number for line in lines), default=0) + 1


def _assign_line_numbers(drafts: List[BudgetLineDraft]) -> None:
    taken = [d.line_number for d in drafts if d.line_number is not None]
    if len(taken) != len(set(taken)):
        raise ValidationFailure("Line numbers must be unique within a project.", field="line_number")
    next_number = max(taken, default=0) + 1
    for draft in drafts:
        if draft.line_number is None:
            draft.line_number = next_number
            next_number += 1


def validate_project_percent(value: Any, field: str) -> Decimal:
    """Insurance / production-fee percentage in [0, 100]; ``None`` means 0."""
    if value is None:
        return Decimal("0")
    try:
        pct = to_decimal(value)
    except ValueError as exc:
        raise ValidationFailure(f"{field} must be a number.", field=field) from exc
    if pct < 0 or pct > 100:
        raise ValidationFailure(f"{field} must be between 0 and 100.", field=field)
    return pct


def _parse_drafts(model: Type[D], items: Iterable[Any], field: str) -> List[D]:
    drafts = []
    for item in items:
        if isinstance(item, model):
            drafts.append(item)
            continue
        try:
            drafts.append(model.model_validate(item))
        except PydanticValidationError as exc:
            raise ValidationFailure(f"Invalid {field} entry: {exc}", field=field) from exc
    return drafts


def _check_fringe_references(drafts: List[BudgetLineDraft], rule_drafts: List[FringeRuleDraft]) -> None:
    keys = [rule.key for rule in rule_drafts]
    if len(keys) != len(set(keys)):
        raise ValidationFailure("Fringe rule keys must be unique.", field="fringe_rules")
    for draft in drafts:
        if draft.fringe_rule is not None and draft.fringe_rule not in keys:
            raise ValidationFailure(f"Unknown fringe rule: {draft.fringe_rule}", field="fringe_rule")
