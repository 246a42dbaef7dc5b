from decimal import Decimal

import pytest

from common.budget_engine.exceptions import AggregationInconsistency, ValidationFailure
from common.budget_engine.fringe import apply_fringe, estimate_line, validate_fringe_percentage
from common.budget_engine.models import FringeRule, LineItemInputs


def test_apply_fringe():
    assert apply_fringe(Decimal("1000"), Decimal("20")) == Decimal("1200")
    assert apply_fringe(Decimal("1000"), None) == Decimal("1000")
    assert apply_fringe(Decimal("1000"), Decimal("0")) == Decimal("1000")


@pytest.mark.parametrize("pct", ["-1", "100.01", "lots"])
def test_fringe_percentage_out_of_range_is_rejected(pct):
    with pytest.raises(ValidationFailure):
        validate_fringe_percentage(pct)


def test_estimate_line_starts_from_raw_inputs():
    line = LineItemInputs(days="2", rate="500")
    rule = FringeRule(project_id="p", name="Payroll", percentage="10")
    assert estimate_line(line, "FLAT_RATE", rule) == Decimal("1100")


def test_switching_fringe_equals_applying_new_fringe_directly(engine, make_project, make_line):
    project = make_project()
    line = make_line(project, days="2", rate="500")
    rule_a = engine.budget.create_fringe_rule(project.id, "Union", "20")
    rule_b = engine.budget.create_fringe_rule(project.id, "Payroll", "10")

    engine.budget.assign_fringe_to_line(line.id, rule_a.id)
    assert engine.store.get_budget_line(line.id).estimate == Decimal("1200")

    switched = engine.budget.assign_fringe_to_line(line.id, rule_b.id)
    assert switched.estimate == Decimal("1100")
    assert engine.store.get_project(project.id).total_budget == Decimal("1100")


def test_removing_fringe_restores_base_estimate(engine, make_project, make_line):
    project = make_project()
    line = make_line(project, days="2", rate="500")
    rule = engine.budget.create_fringe_rule(project.id, "Union", "25")

    engine.budget.assign_fringe_to_line(line.id, rule.id)
    cleared = engine.budget.assign_fringe_to_line(line.id, None)
    assert cleared.estimate == Decimal("1000")
    assert cleared.fringe_rule_id is None
    assert engine.store.get_project(project.id).total_budget == Decimal("1000")


def test_updating_fringe_percentage_reestimates_assigned_lines(engine, make_project, make_line):
    project = make_project()
    fringed = make_line(project, days="1", rate="1000")
    plain = make_line(project, days="1", rate="200")
    rule = engine.budget.create_fringe_rule(project.id, "Union", "10")
    engine.budget.assign_fringe_to_line(fringed.id, rule.id)

    engine.budget.update_fringe_rule(rule.id, percentage="30")
    assert engine.store.get_budget_line(fringed.id).estimate == Decimal("1300")
    assert engine.store.get_budget_line(plain.id).estimate == Decimal("200")
    assert engine.store.get_project(project.id).total_budget == Decimal("1500")


def test_deleting_fringe_rule_unassigns_and_reestimates(engine, make_project, make_line):
    project = make_project()
    line = make_line(project, days="1", rate="1000")
    rule = engine.budget.create_fringe_rule(project.id, "Union", "50")
    engine.budget.assign_fringe_to_line(line.id, rule.id)

    engine.budget.delete_fringe_rule(rule.id)
    line = engine.store.get_budget_line(line.id)
    assert line.fringe_rule_id is None
    assert line.estimate == Decimal("1000")
    assert engine.store.list_fringe_rules(project.id) == []


def test_fringe_rule_from_another_project_is_refused(engine, make_project, make_line):
    project = make_project(project_code="A")
    other = make_project(project_code="B")
    line = make_line(project, days="1", rate="100")
    foreign = engine.budget.create_fringe_rule(other.id, "Union", "10")

    with pytest.raises(AggregationInconsistency):
        engine.budget.assign_fringe_to_line(line.id, foreign.id)
    assert engine.store.get_budget_line(line.id).fringe_rule_id is None
