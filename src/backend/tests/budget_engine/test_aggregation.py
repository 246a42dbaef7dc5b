import logging
from decimal import Decimal

import pytest

from common.budget_engine.exceptions import AggregationInconsistency
from common.budget_engine.models import Invoice, InvoiceStatus


def test_recompute_project_spent_is_idempotent(engine, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="2", rate="500")
    make_invoice(amount="300", line=line)
    make_invoice(amount="200", project=project)

    first = engine.aggregation.recompute_project_spent(project.id)
    second = engine.aggregation.recompute_project_spent(project.id)
    assert first == second == Decimal("500")
    assert engine.store.get_project(project.id).total_spent == Decimal("500")


def test_approve_then_flag_moves_totals_by_the_amount(engine, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="2", rate="500")
    make_invoice(amount="100", line=line, status=InvoiceStatus.PAID)
    invoice = make_invoice(amount="250", line=line, status=InvoiceStatus.WAITING_APPROVAL)
    assert engine.store.get_project(project.id).total_spent == Decimal("100")

    engine.invoices.update_invoice_status(invoice.id, InvoiceStatus.APPROVED)
    assert engine.store.get_project(project.id).total_spent == Decimal("350")
    assert engine.store.get_budget_line(line.id).actual_spent == Decimal("350")

    engine.invoices.update_invoice_status(invoice.id, InvoiceStatus.FLAGGED)
    assert engine.store.get_project(project.id).total_spent == Decimal("100")
    assert engine.store.get_budget_line(line.id).actual_spent == Decimal("100")


def test_uncounted_status_change_writes_nothing(engine, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="1", rate="100")
    invoice = make_invoice(amount="75", line=line, status=InvoiceStatus.MISSING)

    engine.invoices.update_invoice_status(invoice.id, "Waiting Approval")
    assert engine.store.get_invoice(invoice.id).status == InvoiceStatus.WAITING_APPROVAL
    assert engine.store.get_budget_line(line.id).actual_spent == Decimal("0")


def test_deleting_counted_invoice_restores_totals(engine, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="2", rate="500")
    make_invoice(amount="400", line=line)
    before_line = engine.store.get_budget_line(line.id).actual_spent
    before_project = engine.store.get_project(project.id).total_spent

    invoice = make_invoice(amount="125.50", line=line, status=InvoiceStatus.PAID)
    assert engine.store.get_project(project.id).total_spent == Decimal("525.50")

    deleted = engine.invoices.delete_invoice(invoice.id)
    assert deleted.id == invoice.id
    assert engine.store.get_budget_line(line.id).actual_spent == before_line
    assert engine.store.get_project(project.id).total_spent == before_project


def test_reassignment_updates_both_lines(engine, make_project, make_line, make_invoice):
    project = make_project()
    line_a = make_line(project, name="A", days="1", rate="100")
    line_b = make_line(project, name="B", days="1", rate="100")
    invoice = make_invoice(amount="60", line=line_a)

    engine.invoices.assign_invoice_to_line(invoice.id, line_b.id)
    assert engine.store.get_budget_line(line_a.id).actual_spent == Decimal("0")
    assert engine.store.get_budget_line(line_b.id).actual_spent == Decimal("60")
    assert engine.store.get_project(project.id).total_spent == Decimal("60")


def test_reassignment_across_projects_moves_spent(engine, make_project, make_line, make_invoice):
    first = make_project(project_code="ONE")
    second = make_project(project_code="TWO")
    line_first = make_line(first, days="1", rate="100")
    line_second = make_line(second, days="1", rate="100")
    invoice = make_invoice(amount="80", line=line_first)

    engine.invoices.reassign_invoice(invoice.id, budget_line_id=line_second.id)
    assert engine.store.get_invoice(invoice.id).project_id == second.id
    assert engine.store.get_project(first.id).total_spent == Decimal("0")
    assert engine.store.get_project(second.id).total_spent == Decimal("80")
    assert engine.store.get_budget_line(line_second.id).actual_spent == Decimal("80")


def test_project_spent_includes_invoices_without_a_line(engine, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="1", rate="100")
    make_invoice(amount="40", line=line)
    make_invoice(amount="60", project=project)

    assert engine.store.get_budget_line(line.id).actual_spent == Decimal("40")
    assert engine.store.get_project(project.id).total_spent == Decimal("100")


def test_running_amount_is_never_touched_by_aggregation(engine, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="1", rate="100")
    engine.budget.update_running_amount(line.id, "42.10")

    invoice = make_invoice(amount="500", line=line)
    engine.invoices.update_invoice_status(invoice.id, InvoiceStatus.FLAGGED)
    engine.aggregation.reconcile_project(project.id)

    assert engine.store.get_budget_line(line.id).running_amount == Decimal("42.10")


def test_cross_project_assignment_is_refused(engine, make_project, make_line, make_invoice):
    project = make_project(project_code="ONE")
    other = make_project(project_code="TWO")
    foreign_line = make_line(other, days="1", rate="100")

    with pytest.raises(AggregationInconsistency):
        engine.invoices.create_invoice(amount="10", project_id=project.id, budget_line_id=foreign_line.id)
    assert engine.store.list_invoices() == []


def test_inconsistent_stored_invoice_is_detected(engine, store, make_project, make_line, caplog):
    caplog.set_level(logging.ERROR, logger="budget_engine")
    project = make_project(project_code="ONE")
    other = make_project(project_code="TWO")
    line = make_line(project, days="1", rate="100")
    store.add_invoice(
        Invoice(project_id=other.id, budget_line_id=line.id, amount="10", status=InvoiceStatus.APPROVED)
    )

    with pytest.raises(AggregationInconsistency) as excinfo:
        engine.aggregation.recompute_budget_line_actuals(line.id)
    assert excinfo.value.budget_line_id == line.id
    assert store.get_budget_line(line.id).actual_spent == Decimal("0")
    assert any(r.getMessage() == "aggregation_inconsistency" for r in caplog.records)


def test_reconcile_project_rederives_stale_totals(engine, store, make_project, make_line, make_invoice):
    project = make_project()
    line = make_line(project, days="2", rate="100")
    make_invoice(amount="90", line=line)

    stale = store.get_budget_line(line.id)
    stale.actual_spent = Decimal("9999")
    stale.estimate = Decimal("1")
    store.update_budget_line(stale)

    reconciled = engine.aggregation.reconcile_project(project.id)
    assert reconciled.total_spent == Decimal("90")
    assert reconciled.total_budget == Decimal("1")
    assert store.get_budget_line(line.id).actual_spent == Decimal("90")


@pytest.fixture
def write_log(store, monkeypatch):
    writes = []
    original = store.write_totals

    def _record(*, project_totals=(), line_totals=()):
        writes.append(([pt.project_id for pt in project_totals], [lt.budget_line_id for lt in line_totals]))
        return original(project_totals=project_totals, line_totals=line_totals)

    monkeypatch.setattr(store, "write_totals", _record)
    return writes


def test_status_change_writes_line_and_project_together(engine, make_project, make_line, make_invoice, write_log):
    project = make_project()
    line = make_line(project, days="1", rate="100")
    invoice = make_invoice(amount="30", line=line, status=InvoiceStatus.WAITING_APPROVAL)
    write_log.clear()

    engine.invoices.update_invoice_status(invoice.id, InvoiceStatus.APPROVED)
    assert write_log == [([project.id], [line.id])]


def test_cross_project_reassignment_is_a_single_write(engine, make_project, make_line, make_invoice, write_log):
    first = make_project(project_code="ONE")
    second = make_project(project_code="TWO")
    line_first = make_line(first, days="1", rate="100")
    line_second = make_line(second, days="1", rate="100")
    invoice = make_invoice(amount="80", line=line_first)
    write_log.clear()

    engine.invoices.reassign_invoice(invoice.id, budget_line_id=line_second.id)
    assert write_log == [([first.id, second.id], [line_first.id, line_second.id])]


def _store_foreign_invoice(store, *, project, line, status):
    # Bypasses the service checks to plant a record pointing at another project's line.
    return store.add_invoice(Invoice(project_id=project.id, budget_line_id=line.id, amount="10", status=status))


def test_refused_status_change_keeps_status_and_totals(engine, store, make_project, make_line, make_invoice):
    project = make_project(project_code="ONE")
    other = make_project(project_code="TWO")
    line = make_line(project, days="1", rate="100")
    make_invoice(amount="25", line=line)
    make_invoice(amount="5", project=other)
    invoice = _store_foreign_invoice(store, project=other, line=line, status=InvoiceStatus.WAITING_APPROVAL)

    with pytest.raises(AggregationInconsistency) as excinfo:
        engine.invoices.update_invoice_status(invoice.id, InvoiceStatus.APPROVED)
    assert excinfo.value.invoice_id == invoice.id
    assert store.get_invoice(invoice.id).status == InvoiceStatus.WAITING_APPROVAL
    assert store.get_budget_line(line.id).actual_spent == Decimal("25")
    assert store.get_project(project.id).total_spent == Decimal("25")
    assert store.get_project(other.id).total_spent == Decimal("5")


def test_failed_reassignment_restores_previous_assignment(engine, store, make_project, make_line, make_invoice):
    project = make_project(project_code="ONE")
    other = make_project(project_code="TWO")
    line = make_line(project, days="1", rate="100")
    invoice = make_invoice(amount="40", line=line)
    _store_foreign_invoice(store, project=other, line=line, status=InvoiceStatus.APPROVED)

    with pytest.raises(AggregationInconsistency):
        engine.invoices.reassign_invoice(invoice.id, project_id=project.id)
    restored = store.get_invoice(invoice.id)
    assert restored.project_id == project.id
    assert restored.budget_line_id == line.id
    assert store.get_budget_line(line.id).actual_spent == Decimal("40")


def test_failed_delete_puts_invoice_back(engine, store, make_project, make_line, make_invoice):
    project = make_project(project_code="ONE")
    other = make_project(project_code="TWO")
    line = make_line(project, days="1", rate="100")
    invoice = make_invoice(amount="40", line=line)
    _store_foreign_invoice(store, project=other, line=line, status=InvoiceStatus.PAID)

    with pytest.raises(AggregationInconsistency):
        engine.invoices.delete_invoice(invoice.id)
    assert store.get_invoice(invoice.id).amount == Decimal("40")
    assert store.get_project(project.id).total_spent == Decimal("40")
