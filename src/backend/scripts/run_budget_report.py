from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_backend_on_path() -> None:
    backend_dir = Path(__file__).resolve().parents[1]
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))


def _fmt(value, quantize) -> str:
    from common.budget_engine.money import format_amount

    if value is None:
        return ""
    return format_amount(value, quantize)


def _render_markdown(report, *, quantize) -> str:
    lines = [
        "# Budget Report",
        "",
        f"Generated at: {report.generated_at.isoformat()}",
        "",
        "## Totals",
        f"- Budget: {_fmt(report.total_budget, quantize)}",
        f"- Spent: {_fmt(report.total_spent, quantize)}",
        f"- Variance: {_fmt(report.variance, quantize)}",
        f"- Active projects: {report.active_projects}",
        f"- Pending invoices: {report.pending_invoices}",
    ]
    for project in report.projects:
        flag = " (OVER BUDGET)" if project.over_budget else ""
        lines.append("")
        lines.append(f"## {project.project_name} [{project.project_code}]{flag}")
        lines.append(f"- Ruleset: {project.ruleset.value}")
        lines.append(f"- Status: {project.status.value}")
        lines.append(f"- Budget: {_fmt(project.total_budget, quantize)}")
        lines.append(f"- Spent: {_fmt(project.total_spent, quantize)}")
        lines.append(f"- Variance: {_fmt(project.variance, quantize)}")
        if project.unassigned_invoice_total:
            lines.append(f"- Spent outside budget lines: {_fmt(project.unassigned_invoice_total, quantize)}")
        if project.invoice_counts:
            counts = ", ".join(f"{status.value}={count}" for status, count in sorted(project.invoice_counts.items()))
            lines.append(f"- Invoices: {counts}")
        if project.lines:
            lines.append("")
            lines.append("| # | Category | Line | Estimate | Actual | Running | Variance |")
            lines.append("|---|----------|------|----------|--------|---------|----------|")
            for line in project.lines:
                lines.append(
                    f"| {line.line_number} | {line.category} | {line.name} | {_fmt(line.estimate, quantize)} "
                    f"| {_fmt(line.actual_spent, quantize)} | {_fmt(line.running_amount, quantize)} "
                    f"| {_fmt(line.variance, quantize)} |"
                )
    return "\n".join(lines) + "\n"


def run_budget_report(
    fixture_path: Path,
    *,
    config=None,
    owner_id: str | None = None,
    skip_empty_lines: bool = False,
):
    """Load a fixture, re-estimate and reconcile every project, and build the dashboard."""
    _ensure_backend_on_path()
    from common.budget_engine.engine import BudgetEngine
    from common.budget_engine.reports import build_dashboard
    from pipelines.data_source import FixturesDataSource

    store = FixturesDataSource(fixture_path=fixture_path).load_store()
    engine = BudgetEngine(store, config)
    for project in store.list_projects(owner_id=owner_id):
        engine.budget.reestimate_project(project.id)
    engine.reconcile_all(owner_id=owner_id)
    return build_dashboard(store, owner_id=owner_id, skip_empty_lines=skip_empty_lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Reconcile budgets and invoices from a fixture file and write a JSON/Markdown report."
    )
    parser.add_argument(
        "--fixture",
        required=True,
        help="Path to a fixture JSON (e.g. src/backend/tests/budget_engine/fixtures/sample_production.json).",
    )
    parser.add_argument(
        "--format",
        choices=("json", "markdown"),
        default="json",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "--out",
        default=None,
        help="Output file path (defaults to stdout).",
    )
    parser.add_argument("--owner-id", default=None, help="Only report projects owned by this user id.")
    parser.add_argument(
        "--skip-empty-lines",
        action="store_true",
        help="Leave out template lines with no inputs and no actuals.",
    )
    args = parser.parse_args(argv)

    _ensure_backend_on_path()
    from common.budget_engine.config import get_engine_config
    from common.budget_engine.exceptions import BudgetEngineError
    from common.budget_engine.logging_config import configure_logging

    try:
        config = get_engine_config()
        configure_logging(level=config.log_level, fmt=config.log_format)
        report = run_budget_report(
            Path(args.fixture).resolve(),
            config=config,
            owner_id=args.owner_id,
            skip_empty_lines=args.skip_empty_lines,
        )
    except BudgetEngineError as exc:
        print(f"{exc.code}: {exc}", file=sys.stderr)
        return 1

    if args.format == "markdown":
        content = _render_markdown(report, quantize=config.amount_quantize)
    else:
        content = json.dumps(report.model_dump(mode="json"), indent=2) + "\n"

    if args.out:
        out_path = Path(args.out).resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(content)
        print(f"Wrote {out_path}")
    else:
        sys.stdout.write(content)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
