"""SLO CLI commands.

Commands:
    budgetguard slo check: Compare indicators with their objectives
    budgetguard slo report: Generate the JSON SLO report

Example:
    $ budgetguard slo check --window 7d
    $ budgetguard slo report --out reports/slo.json
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
import structlog

from budgetguard.cli.utils import ExitCode, fail, info, load_cli_config, success

if TYPE_CHECKING:
    from budgetguard.schemas.slo import ComplianceReport

logger = structlog.get_logger(__name__)


def _format_compliance(report: ComplianceReport, output_format: str) -> str:
    if output_format == "json":
        payload = report.model_dump(mode="json")
        payload["compliant"] = report.compliant
        payload["violations"] = [c.name for c in report.violations]
        return json.dumps(payload, indent=2)

    lines = ["", f"SLO compliance for {report.service} ({report.window})", "=" * 40]
    for check in report.checks:
        mark = "✓" if check.met else ("!" if check.advisory else "✗")
        if check.name.startswith("latency_"):
            values = f"{check.actual:.0f}ms (target: {check.target:.0f}ms)"
        elif check.name == "throughput":
            values = f"{check.actual:.1f} rps (target: {check.target:.0f} rps)"
        else:
            values = f"{check.actual * 100:.3f}% (target: {check.target * 100:.3f}%)"
        suffix = " [advisory]" if check.advisory else ""
        lines.append(f"  {mark} {check.name}: {values}{suffix}")
    lines.append("")
    if report.compliant:
        lines.append("All SLOs met")
    else:
        lines.append(f"{len(report.violations)} SLO violation(s)")
    lines.append("")
    return "\n".join(lines)


@click.group(name="slo", help="SLO compliance commands.")
def slo() -> None:
    """SLO compliance command group."""
    pass


@slo.command(
    name="check",
    help="Compare the service's indicators with its objectives.",
    epilog="""
Exit Codes:
    0 - All objectives met
    1 - At least one objective violated
    3 - No data
    5 - Metrics backend unavailable
""",
)
@click.option("--window", default=None, help="Evaluation window (defaults to slo_window).")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def check_command(ctx: click.Context, window: str | None, output: str) -> None:
    """Check SLO compliance of the configured service."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.slo.compliance import check_compliance
    from budgetguard.slo.evaluator import PrometheusBackend, SLIEvaluator

    config = load_cli_config(ctx, output)
    service = config.service
    try:
        backend = PrometheusBackend(config.metrics.url, timeout=config.metrics.timeout_seconds)
        sli_set = SLIEvaluator(backend).evaluate(
            service.name,
            window or service.slo_window,
            namespace=service.namespace,
            burn_windows=service.burn_windows,
        )
    except BudgetGuardError as e:
        fail(e, output, "SLO check failed")

    report = check_compliance(sli_set, service.targets)
    click.echo(_format_compliance(report, output))
    sys.exit(ExitCode.SUCCESS if report.compliant else ExitCode.WARNING)


@slo.command(
    name="report",
    help="Generate the JSON SLO report (indicators, error budget, compliance).",
)
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the report to a file instead of stdout.",
)
@click.pass_context
def report_command(ctx: click.Context, out_path: Path | None) -> None:
    """Generate the SLO report for the configured service."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.slo.assessment import assess_budget
    from budgetguard.slo.compliance import build_slo_report
    from budgetguard.slo.evaluator import PrometheusBackend

    config = load_cli_config(ctx, "json")
    try:
        backend = PrometheusBackend(config.metrics.url, timeout=config.metrics.timeout_seconds)
        sli_set, status = assess_budget(config.service, backend)
    except BudgetGuardError as e:
        fail(e, "json", "SLO report failed")

    report = json.dumps(build_slo_report(sli_set, status, config.service.targets), indent=2)
    if out_path is None:
        click.echo(report)
        return

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(report + "\n", encoding="utf-8")
    info(f"SLO report written to {out_path}")
    success(str(out_path))


__all__: list[str] = ["slo"]
