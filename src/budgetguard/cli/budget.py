"""Error budget CLI commands.

Commands:
    budgetguard budget check: Evaluate the error budget and report its tier

Example:
    $ budgetguard --config budgetguard.yaml budget check
    $ budgetguard budget check --output json
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

import click
import structlog

from budgetguard.cli.utils import fail, info, load_cli_config

if TYPE_CHECKING:
    from budgetguard.schemas.slo import ErrorBudgetStatus

logger = structlog.get_logger(__name__)


def _burn(rate: float) -> str:
    from budgetguard.slo.budget import classify_burn_rate

    return f"{rate:.2f}x ({classify_burn_rate(rate)})"


def format_status(status: ErrorBudgetStatus, service: str, output_format: str) -> str:
    """Format an error budget status for CLI output.

    Args:
        status: Computed error budget status.
        service: Service name for the header.
        output_format: Output format ("table" or "json").

    Returns:
        Formatted string for display.
    """
    from budgetguard.slo.budget import format_hours, recommended_actions

    actions = recommended_actions(status.tier)
    if output_format == "json":
        payload = status.model_dump(mode="json")
        payload["service"] = service
        payload["consumed_pct"] = round(status.consumed_pct, 4)
        payload["recommended_actions"] = actions
        payload["exit_code"] = status.tier.exit_code
        return json.dumps(payload, indent=2)

    lines = [
        "",
        f"Service:             {service}",
        f"Availability:        {status.availability * 100:.4f}%",
        f"Error budget:        {status.budget_total * 100:.3f}%",
        f"Consumed:            {status.consumed_pct:.2f}%",
        f"Remaining:           {status.remaining_fraction * 100:.2f}%",
        f"Burn rate (1h):      {_burn(status.burn_rate_1h)}",
        f"Burn rate (6h):      {_burn(status.burn_rate_6h)}",
        f"Time to exhaustion:  {format_hours(status.time_to_exhaustion_hours)}",
        f"Tier:                {status.tier.value.upper()}",
        "",
    ]
    if actions:
        lines.append("Recommended actions:")
        lines.extend(f"  - {action}" for action in actions)
        lines.append("")
    return "\n".join(lines)


@click.group(name="budget", help="Error budget commands.")
def budget() -> None:
    """Error budget command group."""
    pass


@budget.command(
    name="check",
    help="Evaluate the error budget and report its tier.",
    epilog="""
Exit Codes:
    0 - OK (less than 50% consumed)
    1 - Warning (50% to 80%)
    2 - Critical or emergency (80% or more)
    3 - No data
    5 - Metrics backend unavailable
    8 - Malformed query
""",
)
@click.option(
    "--namespace",
    default=None,
    help="Namespace label override (defaults to the configured one).",
    metavar="NS",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def check_command(ctx: click.Context, namespace: str | None, output: str) -> None:
    """Evaluate the service's error budget over its SLO window."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.slo.assessment import assess_budget
    from budgetguard.slo.evaluator import PrometheusBackend

    config = load_cli_config(ctx, output)
    if output == "table":
        info(f"Checking error budget for {config.service.name} ({config.service.slo_window})")

    try:
        backend = PrometheusBackend(config.metrics.url, timeout=config.metrics.timeout_seconds)
        _, status = assess_budget(config.service, backend, namespace=namespace)
    except BudgetGuardError as e:
        fail(e, output, "Error budget check failed")

    click.echo(format_status(status, config.service.name, output))
    sys.exit(status.tier.exit_code)


__all__: list[str] = ["budget", "format_status"]
