"""Environment promotion CLI commands.

Commands:
    budgetguard promote validate: Run the promotion gate checks
    budgetguard promote run: Validate, promote and verify one edge
    budgetguard promote approve: Record an approval for the pending release

Example:
    $ budgetguard promote validate dev staging
    $ budgetguard promote approve canary production --approver alice --role sre
    $ budgetguard promote run staging canary --output json
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

import click
import structlog

from budgetguard.cli.utils import ExitCode, fail, info, load_cli_config, success, warn

if TYPE_CHECKING:
    from budgetguard.schemas.promotion import (
        PromotionOutcome,
        PromotionReport,
        ValidationResult,
    )

logger = structlog.get_logger(__name__)

_ENVIRONMENTS = ["dev", "staging", "canary", "production"]

_OUTPUT_OPTION = click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


def _check_lines(results: list[ValidationResult]) -> list[str]:
    lines = []
    for result in results:
        mark = {"pass": "✓", "fail": "✗"}.get(result.status.value, "-")
        lines.append(f"  {mark} {result.check_name}: {result.detail}")
    return lines


def format_validation(report: PromotionReport, output_format: str) -> str:
    """Format a promotion gate report for CLI output."""
    if output_format == "json":
        payload = report.model_dump(mode="json")
        payload["passed"] = report.passed
        payload["failures"] = [r.check_name for r in report.failures]
        return json.dumps(payload, indent=2)

    lines = ["", f"Promotion gate: {report.from_env.value} -> {report.to_env.value}", "=" * 40]
    lines.extend(_check_lines(report.results))
    lines.append("")
    if report.passed:
        lines.append("All checks passed")
    else:
        lines.append(f"{len(report.failures)} check(s) failed")
    lines.append("")
    return "\n".join(lines)


def format_outcome(outcome: PromotionOutcome, output_format: str) -> str:
    """Format the outcome of a promotion attempt for CLI output."""
    if output_format == "json":
        payload = outcome.model_dump(mode="json")
        payload["exit_code"] = outcome_exit_code(outcome)
        return json.dumps(payload, indent=2)

    lines = [
        "",
        f"Promotion:  {outcome.from_env.value} -> {outcome.to_env.value}",
        f"State:      {outcome.state.value}",
        f"Reason:     {outcome.reason}",
    ]
    if outcome.release_reference:
        lines.append(f"Release:    {outcome.release_reference}")
    if outcome.missing_approvals:
        missing = ", ".join(f"{role} x{n}" for role, n in sorted(outcome.missing_approvals.items()))
        lines.append(f"Missing:    {missing}")
    if outcome.report is not None and not outcome.report.passed:
        lines.append("Failed checks:")
        lines.extend(_check_lines(outcome.report.failures))
    if outcome.verification:
        lines.append("Verification:")
        lines.extend(_check_lines(outcome.verification))
    if outcome.rollback is not None:
        lines.append(f"Rollback:   {outcome.rollback.outcome.value} ({outcome.rollback.reason})")
    lines.append("")
    return "\n".join(lines)


def outcome_exit_code(outcome: PromotionOutcome) -> int:
    """0 completed or approved, 1 rejected or awaiting approval, 2 rolled back or failed."""
    from budgetguard.schemas.promotion import PromotionState

    if outcome.state in (PromotionState.COMPLETED, PromotionState.APPROVED):
        return ExitCode.SUCCESS
    if outcome.state in (PromotionState.REJECTED, PromotionState.AWAITING_APPROVAL):
        return ExitCode.WARNING
    return ExitCode.CRITICAL


@click.group(name="promote", help="Environment promotion commands.")
def promote() -> None:
    """Promotion command group."""
    pass


@promote.command(
    name="validate",
    help="Run the promotion gate checks for an edge.",
    epilog="""
Exit Codes:
    0 - All checks passed
    1 - At least one check failed
    4 - Environments are not adjacent
""",
)
@click.argument("from_env", type=click.Choice(_ENVIRONMENTS))
@click.argument("to_env", type=click.Choice(_ENVIRONMENTS))
@_OUTPUT_OPTION
@click.pass_context
def validate_command(ctx: click.Context, from_env: str, to_env: str, output: str) -> None:
    """Validate FROM_ENV -> TO_ENV without promoting."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.promotion.validator import PromotionValidator

    config = load_cli_config(ctx, output)
    if output == "table":
        info(f"Validating promotion {from_env} -> {to_env}")

    try:
        report = PromotionValidator(config).validate(from_env, to_env)
    except BudgetGuardError as e:
        fail(e, output, "Promotion validation failed", from_env=from_env, to_env=to_env)

    click.echo(format_validation(report, output))
    sys.exit(ExitCode.SUCCESS if report.passed else ExitCode.WARNING)


@promote.command(
    name="run",
    help="Validate, promote and verify one edge.",
    epilog="""
Exit Codes:
    0  - Completed (or approved in dry-run mode)
    1  - Rejected or awaiting approval
    2  - Rolled back or failed
    4  - Environments are not adjacent
    12 - Target environment is being remediated
""",
)
@click.argument("from_env", type=click.Choice(_ENVIRONMENTS))
@click.argument("to_env", type=click.Choice(_ENVIRONMENTS))
@click.option("--dry-run", is_flag=True, default=False, help="Stop before changing anything.")
@_OUTPUT_OPTION
@click.pass_context
def run_command(
    ctx: click.Context,
    from_env: str,
    to_env: str,
    dry_run: bool,
    output: str,
) -> None:
    """Promote the release deployed in FROM_ENV to TO_ENV."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.promotion.orchestrator import PromotionOrchestrator

    config = load_cli_config(ctx, output)
    if output == "table":
        mode = " (dry run)" if dry_run else ""
        info(f"Promoting {from_env} -> {to_env}{mode}")

    try:
        outcome = PromotionOrchestrator(config).promote(from_env, to_env, dry_run=dry_run)
    except BudgetGuardError as e:
        fail(e, output, "Promotion failed", from_env=from_env, to_env=to_env)

    click.echo(format_outcome(outcome, output))
    sys.exit(outcome_exit_code(outcome))


@promote.command(name="approve", help="Record an approval for the release in FROM_ENV.")
@click.argument("from_env", type=click.Choice(_ENVIRONMENTS))
@click.argument("to_env", type=click.Choice(_ENVIRONMENTS))
@click.option("--approver", required=True, help="Identity of the approver.")
@click.option("--role", required=True, help="Approver role (e.g. tech_lead, sre).")
@click.option(
    "--release",
    "release_reference",
    default=None,
    help="Release being approved (defaults to the one deployed in FROM_ENV).",
)
@_OUTPUT_OPTION
@click.pass_context
def approve_command(
    ctx: click.Context,
    from_env: str,
    to_env: str,
    approver: str,
    role: str,
    release_reference: str | None,
    output: str,
) -> None:
    """Record one approval."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.promotion.orchestrator import PromotionOrchestrator

    config = load_cli_config(ctx, output)
    try:
        edge, release, missing = PromotionOrchestrator(config).approve(
            from_env, to_env, approver, role, release_reference=release_reference
        )
    except BudgetGuardError as e:
        fail(e, output, "Approval failed", from_env=from_env, to_env=to_env)

    if output == "json":
        payload = {
            "edge": edge.key,
            "release_reference": release,
            "approver": approver,
            "role": role,
            "missing_approvals": missing,
        }
        click.echo(json.dumps(payload, indent=2))
        return

    success(f"Approval recorded: {approver} ({role}) for {release} on {edge.key}")
    if missing:
        pending = ", ".join(f"{r} x{n}" for r, n in sorted(missing.items()))
        warn(f"Still awaiting: {pending}")


__all__: list[str] = ["format_outcome", "format_validation", "outcome_exit_code", "promote"]
