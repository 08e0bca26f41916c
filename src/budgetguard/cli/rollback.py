"""Rollback CLI commands.

Commands:
    budgetguard rollback check: One monitoring cycle (evaluate, gate, remediate)
    budgetguard rollback execute: Operator-initiated rollback
    budgetguard rollback history: Show the rollback attempt log

Example:
    $ budgetguard rollback check --env production
    $ budgetguard rollback execute --reason "bad deploy" --commit abc1234
    $ budgetguard rollback history --limit 5 --output json
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

import click
import structlog

from budgetguard.cli.utils import ExitCode, fail, info, load_cli_config, success, warn

if TYPE_CHECKING:
    from budgetguard.rollback.monitor import MonitorReport
    from budgetguard.schemas.config import GuardConfig
    from budgetguard.schemas.rollback import RollbackAttemptRecord

logger = structlog.get_logger(__name__)

_OUTPUT_OPTION = click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


def _with_dry_run(config: GuardConfig) -> GuardConfig:
    rollback = config.rollback.model_copy(update={"dry_run": True})
    return config.model_copy(update={"rollback": rollback})


def format_report(report: MonitorReport, output_format: str) -> str:
    """Format a monitoring cycle report for CLI output.

    Args:
        report: Report returned by the rollback monitor.
        output_format: Output format ("table" or "json").

    Returns:
        Formatted string for display.
    """
    decision = report.decision
    execution = report.execution
    if output_format == "json":
        payload = {
            "environment": report.environment,
            "tier": decision.tier.value,
            "consumed_fraction": report.status.consumed_fraction if report.status else None,
            "decision": decision.model_dump(mode="json"),
            "execution": execution.model_dump(mode="json") if execution else None,
            "exit_code": report.exit_code,
        }
        return json.dumps(payload, indent=2)

    lines = ["", f"Environment:  {report.environment}", f"Tier:         {decision.tier.value}"]
    if report.status is not None:
        lines.append(f"Consumed:     {report.status.consumed_pct:.2f}%")
    action = "rollback" if decision.should_rollback else "skip"
    lines.append(f"Decision:     {action} ({decision.reason})")
    if decision.dry_run:
        lines.append("Mode:         dry run")
    if execution is not None:
        lines.append(f"Outcome:      {execution.outcome.value}")
        for result in execution.backends:
            target = result.target_reference or "-"
            lines.append(
                f"  {result.backend.value}: {result.outcome.value} "
                f"(target: {target}) {result.detail}".rstrip()
            )
        if execution.health_status:
            lines.append(f"Health:       {execution.health_status} / {execution.sync_status}")
    lines.append("")
    return "\n".join(lines)


def _format_records(records: list[RollbackAttemptRecord], output_format: str) -> str:
    if output_format == "json":
        return json.dumps([r.model_dump(mode="json") for r in records], indent=2)

    if not records:
        return "No rollback attempts recorded."

    header = f"{'TIMESTAMP':<22} {'TIER':<10} {'OUTCOME':<10} {'TARGET':<14} REASON"
    lines = [header, "-" * len(header)]
    for record in records:
        lines.append(
            f"{record.timestamp.strftime('%Y-%m-%d %H:%M:%S'):<22} "
            f"{record.trigger_tier.value:<10} "
            f"{record.outcome.value:<10} "
            f"{(record.target_reference or '-')[:14]:<14} "
            f"{record.reason}"
        )
    return "\n".join(lines)


@click.group(name="rollback", help="Error budget rollback commands.")
def rollback() -> None:
    """Rollback command group."""
    pass


@rollback.command(
    name="check",
    help="Evaluate the error budget and roll back when the safety gate allows it.",
    epilog="""
Exit Codes:
    0  - OK tier
    1  - Warning tier (no action)
    2  - Critical or emergency tier (action taken or blocked)
    3  - No data
    5  - Backend unavailable
""",
)
@click.option("--env", "environment", default=None, help="Environment to guard.")
@click.option("--dry-run", is_flag=True, default=False, help="Simulate without changes.")
@_OUTPUT_OPTION
@click.pass_context
def check_command(
    ctx: click.Context,
    environment: str | None,
    dry_run: bool,
    output: str,
) -> None:
    """Run one monitoring cycle for the environment."""
    from budgetguard.errors import BudgetGuardError
    from budgetguard.rollback.monitor import RollbackMonitor

    config = load_cli_config(ctx, output)
    if dry_run:
        config = _with_dry_run(config)

    try:
        report = RollbackMonitor(config, environment).check()
    except BudgetGuardError as e:
        fail(e, output, "Rollback check failed", environment=environment)

    click.echo(format_report(report, output))
    sys.exit(report.exit_code)


@rollback.command(
    name="execute",
    help="Roll back immediately, bypassing the safety gate.",
    epilog="""
Exit Codes:
    0  - Rollback succeeded (or dry run)
    2  - Rollback failed on at least one backend
    12 - Remediation already in progress
""",
)
@click.option("--env", "environment", default=None, help="Environment to roll back.")
@click.option("--reason", required=True, help="Why the rollback is being performed.")
@click.option("--commit", default=None, help="Config repository commit to restore.")
@click.option("--revision", type=int, default=None, help="Controller history id to restore.")
@click.option("--no-wait", is_flag=True, default=False, help="Do not wait for healthy.")
@click.option("--dry-run", is_flag=True, default=False, help="Simulate without changes.")
@_OUTPUT_OPTION
@click.pass_context
def execute_command(
    ctx: click.Context,
    environment: str | None,
    reason: str,
    commit: str | None,
    revision: int | None,
    no_wait: bool,
    dry_run: bool,
    output: str,
) -> None:
    """Execute an operator-initiated rollback."""
    from pydantic import ValidationError

    from budgetguard.errors import (
        BudgetGuardError,
        ConfigurationError,
        RemediationInProgressError,
    )
    from budgetguard.rollback.monitor import RollbackMonitor
    from budgetguard.schemas.rollback import RollbackOutcome, SkipKind, TargetSelection

    config = load_cli_config(ctx, output)
    try:
        target = TargetSelection(commit=commit, revision=revision, wait_for_healthy=not no_wait)
    except ValidationError as e:
        fail(ConfigurationError(f"Invalid rollback target: {e}"), output, "Rollback failed")

    if output == "table":
        info(f"Rolling back {environment or config.service.environment}: {reason}")

    try:
        report = RollbackMonitor(config, environment).execute_manual(
            reason, target=target, dry_run=dry_run
        )
    except BudgetGuardError as e:
        fail(e, output, "Rollback failed", environment=environment)

    click.echo(format_report(report, output))
    if report.decision.skip_kind == SkipKind.LOCKED:
        if output == "table":
            warn("Another rollback or promotion holds the lock")
        sys.exit(RemediationInProgressError.exit_code)
    if report.execution is not None and report.execution.outcome == RollbackOutcome.FAILED:
        sys.exit(ExitCode.CRITICAL)
    if output == "table":
        success("Dry run complete" if report.decision.dry_run else "Rollback complete")
    sys.exit(ExitCode.SUCCESS)


@rollback.command(name="history", help="Show recent rollback attempts.")
@click.option("--env", "environment", default=None, help="Environment to show.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=10,
    show_default=True,
    help="Maximum number of records to show.",
)
@_OUTPUT_OPTION
@click.pass_context
def history_command(
    ctx: click.Context,
    environment: str | None,
    limit: int,
    output: str,
) -> None:
    """Show the attempt log for an environment, newest first."""
    from budgetguard.rollback.history import AttemptLog

    config = load_cli_config(ctx, output)
    env = environment or config.service.environment
    try:
        records = AttemptLog(config.state_dir).records(env)
    except OSError as e:
        fail(e, output, "Could not read attempt log", environment=env)

    click.echo(_format_records(list(reversed(records))[:limit], output))


__all__: list[str] = ["format_report", "rollback"]
