"""Main entry point for the budgetguard CLI.

Command Groups:
    budgetguard budget: Error budget status (check)
    budgetguard slo: SLO compliance (check, report)
    budgetguard rollback: Error-budget rollback (check, execute, history)
    budgetguard promote: Environment promotion gate (validate, run, approve)

Example:
    $ budgetguard --help
    $ budgetguard --config budgetguard.yaml rollback check
    $ BUDGETGUARD_CONFIG=budgetguard.yaml budgetguard promote run dev staging
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version

import click

from budgetguard.cli.budget import budget
from budgetguard.cli.promote import promote
from budgetguard.cli.rollback import rollback
from budgetguard.cli.slo import slo


def _get_version() -> str:
    """Get the budgetguard package version.

    Returns:
        Version string from package metadata, or 'unknown' if not installed.
    """
    try:
        return get_version("budgetguard")
    except Exception:
        return "unknown"


@click.group(
    name="budgetguard",
    help="budgetguard - Error budget rollback and environment promotion gate.",
    epilog="Use 'budgetguard <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="budgetguard",
    message="%(prog)s %(version)s",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar="BUDGETGUARD_CONFIG",
    default=None,
    help="Path to the YAML configuration (env: BUDGETGUARD_CONFIG).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Minimum log level.",
)
@click.option(
    "--json-logs/--console-logs",
    default=True,
    show_default=True,
    help="Render logs as JSON lines or for the console.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str, json_logs: bool) -> None:
    """Root command group for the budgetguard CLI."""
    from budgetguard.telemetry import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    configure_logging(log_level=log_level.upper(), json_output=json_logs)


cli.add_command(budget)
cli.add_command(slo)
cli.add_command(rollback)
cli.add_command(promote)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the budgetguard CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
