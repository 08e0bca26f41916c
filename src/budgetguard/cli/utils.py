"""CLI utility functions and error handling.

Shared helpers for the budgetguard CLI:
- stderr/stdout output helpers (errors and progress on stderr, results on stdout)
- configuration loading from the root command context
- uniform error reporting with exit codes taken from the exception

Example:
    from budgetguard.cli.utils import error, fail

    try:
        ...
    except BudgetGuardError as e:
        fail(e, output, "Rollback check failed")
"""

from __future__ import annotations

import json
import re
import sys
from enum import IntEnum
from typing import TYPE_CHECKING, Any

import click
import structlog

if TYPE_CHECKING:
    from typing import NoReturn

    from budgetguard.schemas.config import GuardConfig

logger = structlog.get_logger(__name__)

_MAX_ERROR_LENGTH = 300


class ExitCode(IntEnum):
    """Result codes of the check commands.

    Errors use the ``exit_code`` of the raised exception (>= 2, see
    budgetguard.errors).
    """

    SUCCESS = 0
    """Nominal / check passed."""

    WARNING = 1
    """Warning tier, failed check, or unexpected error."""

    CRITICAL = 2
    """Critical or emergency tier."""


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Config not found", path="/etc/budgetguard.yaml")
        # Output: Error: Config not found (path=/etc/budgetguard.yaml)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def warn(message: str, **context: str | int | bool | None) -> None:
    """Print a warning message to stderr."""
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Warning: {message} ({context_str})"
    else:
        full_message = f"Warning: {message}"

    click.echo(full_message, err=True)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr.

    Used for progress updates that should not be captured by stdout
    redirection.
    """
    click.echo(message, err=True)


def sanitize_error(exc: str | Exception, max_length: int = _MAX_ERROR_LENGTH) -> str:
    """Sanitize an error message for display.

    Strips control characters and redacts credential-looking values.

    Example:
        >>> sanitize_error("login failed: password=hunter2")
        'login failed: password=[REDACTED]'
    """
    msg = str(exc)
    msg = "".join(c for c in msg if c.isprintable() or c in " \t")
    msg = re.sub(
        r"(token|key|secret|password|credential|auth)[=:\s]+[^\s,;)]+",
        r"\1=[REDACTED]",
        msg,
        flags=re.IGNORECASE,
    )
    if len(msg) > max_length:
        msg = msg[: max_length - 3] + "..."
    return msg


def get_exit_code_from_exception(exc: Exception) -> int:
    """Map an exception to a CLI exit code.

    budgetguard exceptions carry their own ``exit_code``; anything else is a
    general error.
    """
    exit_code = getattr(exc, "exit_code", None)
    if isinstance(exit_code, int):
        return exit_code
    exit_code_map = {
        "ConnectionError": 5,
        "TimeoutError": 5,
    }
    return exit_code_map.get(type(exc).__name__, 1)


def fail(exc: Exception, output: str, action: str, **fields: Any) -> NoReturn:
    """Report a failed command and exit with the exception's code.

    Args:
        exc: The exception that ended the command.
        output: Output format ("table" or "json").
        action: Short description of what failed ("Rollback check failed").
        **fields: Extra fields for the JSON error payload.
    """
    exit_code = get_exit_code_from_exception(exc)
    message = sanitize_error(exc)
    logger.error(
        "cli_command_failed",
        action=action,
        error_type=type(exc).__name__,
        error_summary=message[:200] if message else "Unknown error",
    )
    if output == "json":
        payload = {
            "error": message,
            "error_type": type(exc).__name__,
            **fields,
            "exit_code": exit_code,
        }
        click.echo(json.dumps(payload, default=str))
    else:
        error(f"{action}: {message}")
    sys.exit(exit_code)


def load_cli_config(ctx: click.Context, output: str = "table") -> GuardConfig:
    """Load the configuration named by the root ``--config`` option.

    Exits with the configuration error code when loading fails.
    """
    from budgetguard.errors import ConfigurationError
    from budgetguard.schemas.config import load_config

    obj = ctx.find_root().obj or {}
    try:
        return load_config(obj.get("config_path"))
    except ConfigurationError as e:
        fail(e, output, "Invalid configuration")


__all__: list[str] = [
    "ExitCode",
    "error",
    "fail",
    "get_exit_code_from_exception",
    "info",
    "load_cli_config",
    "sanitize_error",
    "success",
    "warn",
]
