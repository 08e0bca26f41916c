"""Tracing and structured logging for budgetguard.

Example:
    >>> from budgetguard.telemetry import configure_logging, create_span
    >>> configure_logging(log_level="INFO", json_output=True)
    >>> with create_span("budgetguard.rollback.check"):
    ...     pass
"""

from __future__ import annotations

from budgetguard.telemetry.logging import add_trace_context, configure_logging
from budgetguard.telemetry.sanitization import sanitize_error_message
from budgetguard.telemetry.tracing import create_span, get_tracer, set_tracer

__all__ = [
    "add_trace_context",
    "configure_logging",
    "create_span",
    "get_tracer",
    "sanitize_error_message",
    "set_tracer",
]
