"""OpenTelemetry tracing for budgetguard.

Evaluations, rollback decisions, remediation and promotions run inside
create_span(). The tracer is resolved lazily from the global provider; if
that fails a NoOpTracer is used so tracing never blocks a remediation.

Error messages recorded on spans are sanitized via sanitize_error_message()
so repository tokens and controller passwords never leave the process.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from budgetguard.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from collections.abc import Iterator

    from opentelemetry.trace import Span, Tracer

TRACER_NAME = "budgetguard"

_tracer: Tracer | None = None
_lock = threading.Lock()


def get_tracer() -> Tracer:
    """Return the budgetguard tracer, creating it on first use.

    Falls back to a NoOpTracer when the global provider cannot hand one out.
    """
    global _tracer

    if _tracer is not None:
        return _tracer

    with _lock:
        if _tracer is None:
            try:
                _tracer = trace.get_tracer(TRACER_NAME)
            except Exception:
                _tracer = trace.NoOpTracer()
        return _tracer


def set_tracer(tracer: Tracer | None) -> None:
    """Install a tracer (tests), or clear it with None to resolve it again."""
    global _tracer
    with _lock:
        _tracer = tracer


def _record_error(span: Span, exc: Exception) -> None:
    sanitized = sanitize_error_message(str(exc))
    span.set_status(Status(StatusCode.ERROR, sanitized))
    span.set_attribute("exception.type", type(exc).__name__)
    span.set_attribute("exception.message", sanitized)


@contextmanager
def create_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
    """Run the enclosed block inside a span.

    None-valued attributes are dropped. An exception escaping the block
    marks the span as failed with the sanitized message and is re-raised.

    Examples:
        >>> attributes = {"environment": "production"}
        >>> with create_span("budgetguard.rollback.execute", attributes) as span:
        ...     span.set_attribute("outcome", "succeeded")
    """
    with get_tracer().start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            _record_error(span, e)
            raise


__all__ = ["TRACER_NAME", "create_span", "get_tracer", "set_tracer"]
