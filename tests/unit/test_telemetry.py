"""Tests for tracing, log configuration and error sanitization."""

from __future__ import annotations

import json
from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest
import structlog
from opentelemetry.trace import StatusCode

from budgetguard.telemetry import (
    configure_logging,
    create_span,
    sanitize_error_message,
    set_tracer,
)


@pytest.fixture
def span() -> Iterator[MagicMock]:
    tracer = MagicMock()
    recorded = MagicMock()
    tracer.start_as_current_span.return_value.__enter__.return_value = recorded
    set_tracer(tracer)
    yield recorded
    set_tracer(None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (
            "clone https://ghp_abc@github.com/org/repo failed",
            "clone https://<REDACTED>@github.com/org/repo failed",
        ),
        ("login failed: password=hunter2", "login failed: password=<REDACTED>"),
        ("routing_key: R0UT1NG", "routing_key: <REDACTED>"),
        ("nothing sensitive", "nothing sensitive"),
    ],
)
def test_sanitize_error_message(raw: str, expected: str) -> None:
    assert sanitize_error_message(raw) == expected


def test_sanitize_error_message_truncates() -> None:
    assert len(sanitize_error_message("x" * 1000, max_length=50)) == 50


def test_create_span_sets_attributes_and_skips_none(span: MagicMock) -> None:
    with create_span("budgetguard.test", {"environment": "production", "revision": None}):
        pass

    span.set_attribute.assert_called_once_with("environment", "production")
    span.set_status.assert_not_called()


def test_create_span_records_sanitized_error(span: MagicMock) -> None:
    with pytest.raises(RuntimeError):
        with create_span("budgetguard.test"):
            raise RuntimeError("push failed: token=abc123")

    status = span.set_status.call_args.args[0]
    assert status.status_code == StatusCode.ERROR
    assert "abc123" not in status.description
    span.set_attribute.assert_any_call("exception.type", "RuntimeError")


def test_configure_logging_writes_json_to_stderr(capsys: pytest.CaptureFixture[str]) -> None:
    try:
        configure_logging(log_level="INFO", json_output=True)
        structlog.get_logger("budgetguard.test").info("rollback_skipped", environment="dev")
        structlog.get_logger("budgetguard.test").debug("hidden")
    finally:
        structlog.reset_defaults()

    captured = capsys.readouterr()
    assert captured.out == ""
    lines = captured.err.strip().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "rollback_skipped"
    assert event["environment"] == "dev"
    assert event["level"] == "info"


def test_configure_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="Unknown log level"):
        configure_logging(log_level="LOUD")
