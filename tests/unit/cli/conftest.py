"""Fixtures for CLI tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog
import yaml
from click.testing import CliRunner

from budgetguard.slo.evaluator import PrometheusBackend

_CHANNEL_VARS = ("BUDGETGUARD_SLACK_WEBHOOK", "BUDGETGUARD_PAGERDUTY_KEY", "BUDGETGUARD_CONFIG")


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop channel overrides and restore structlog after each command."""
    for name in _CHANNEL_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    structlog.reset_defaults()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path, state_dir: Path) -> Callable[..., Path]:
    """Write a configuration file, merging ``overrides`` into the defaults."""

    def _write(**overrides: Any) -> Path:
        data: dict[str, Any] = {
            "service": {"name": "checkout", "environment": "production"},
            "metrics": {"url": "http://prometheus.invalid:9090"},
            "state_dir": str(state_dir),
            "promotion": {"artifacts_dir": str(tmp_path / "artifacts")},
        }
        data.update(overrides)
        path = tmp_path / "budgetguard.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


@pytest.fixture
def metrics(
    monkeypatch: pytest.MonkeyPatch, fake_metrics: Callable[..., Any]
) -> Callable[..., Any]:
    """Route every Prometheus query to an in-memory backend."""

    def _install(**kwargs: Any) -> Any:
        fake = fake_metrics(**kwargs)
        monkeypatch.setattr(PrometheusBackend, "query", lambda self, expr: fake.query(expr))
        return fake

    return _install
