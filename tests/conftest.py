"""Shared pytest fixtures for budgetguard tests.

NOTE: Do NOT add __init__.py to test directories - pytest uses importlib mode
which can cause namespace collisions with __init__.py files.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from budgetguard.errors import NoDataError
from budgetguard.notifications import Notifier, NotificationResult
from budgetguard.schemas.slo import ErrorBudgetStatus
from budgetguard.slo.budget import classify_tier

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
"""A Wednesday, outside every blackout window used in tests."""

_WINDOW_RE = re.compile(r"\[([0-9]+[smhdwy])\]")
_NAMESPACE_RE = re.compile(r'namespace="([^"]+)"')


class FakeMetrics:
    """In-memory MetricsBackend answering the golden-signal queries.

    Availability can be set per window (``burn``) and per namespace
    (``namespaces``). ``missing`` makes every query return no samples.
    """

    def __init__(
        self,
        availability: float = 0.9999,
        *,
        error_rate: float = 0.0001,
        latency: tuple[float, float, float] = (0.05, 0.2, 0.4),
        throughput: float = 150.0,
        burn: dict[str, float] | None = None,
        namespaces: dict[str, float] | None = None,
        alerts: int | None = None,
        traffic_share: float = 20.0,
        missing: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.availability = availability
        self.error_rate = error_rate
        self.latency = latency
        self.throughput = throughput
        self.burn = burn or {}
        self.namespaces = namespaces or {}
        self.alerts = alerts
        self.traffic_share = traffic_share
        self.missing = missing
        self.error = error
        self.queries: list[str] = []

    def query(self, expr: str) -> float:
        self.queries.append(expr)
        if self.error is not None:
            raise self.error
        if self.missing:
            raise NoDataError(expr)
        if expr.startswith("count(ALERTS"):
            if self.alerts is None:
                raise NoDataError(expr)
            return float(self.alerts)
        if expr.startswith("100 * "):
            return self.traffic_share
        if expr.startswith("histogram_quantile(0.5,"):
            return self.latency[0]
        if expr.startswith("histogram_quantile(0.95,"):
            return self.latency[1]
        if expr.startswith("histogram_quantile(0.99,"):
            return self.latency[2]
        if "4..|5.." in expr:
            return self.error_rate
        if "2..|3.." in expr:
            window = _WINDOW_RE.search(expr)
            if window and window.group(1) in self.burn:
                return self.burn[window.group(1)]
            namespace = _NAMESPACE_RE.search(expr)
            if namespace and namespace.group(1) in self.namespaces:
                return self.namespaces[namespace.group(1)]
            return self.availability
        return self.throughput


class RecordingNotifier(Notifier):
    """Notifier that keeps messages instead of delivering them."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[dict[str, Any]] = []

    def send(
        self,
        message: str,
        severity: str = "info",
        *,
        kinds: Any = None,
        **context: Any,
    ) -> list[NotificationResult]:
        self.sent.append(
            {"message": message, "severity": severity, "kinds": kinds, "context": context}
        )
        return []


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test as covering a specific requirement",
    )


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time."""
    return NOW


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Empty state directory for attempt logs, locks and approvals."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def fake_metrics() -> Callable[..., FakeMetrics]:
    """Factory for in-memory metrics backends."""
    return FakeMetrics


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Notifier recording every message."""
    return RecordingNotifier()


@pytest.fixture
def make_status() -> Callable[..., ErrorBudgetStatus]:
    """Factory building an ErrorBudgetStatus for a consumed fraction."""

    def _make(consumed: float, budget_total: float = 0.001) -> ErrorBudgetStatus:
        return ErrorBudgetStatus(
            availability=max(0.0, 1.0 - consumed * budget_total),
            budget_total=budget_total,
            consumed_fraction=consumed,
            remaining_fraction=1.0 - consumed,
            tier=classify_tier(consumed),
        )

    return _make
