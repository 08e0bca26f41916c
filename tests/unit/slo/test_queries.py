"""Unit tests for PromQL expression builders."""

from __future__ import annotations

import pytest

from budgetguard.slo import queries


class TestQueries:
    """Tests for the golden-signal expressions."""

    @pytest.mark.requirement("sli-evaluation")
    def test_availability(self) -> None:
        """Availability divides 2xx/3xx rate by total rate over one window."""
        expr = queries.availability("checkout", "30d", "production")
        assert expr == (
            'sum(rate(http_requests_total{service="checkout",namespace="production",'
            'status=~"2..|3.."}[30d])) / '
            'sum(rate(http_requests_total{service="checkout",namespace="production"}[30d]))'
        )

    def test_latency_quantile(self) -> None:
        """Latency uses histogram_quantile over the duration histogram."""
        expr = queries.latency_quantile("checkout", "5m", 0.95)
        assert expr.startswith("histogram_quantile(0.95, ")
        assert "http_request_duration_seconds_bucket" in expr
        assert expr.endswith("by (le))")

    def test_label_values_are_escaped(self) -> None:
        """Quotes in label values cannot break out of the selector."""
        assert queries.selector('a"b') == 'service="a\\"b"'

    def test_critical_alerts(self) -> None:
        """Critical alert count is scoped by namespace."""
        assert queries.critical_alerts("canary") == (
            'count(ALERTS{alertstate="firing",severity="critical",namespace="canary"})'
        )

    @pytest.mark.parametrize("window", ["30", "5 m", "1x", ""])
    def test_invalid_window(self, window: str) -> None:
        """Malformed durations are rejected."""
        with pytest.raises(ValueError):
            queries.validate_window(window)

    def test_window_hours(self) -> None:
        """Durations convert to hours."""
        assert queries.window_hours("30d") == 720
        assert queries.window_hours("90m") == pytest.approx(1.5)

    def test_quantile_range(self) -> None:
        """Quantiles must lie strictly between 0 and 1."""
        with pytest.raises(ValueError, match="Quantile"):
            queries.latency_quantile("checkout", "5m", 1.0)
