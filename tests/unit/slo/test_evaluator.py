"""Unit tests for the Prometheus backend and the SLI evaluator."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from budgetguard.errors import (
    AuthenticationError,
    BackendUnavailableError,
    MetricsQueryError,
    NoDataError,
)
from budgetguard.slo.evaluator import PrometheusBackend, SLIEvaluator
from budgetguard.telemetry import set_tracer


def _backend(handler: Callable[[httpx.Request], httpx.Response]) -> PrometheusBackend:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PrometheusBackend("http://prometheus:9090/", client=client)


def _vector(value: str) -> dict[str, Any]:
    return {
        "status": "success",
        "data": {"resultType": "vector", "result": [{"metric": {}, "value": [1760000000, value]}]},
    }


class TestPrometheusBackend:
    """Tests for PrometheusBackend.query()."""

    @pytest.mark.requirement("sli-evaluation")
    def test_returns_first_sample(self) -> None:
        """The first vector sample is returned as a float."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_vector("0.9987"))

        assert _backend(handler).query("up") == pytest.approx(0.9987)
        assert seen[0].url.path == "/api/v1/query"
        assert seen[0].url.params["query"] == "up"

    def test_scalar_result(self) -> None:
        """Scalar results are supported."""
        body = {"status": "success", "data": {"resultType": "scalar", "result": [0, "42"]}}
        backend = _backend(lambda request: httpx.Response(200, json=body))
        assert backend.query("scalar(1)") == 42.0

    @pytest.mark.requirement("sli-evaluation")
    def test_empty_result_is_no_data(self) -> None:
        """An empty vector raises NoDataError."""
        body = {"status": "success", "data": {"resultType": "vector", "result": []}}
        backend = _backend(lambda request: httpx.Response(200, json=body))
        with pytest.raises(NoDataError):
            backend.query("missing_metric")

    def test_nan_is_no_data(self) -> None:
        """0/0 ratios (no traffic) are treated as no data."""
        backend = _backend(lambda request: httpx.Response(200, json=_vector("NaN")))
        with pytest.raises(NoDataError):
            backend.query("a / b")

    def test_bad_request_is_query_error(self) -> None:
        """HTTP 400 maps to MetricsQueryError with the server message."""
        body = {"status": "error", "errorType": "bad_data", "error": "parse error at char 3"}
        backend = _backend(lambda request: httpx.Response(400, json=body))
        with pytest.raises(MetricsQueryError, match="parse error"):
            backend.query("sum(")

    def test_unauthorized(self) -> None:
        """HTTP 401 maps to AuthenticationError."""
        backend = _backend(lambda request: httpx.Response(401))
        with pytest.raises(AuthenticationError):
            backend.query("up")

    def test_server_error_is_unavailable(self) -> None:
        """HTTP 503 maps to BackendUnavailableError with exit code 5."""
        backend = _backend(lambda request: httpx.Response(503))
        with pytest.raises(BackendUnavailableError) as exc_info:
            backend.query("up")
        assert exc_info.value.exit_code == 5

    def test_connection_error_is_unavailable(self) -> None:
        """Transport errors map to BackendUnavailableError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendUnavailableError, match="connection refused"):
            _backend(handler).query("up")

    def test_timeout_is_unavailable(self) -> None:
        """Timeouts map to BackendUnavailableError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(BackendUnavailableError, match="timed out"):
            _backend(handler).query("up")


class TestSLIEvaluator:
    """Tests for SLIEvaluator.evaluate()."""

    @pytest.mark.requirement("sli-evaluation")
    def test_evaluates_every_indicator(self, fake_metrics: Callable[..., Any]) -> None:
        """Availability, error rate, latencies, throughput and burn windows."""
        metrics = fake_metrics(
            0.9991,
            error_rate=0.0009,
            latency=(0.08, 0.3, 0.6),
            throughput=220.0,
            burn={"1h": 0.98, "6h": 0.995},
        )
        sli_set = SLIEvaluator(metrics).evaluate("checkout", "30d", namespace="production")

        assert sli_set.availability == pytest.approx(0.9991)
        assert sli_set.error_rate == pytest.approx(0.0009)
        assert (sli_set.latency_p50, sli_set.latency_p95, sli_set.latency_p99) == (0.08, 0.3, 0.6)
        assert sli_set.throughput == 220.0
        assert sli_set.burn_window_availability == {"1h": 0.98, "6h": 0.995}
        assert sli_set.has_traffic is True
        assert all('namespace="production"' in q for q in metrics.queries)

    @pytest.mark.requirement("sli-evaluation")
    def test_no_data_raises_by_default(self, fake_metrics: Callable[..., Any]) -> None:
        """Missing samples are an error unless allowed."""
        with pytest.raises(NoDataError):
            SLIEvaluator(fake_metrics(missing=True)).evaluate("checkout", "30d")

    def test_allow_empty_treats_as_zero_traffic(self, fake_metrics: Callable[..., Any]) -> None:
        """With allow_empty, missing samples yield a perfect, trafficless set."""
        sli_set = SLIEvaluator(fake_metrics(missing=True)).evaluate(
            "checkout", "30d", allow_empty=True
        )
        assert sli_set.availability == 1.0
        assert sli_set.error_rate == 0.0
        assert sli_set.has_traffic is False

    def test_ratios_are_clamped(self, fake_metrics: Callable[..., Any]) -> None:
        """Ratios outside [0, 1] from counter resets are clamped."""
        sli_set = SLIEvaluator(fake_metrics(1.0004)).evaluate("checkout", "30d")
        assert sli_set.availability == 1.0

    def test_records_indicators_on_span(self, fake_metrics: Callable[..., Any]) -> None:
        """Each indicator is recorded as a span attribute keyed by name and window."""
        tracer = MagicMock()
        span = MagicMock()
        tracer.start_as_current_span.return_value.__enter__.return_value = span
        set_tracer(tracer)
        try:
            SLIEvaluator(fake_metrics(0.9991, burn={"1h": 0.98})).evaluate(
                "checkout", "30d", burn_windows=("1h",)
            )
        finally:
            set_tracer(None)

        attributes = {c.args[0]: c.args[1] for c in span.set_attribute.call_args_list}
        assert attributes["sli.availability.30d"] == pytest.approx(0.9991)
        assert attributes["sli.availability.1h"] == pytest.approx(0.98)
        assert "sli.latency_p95.30d" in attributes
        assert attributes["has_traffic"] is True

    def test_rejects_malformed_window(self, fake_metrics: Callable[..., Any]) -> None:
        """Windows must be Prometheus durations."""
        with pytest.raises(ValueError, match="Invalid window"):
            SLIEvaluator(fake_metrics()).evaluate("checkout", "30 days")
