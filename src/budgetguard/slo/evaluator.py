"""SLI evaluation against a Prometheus-compatible metrics backend.

This module issues windowed PromQL queries and turns the scalar results into
an SLISet. It never retries: a failing backend surfaces as an exception and
the next scheduled invocation is the retry.

Example:
    >>> backend = PrometheusBackend("http://prometheus:9090", timeout=10)
    >>> evaluator = SLIEvaluator(backend)
    >>> slis = evaluator.evaluate("checkout", "30d", namespace="production")
    >>> slis.availability
    0.9991
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

from budgetguard.errors import (
    AuthenticationError,
    BackendUnavailableError,
    MetricsQueryError,
    NoDataError,
)
from budgetguard.schemas.slo import SLISet
from budgetguard.slo import queries
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)

DEFAULT_BURN_WINDOWS: tuple[str, ...] = ("1h", "6h")
LATENCY_QUANTILES = {"latency_p50": 0.5, "latency_p95": 0.95, "latency_p99": 0.99}


class MetricsBackend(Protocol):
    """Anything that can evaluate an instant query to a scalar."""

    def query(self, expr: str) -> float:
        """Evaluate ``expr`` and return the first sample value.

        Raises:
            BackendUnavailableError: Backend unreachable or timed out.
            MetricsQueryError: Backend rejected the expression.
            NoDataError: The expression returned no samples.
        """
        ...


class PrometheusBackend:
    """Prometheus HTTP API client (``GET /api/v1/query``).

    Args:
        url: Base URL of the Prometheus server.
        timeout: Per-request timeout in seconds.
        client: Optional preconfigured httpx.Client (tests inject a
            MockTransport here).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._log = logger.bind(backend="prometheus", url=self.url)

    def _get(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        try:
            return self._client.get(f"{self.url}{path}", params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(
                "metrics", f"request timed out after {self.timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise BackendUnavailableError("metrics", str(e)) from e

    def query(self, expr: str) -> float:
        """Run an instant query and return the first sample value."""
        response = self._get("/api/v1/query", params={"query": expr})

        if response.status_code in (401, 403):
            raise AuthenticationError("metrics", f"HTTP {response.status_code}")
        if response.status_code in (400, 422):
            raise MetricsQueryError(expr, _error_message(response))
        if response.status_code >= 400:
            raise BackendUnavailableError("metrics", f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise BackendUnavailableError("metrics", "invalid JSON response") from e

        if body.get("status") != "success":
            raise MetricsQueryError(expr, body.get("error", "unknown error"))

        value = _first_sample(body.get("data") or {})
        if value is None:
            self._log.debug("metrics_query_empty", query=expr)
            raise NoDataError(expr)
        return value


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("error") or f"HTTP {response.status_code}")
    except ValueError:
        return f"HTTP {response.status_code}"


def _first_sample(data: dict[str, Any]) -> float | None:
    """Extract the first sample from a vector or scalar result."""
    result_type = data.get("resultType")
    result = data.get("result")

    if result_type == "scalar" and isinstance(result, list) and len(result) == 2:
        raw = result[1]
    elif isinstance(result, list) and result:
        raw = (result[0].get("value") or [None, None])[1]
    else:
        return None

    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    # 0/0 ratios come back as NaN when there was no traffic
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _ratio(value: float) -> float:
    return min(1.0, max(0.0, value))


class SLIEvaluator:
    """Evaluates a service's indicators over a window.

    Args:
        backend: Metrics backend to query.
        throughput_window: Window for the requests-per-second indicator.
    """

    def __init__(self, backend: MetricsBackend, throughput_window: str = "5m") -> None:
        self.backend = backend
        self.throughput_window = queries.validate_window(throughput_window)

    def evaluate(
        self,
        service: str,
        window: str,
        *,
        namespace: str | None = None,
        burn_windows: tuple[str, ...] | list[str] = DEFAULT_BURN_WINDOWS,
        allow_empty: bool = False,
    ) -> SLISet:
        """Evaluate every indicator for ``service`` over ``window``.

        Args:
            service: Value of the service label.
            window: Window for availability, error rate and latency.
            namespace: Optional namespace label (environment scoping).
            burn_windows: Short windows whose availability feeds burn rates.
            allow_empty: Treat empty results as zero traffic instead of
                raising NoDataError.

        Returns:
            SLISet with all indicators.

        Raises:
            BackendUnavailableError: Metrics backend unreachable.
            MetricsQueryError: A query was rejected.
            NoDataError: A query returned no samples and allow_empty is False.
        """
        queries.validate_window(window)
        log = logger.bind(service=service, namespace=namespace, window=window)

        with create_span(
            "budgetguard.slo.evaluate",
            attributes={"service": service, "namespace": namespace, "window": window},
        ) as span:
            has_traffic = True

            def fetch(expr: str, empty_value: float) -> float:
                try:
                    return self.backend.query(expr)
                except NoDataError:
                    if not allow_empty:
                        raise
                    return empty_value

            try:
                availability = self.backend.query(queries.availability(service, window, namespace))
            except NoDataError:
                if not allow_empty:
                    raise
                log.info("sli_no_traffic")
                availability = 1.0
                has_traffic = False

            error_rate = fetch(queries.error_rate(service, window, namespace), 0.0)
            latencies = {
                name: fetch(queries.latency_quantile(service, window, q, namespace), 0.0)
                for name, q in LATENCY_QUANTILES.items()
            }
            throughput = fetch(queries.throughput(service, self.throughput_window, namespace), 0.0)
            burn = {
                w: _ratio(fetch(queries.availability(service, w, namespace), 1.0))
                for w in burn_windows
            }

            sli_set = SLISet(
                service=service,
                namespace=namespace,
                window=window,
                availability=_ratio(availability),
                error_rate=_ratio(error_rate),
                latency_p50=max(0.0, latencies["latency_p50"]),
                latency_p95=max(0.0, latencies["latency_p95"]),
                latency_p99=max(0.0, latencies["latency_p99"]),
                throughput=max(0.0, throughput),
                burn_window_availability=burn,
                has_traffic=has_traffic,
                evaluated_at=datetime.now(timezone.utc),
            )
            for sli in sli_set.as_slis():
                span.set_attribute(f"sli.{sli.name}.{sli.window}", sli.value)
            span.set_attribute("has_traffic", has_traffic)

        log.info(
            "sli_evaluated",
            availability=sli_set.availability,
            error_rate=sli_set.error_rate,
            latency_p95=sli_set.latency_p95,
            throughput=sli_set.throughput,
        )
        return sli_set


__all__ = ["DEFAULT_BURN_WINDOWS", "MetricsBackend", "PrometheusBackend", "SLIEvaluator"]
