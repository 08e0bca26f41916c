"""PromQL expressions for the HTTP golden signals.

All expressions read the conventional ``http_requests_total`` counter and the
``http_request_duration_seconds`` histogram. Ratios and percentiles take the
same window argument so burn-rate comparisons stay consistent.
"""

from __future__ import annotations

import re

_DURATION_RE = re.compile(r"^[0-9]+[smhdwy]$")
_LABEL_VALUE_RE = re.compile(r'["\\\n]')

REQUESTS_METRIC = "http_requests_total"
DURATION_METRIC = "http_request_duration_seconds_bucket"
SUCCESS_STATUSES = "2..|3.."
ERROR_STATUSES = "4..|5.."


def validate_window(window: str) -> str:
    """Validate a Prometheus range duration (``5m``, ``6h``, ``30d``).

    Raises:
        ValueError: If the duration is malformed.
    """
    if not _DURATION_RE.match(window):
        raise ValueError(f"Invalid window {window!r}: expected e.g. '5m', '6h', '30d'")
    return window


def window_hours(window: str) -> float:
    """Convert a range duration to hours."""
    validate_window(window)
    units = {"s": 1 / 3600, "m": 1 / 60, "h": 1, "d": 24, "w": 168, "y": 8760}
    return int(window[:-1]) * units[window[-1]]


def _escape(value: str) -> str:
    return _LABEL_VALUE_RE.sub(lambda m: "\\n" if m.group() == "\n" else "\\" + m.group(), value)


def selector(service: str, namespace: str | None = None, status: str | None = None) -> str:
    """Build a label selector body.

    Examples:
        >>> selector("checkout", "canary", SUCCESS_STATUSES)
        'service="checkout",namespace="canary",status=~"2..|3.."'
    """
    parts = [f'service="{_escape(service)}"']
    if namespace:
        parts.append(f'namespace="{_escape(namespace)}"')
    if status:
        parts.append(f'status=~"{status}"')
    return ",".join(parts)


def request_rate(
    service: str,
    window: str,
    namespace: str | None = None,
    status: str | None = None,
) -> str:
    validate_window(window)
    return f"sum(rate({REQUESTS_METRIC}{{{selector(service, namespace, status)}}}[{window}]))"


def availability(service: str, window: str, namespace: str | None = None) -> str:
    """Fraction of 2xx/3xx responses over the window."""
    return (
        f"{request_rate(service, window, namespace, SUCCESS_STATUSES)} / "
        f"{request_rate(service, window, namespace)}"
    )


def error_rate(service: str, window: str, namespace: str | None = None) -> str:
    """Fraction of 4xx/5xx responses over the window."""
    return (
        f"{request_rate(service, window, namespace, ERROR_STATUSES)} / "
        f"{request_rate(service, window, namespace)}"
    )


def latency_quantile(
    service: str,
    window: str,
    quantile: float,
    namespace: str | None = None,
) -> str:
    """Latency percentile (seconds) from the request duration histogram."""
    validate_window(window)
    if not 0.0 < quantile < 1.0:
        raise ValueError(f"Quantile must be in (0, 1), got {quantile}")
    return (
        f"histogram_quantile({quantile}, sum(rate({DURATION_METRIC}"
        f"{{{selector(service, namespace)}}}[{window}])) by (le))"
    )


def throughput(service: str, window: str = "5m", namespace: str | None = None) -> str:
    """Requests per second."""
    return request_rate(service, window, namespace)


def traffic_share(service: str, window: str, namespace: str, namespaces: list[str]) -> str:
    """Percentage of the service's traffic served from ``namespace``."""
    validate_window(window)
    pool = "|".join(_escape(n) for n in namespaces)
    labels = f'service="{_escape(service)}",namespace=~"{pool}"'
    return (
        f"100 * {request_rate(service, window, namespace)} / "
        f"sum(rate({REQUESTS_METRIC}{{{labels}}}[{window}]))"
    )


def critical_alerts(namespace: str | None = None) -> str:
    """Number of firing critical alerts."""
    labels = 'alertstate="firing",severity="critical"'
    if namespace:
        labels += f',namespace="{_escape(namespace)}"'
    return f"count(ALERTS{{{labels}}})"


__all__ = [
    "availability",
    "critical_alerts",
    "error_rate",
    "latency_quantile",
    "request_rate",
    "selector",
    "throughput",
    "traffic_share",
    "validate_window",
    "window_hours",
]
