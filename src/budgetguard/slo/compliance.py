"""SLO compliance checks and the JSON SLO report."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from budgetguard.schemas.slo import (
    ComplianceCheck,
    ComplianceReport,
    ErrorBudgetStatus,
    SLISet,
    SLOTargets,
)


def check_compliance(sli_set: SLISet, targets: SLOTargets | None = None) -> ComplianceReport:
    """Compare indicators with their objectives.

    Median latency and throughput are advisory: missing them is reported
    but does not make the service non-compliant.

    Args:
        sli_set: Evaluated indicators.
        targets: Objectives (defaults to SLOTargets()).

    Returns:
        ComplianceReport with one check per indicator.
    """
    targets = targets or SLOTargets()
    p50_ms = sli_set.latency_p50 * 1000.0
    p95_ms = sli_set.latency_p95 * 1000.0
    p99_ms = sli_set.latency_p99 * 1000.0

    checks = [
        ComplianceCheck(
            name="availability",
            actual=sli_set.availability,
            target=targets.availability,
            met=sli_set.availability >= targets.availability,
        ),
        ComplianceCheck(
            name="error_rate",
            actual=sli_set.error_rate,
            target=targets.error_rate,
            met=sli_set.error_rate <= targets.error_rate,
        ),
        ComplianceCheck(
            name="latency_p50",
            actual=p50_ms,
            target=targets.latency_p50_ms,
            met=p50_ms <= targets.latency_p50_ms,
            advisory=True,
        ),
        ComplianceCheck(
            name="latency_p95",
            actual=p95_ms,
            target=targets.latency_p95_ms,
            met=p95_ms <= targets.latency_p95_ms,
        ),
        ComplianceCheck(
            name="latency_p99",
            actual=p99_ms,
            target=targets.latency_p99_ms,
            met=p99_ms <= targets.latency_p99_ms,
        ),
        ComplianceCheck(
            name="throughput",
            actual=sli_set.throughput,
            target=targets.throughput_rps,
            met=sli_set.throughput >= targets.throughput_rps,
            advisory=True,
        ),
    ]
    return ComplianceReport(service=sli_set.service, window=sli_set.window, checks=checks)


def build_slo_report(
    sli_set: SLISet,
    status: ErrorBudgetStatus,
    targets: SLOTargets | None = None,
    *,
    generated_at: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the JSON-serialisable SLO report.

    Latency values and targets are reported in seconds, as measured.
    """
    targets = targets or SLOTargets()
    compliance = check_compliance(sli_set, targets)
    timestamp = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")

    slis: dict[str, dict[str, Any]] = {}
    for check in compliance.checks:
        value, target = check.actual, check.target
        if check.name.startswith("latency_"):
            value, target = value / 1000.0, target / 1000.0
        slis[check.name] = {"value": value, "target": target, "compliant": check.met}

    return {
        "service": sli_set.service,
        "namespace": sli_set.namespace,
        "window": sli_set.window,
        "timestamp": timestamp,
        "slis": slis,
        "error_budget": {
            "total": status.budget_total,
            "consumed": status.consumed_fraction,
            "remaining": status.remaining_fraction,
            "status": status.tier.value,
            "burn_rate_1h": status.burn_rate_1h,
            "burn_rate_6h": status.burn_rate_6h,
            "time_to_exhaustion_hours": status.time_to_exhaustion_hours,
        },
        "summary": {
            "total_slis": len(compliance.checks),
            "compliant_slis": sum(1 for c in compliance.checks if c.met),
            "overall_compliant": compliance.compliant,
            "violations": [c.name for c in compliance.violations],
        },
    }


__all__ = ["build_slo_report", "check_compliance"]
