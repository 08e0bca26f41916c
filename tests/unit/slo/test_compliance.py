"""Unit tests for SLO compliance checks and the JSON SLO report."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from budgetguard.schemas.slo import SLISet, SLOTargets
from budgetguard.slo.budget import ErrorBudgetCalculator
from budgetguard.slo.compliance import build_slo_report, check_compliance


def _sli_set(**overrides: float) -> SLISet:
    values = {
        "availability": 0.9995,
        "error_rate": 0.0005,
        "latency_p50": 0.1,
        "latency_p95": 0.4,
        "latency_p99": 0.9,
        "throughput": 150.0,
    }
    values.update(overrides)
    return SLISet(
        service="checkout",
        namespace="production",
        window="30d",
        evaluated_at=datetime(2026, 10, 14, tzinfo=timezone.utc),
        **values,
    )


class TestCheckCompliance:
    """Tests for check_compliance()."""

    @pytest.mark.requirement("slo-compliance")
    def test_all_met(self) -> None:
        """Indicators within their objectives are compliant."""
        report = check_compliance(_sli_set())
        assert report.compliant
        assert [c.name for c in report.checks] == [
            "availability",
            "error_rate",
            "latency_p50",
            "latency_p95",
            "latency_p99",
            "throughput",
        ]

    @pytest.mark.requirement("slo-compliance")
    def test_violation(self) -> None:
        """A slow p95 is a violation."""
        report = check_compliance(_sli_set(latency_p95=0.75))
        assert not report.compliant
        assert [c.name for c in report.violations] == ["latency_p95"]

    @pytest.mark.requirement("slo-compliance")
    def test_p50_and_throughput_are_advisory(self) -> None:
        """Median latency and throughput never make a service non-compliant."""
        report = check_compliance(_sli_set(latency_p50=0.9, throughput=1.0))
        assert report.compliant
        unmet = [c.name for c in report.checks if not c.met]
        assert unmet == ["latency_p50", "throughput"]

    def test_custom_targets(self) -> None:
        """Objectives come from the targets argument."""
        report = check_compliance(_sli_set(), SLOTargets(availability=0.9999))
        assert [c.name for c in report.violations] == ["availability"]


class TestBuildSloReport:
    """Tests for build_slo_report()."""

    @pytest.mark.requirement("slo-report")
    def test_report_shape(self) -> None:
        """The report lists SLIs, the error budget and a summary."""
        sli_set = _sli_set()
        status = ErrorBudgetCalculator().compute(sli_set, 0.001)
        generated = datetime(2026, 10, 14, 9, 30, tzinfo=timezone.utc)

        report = build_slo_report(sli_set, status, generated_at=generated)

        assert report["timestamp"] == "2026-10-14T09:30:00Z"
        assert report["slis"]["latency_p95"] == {"value": 0.4, "target": 0.5, "compliant": True}
        assert report["error_budget"]["status"] == "warning"
        assert report["error_budget"]["consumed"] == pytest.approx(0.5)
        assert report["summary"]["overall_compliant"] is True
        assert report["summary"]["total_slis"] == 6
