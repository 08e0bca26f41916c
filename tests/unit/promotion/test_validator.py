"""Unit tests for the promotion validator."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from budgetguard.errors import BackendUnavailableError, InvalidEdgeError
from budgetguard.promotion.validator import CHECK_ORDER, PromotionValidator
from budgetguard.schemas.config import GuardConfig
from budgetguard.schemas.promotion import CheckStatus


def _validator(
    config: GuardConfig,
    metrics: Any,
    controller_factory: Any,
    now: datetime,
) -> PromotionValidator:
    return PromotionValidator(
        config,
        metrics=metrics,
        controller_factory=controller_factory,
        clock=lambda: now,
    )


class TestValidate:
    """Tests for PromotionValidator.validate()."""

    @pytest.mark.requirement("promotion-checks")
    def test_healthy_release_passes(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        """Every check runs in order and passes for a healthy release."""
        report = _validator(guard_config, fake_metrics(), controller_factory, now).validate(
            "staging", "canary"
        )

        assert [r.check_name for r in report.results] == list(CHECK_ORDER[:-1])
        assert report.passed, [r.detail for r in report.failures]
        assert report.generated_at == now

    @pytest.mark.requirement("promotion-exhaustive")
    def test_all_failures_are_reported(
        self,
        guard_config: GuardConfig,
        artifacts_dir: Path,
        publish_artifacts: Callable[..., Path],
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        """A failing check never hides later ones."""
        publish_artifacts(artifacts_dir, coverage=75.0, critical=1)
        report = _validator(guard_config, fake_metrics(), controller_factory, now).validate(
            "staging", "canary"
        )

        assert [r.check_name for r in report.failures] == ["coverage", "security_scan"]
        assert len(report.results) == len(CHECK_ORDER) - 1
        coverage = report.get("coverage")
        assert coverage is not None
        assert coverage.detail == "Coverage: 75.0% (min: 80%)"
        security = report.get("security_scan")
        assert security is not None
        assert security.data["critical_ids"] == ["CVE-2026-0000"]

    def test_e2e_required_for_canary(
        self,
        guard_config: GuardConfig,
        artifacts_dir: Path,
        publish_artifacts: Callable[..., Path],
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        publish_artifacts(artifacts_dir, e2e_failed=2)
        validator = _validator(guard_config, fake_metrics(), controller_factory, now)

        assert validator.validate("dev", "staging").passed
        tests = validator.validate("staging", "canary").get("tests")
        assert tests is not None
        assert tests.status == CheckStatus.FAIL
        assert tests.detail == "e2e: 2 failed, 12 passed"

    def test_missing_artifacts_fail_their_checks(
        self,
        tmp_path: Path,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        config = GuardConfig.model_validate(
            {"state_dir": state_dir, "promotion": {"artifacts_dir": tmp_path / "empty"}}
        )
        report = _validator(config, fake_metrics(), controller_factory, now).validate(
            "dev", "staging"
        )

        assert [r.check_name for r in report.failures] == ["tests", "coverage", "security_scan"]
        assert all(r.detail.startswith("data unavailable") for r in report.failures)

    def test_metrics_outage(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        """Unreachable metrics fail every metrics-backed check."""
        metrics = fake_metrics(error=BackendUnavailableError("metrics", "connection refused"))
        report = _validator(guard_config, metrics, controller_factory, now).validate(
            "dev", "staging"
        )

        assert [r.check_name for r in report.failures] == [
            "slo_availability",
            "slo_error_rate",
            "slo_latency",
            "error_budget",
            "critical_alerts",
        ]

    def test_slo_thresholds(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        metrics = fake_metrics(0.99, error_rate=0.02, latency=(0.1, 1.2, 2.0))
        report = _validator(guard_config, metrics, controller_factory, now).validate(
            "dev", "staging"
        )

        failed = [r.check_name for r in report.failures]
        assert failed[:3] == ["slo_availability", "slo_error_rate", "slo_latency"]
        latency = report.get("slo_latency")
        assert latency is not None
        assert latency.detail == "P95 latency: 1200ms (max: 1000ms)"

    def test_error_budget_uses_from_namespace(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        metrics = fake_metrics(namespaces={"staging": 0.9996})
        report = _validator(guard_config, metrics, controller_factory, now).validate(
            "staging", "canary"
        )

        budget = report.get("error_budget")
        assert budget is not None
        assert budget.status == CheckStatus.FAIL
        assert budget.data["consumed_fraction"] == pytest.approx(0.4)

    def test_firing_alerts(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        report = _validator(guard_config, fake_metrics(alerts=2), controller_factory, now).validate(
            "dev", "staging"
        )
        assert [r.check_name for r in report.failures] == ["critical_alerts"]

    def test_invalid_edge(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        now: datetime,
    ) -> None:
        with pytest.raises(InvalidEdgeError):
            _validator(guard_config, fake_metrics(), None, now).validate("dev", "production")


class TestStability:
    """Tests for the deployment stability check."""

    def test_recent_deployment_fails(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controllers: dict[str, Any],
        now: datetime,
    ) -> None:
        controllers["dev"].deployed_at = now - timedelta(minutes=10)
        report = _validator(
            guard_config, fake_metrics(), controllers.__getitem__, now
        ).validate("dev", "staging")

        stability = report.get("deployment_stability")
        assert stability is not None
        assert stability.status == CheckStatus.FAIL
        assert stability.detail.startswith("Deployed 10 minutes ago (min: 30)")

    def test_unhealthy_deployment_fails(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controllers: dict[str, Any],
        now: datetime,
    ) -> None:
        controllers["dev"].health = "Degraded"
        report = _validator(
            guard_config, fake_metrics(), controllers.__getitem__, now
        ).validate("dev", "staging")
        assert [r.check_name for r in report.failures] == ["deployment_stability"]

    def test_without_controller(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        now: datetime,
    ) -> None:
        report = _validator(guard_config, fake_metrics(), None, now).validate("dev", "staging")

        stability = report.get("deployment_stability")
        assert stability is not None
        assert stability.detail == "data unavailable: deployment controller not configured"

    def test_disabled_by_zero_threshold(
        self,
        state_dir: Path,
        artifacts_dir: Path,
        fake_metrics: Callable[..., Any],
        now: datetime,
    ) -> None:
        config = GuardConfig.model_validate(
            {
                "state_dir": state_dir,
                "promotion": {
                    "artifacts_dir": artifacts_dir,
                    "rules": {"dev->staging": {"min_stable_minutes": 0}},
                },
            }
        )
        report = _validator(config, fake_metrics(), None, now).validate("dev", "staging")
        assert report.passed


class TestCanary:
    """Tests for the canary check on canary -> production."""

    @pytest.mark.requirement("promotion-canary")
    def test_canary_passes(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        report = _validator(guard_config, fake_metrics(), controller_factory, now).validate(
            "canary", "production"
        )

        assert [r.check_name for r in report.results] == list(CHECK_ORDER)
        assert report.passed, [r.detail for r in report.failures]
        canary = report.get("canary")
        assert canary is not None
        assert canary.data["traffic_pct"] == 20.0

    @pytest.mark.requirement("promotion-canary")
    def test_low_traffic_and_short_run(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controllers: dict[str, Any],
        now: datetime,
    ) -> None:
        controllers["canary"].deployed_at = now - timedelta(minutes=90)
        metrics = fake_metrics(traffic_share=5.0)
        report = _validator(guard_config, metrics, controllers.__getitem__, now).validate(
            "canary", "production"
        )

        canary = report.get("canary")
        assert canary is not None
        assert canary.status == CheckStatus.FAIL
        assert canary.detail == "traffic 5.0% < 10.0%"

    def test_queries_canary_namespace(
        self,
        guard_config: GuardConfig,
        fake_metrics: Callable[..., Any],
        controller_factory: Callable[[str], Any],
        now: datetime,
    ) -> None:
        metrics = fake_metrics()
        _validator(guard_config, metrics, controller_factory, now).validate(
            "canary", "production"
        )

        share = [q for q in metrics.queries if q.startswith("100 * ")]
        assert len(share) == 1
        assert 'namespace=~"canary|production"' in share[0]
