"""Promotion validator: exhaustive checks for one promotion edge.

Every check runs, in a fixed order, even after an earlier one fails, so the
report always lists everything that blocks a release:

    tests, coverage, security_scan, code_quality, slo_availability,
    slo_error_rate, slo_latency, error_budget, deployment_stability,
    critical_alerts, canary (canary -> production only)

A check whose data source cannot be read fails with the error as detail.

Example:
    >>> validator = PromotionValidator(config, metrics=backend)
    >>> report = validator.validate("staging", "canary")
    >>> [r.check_name for r in report.failures]
    ['coverage']
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from budgetguard.backends.argocd import ArgoCDClient
from budgetguard.errors import BudgetGuardError, NoDataError
from budgetguard.promotion.artifacts import ArtifactError, PipelineArtifacts
from budgetguard.schemas.config import GuardConfig
from budgetguard.schemas.promotion import (
    CheckStatus,
    Environment,
    GateRuleSet,
    PromotionEdge,
    PromotionReport,
    ValidationResult,
)
from budgetguard.schemas.slo import SLISet
from budgetguard.slo import queries
from budgetguard.slo.assessment import assess_budget
from budgetguard.slo.evaluator import MetricsBackend, PrometheusBackend, SLIEvaluator
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)

CHECK_ORDER: tuple[str, ...] = (
    "tests",
    "coverage",
    "security_scan",
    "code_quality",
    "slo_availability",
    "slo_error_rate",
    "slo_latency",
    "error_budget",
    "deployment_stability",
    "critical_alerts",
    "canary",
)

_NO_CONTROLLER = "data unavailable: deployment controller not configured"


def _result(name: str, passed: bool, detail: str, **data: Any) -> ValidationResult:
    return ValidationResult(
        check_name=name,
        status=CheckStatus.PASS if passed else CheckStatus.FAIL,
        detail=detail,
        data=data,
    )


def _failed(name: str, error: Exception) -> ValidationResult:
    return _result(name, False, f"data unavailable: {error}", error_type=type(error).__name__)


class PromotionValidator:
    """Evaluates the promotion checks for an edge.

    Args:
        config: Loaded configuration (service, promotion rules, artifacts).
        metrics: Metrics backend (defaults to Prometheus from config).
        artifacts: Pipeline artifacts (defaults to ``promotion.artifacts_dir``).
        controller_factory: Builds the controller client for an environment
            (defaults to Argo CD from config, None when unconfigured).
        clock: Returns the current UTC time (injected in tests).
    """

    def __init__(
        self,
        config: GuardConfig,
        *,
        metrics: MetricsBackend | None = None,
        artifacts: PipelineArtifacts | None = None,
        controller_factory: Callable[[str], ArgoCDClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.metrics = metrics or PrometheusBackend(
            config.metrics.url, timeout=config.metrics.timeout_seconds
        )
        self.artifacts = artifacts or PipelineArtifacts(config.promotion.artifacts_dir)
        if controller_factory is None and config.controller is not None:
            controller_factory = functools.partial(ArgoCDClient.from_config, config.controller)
        self._controller_factory = controller_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def namespace(self, environment: Environment) -> str:
        """Metrics namespace label of an environment."""
        settings = self.config.promotion
        if environment == Environment.CANARY:
            return settings.canary_namespace
        if environment == Environment.PRODUCTION:
            return settings.production_namespace
        return environment.value

    def validate(self, from_env: str | Environment, to_env: str | Environment) -> PromotionReport:
        """Run every check for the edge ``from_env -> to_env``.

        Returns:
            PromotionReport with one result per check, in CHECK_ORDER.

        Raises:
            InvalidEdgeError: If the environments are not adjacent.
        """
        edge = PromotionEdge.resolve(from_env, to_env)
        rules = self.config.promotion.rule_set(edge)
        log = logger.bind(edge=edge.key)

        with create_span("budgetguard.promotion.validate", attributes={"edge": edge.key}) as span:
            results = self.run_checks(edge, rules)
            report = PromotionReport(
                from_env=edge.from_env,
                to_env=edge.to_env,
                results=results,
                generated_at=self._clock(),
            )
            span.set_attribute("passed", report.passed)
            span.set_attribute("failures", len(report.failures))

        log.info(
            "promotion_validated",
            passed=report.passed,
            failures=[r.check_name for r in report.failures],
        )
        return report

    def run_checks(self, edge: PromotionEdge, rules: GateRuleSet) -> list[ValidationResult]:
        namespace = self.namespace(edge.from_env)
        service = self.config.service.name
        results = [
            self.check_tests(rules),
            self.check_coverage(rules),
            self.check_security(rules),
            self.check_quality(rules),
        ]

        sli_set: SLISet | None = None
        try:
            sli_set = SLIEvaluator(self.metrics).evaluate(
                service, self.config.promotion.slo_window, namespace=namespace
            )
        except BudgetGuardError as e:
            logger.warning("promotion_slo_unavailable", namespace=namespace, error=str(e))
            results.extend(
                _failed(name, e) for name in ("slo_availability", "slo_error_rate", "slo_latency")
            )
        else:
            results.extend(self.check_slo(sli_set, rules))

        results.append(self.check_error_budget(namespace, rules))
        results.append(self.check_stability(edge.from_env, rules))
        results.append(self.check_alerts(namespace, rules))
        if rules.canary_requirement is not None:
            results.append(self.check_canary(edge, rules, sli_set))
        return results

    # ------------------------------------------------------------------
    # release quality
    # ------------------------------------------------------------------

    def check_tests(self, rules: GateRuleSet) -> ValidationResult:
        required = ["unit", "integration"] + (["e2e"] if rules.require_e2e_tests else [])
        try:
            suites = self.artifacts.test_suites()
        except ArtifactError as e:
            return _failed("tests", e)

        problems = []
        for name in required:
            suite = suites.get(name)
            if suite is None:
                problems.append(f"{name}: no results")
            elif not suite.ok:
                problems.append(f"{name}: {suite.failed} failed, {suite.passed} passed")
        summary = {name: suites[name].model_dump() for name in required if name in suites}
        if problems:
            return _result("tests", False, "; ".join(problems), suites=summary)
        return _result("tests", True, f"{', '.join(required)} tests passed", suites=summary)

    def check_coverage(self, rules: GateRuleSet) -> ValidationResult:
        try:
            coverage = self.artifacts.coverage_percent()
        except ArtifactError as e:
            return _failed("coverage", e)
        return _result(
            "coverage",
            coverage >= rules.min_coverage,
            f"Coverage: {coverage:.1f}% (min: {rules.min_coverage:.0f}%)",
            coverage=coverage,
            min_coverage=rules.min_coverage,
        )

    def check_security(self, rules: GateRuleSet) -> ValidationResult:
        try:
            summary = self.artifacts.vulnerabilities()
        except ArtifactError as e:
            return _failed("security_scan", e)
        passed = (
            summary.critical_count <= rules.max_critical_vulns
            and summary.high_count <= rules.max_high_vulns
        )
        return _result(
            "security_scan",
            passed,
            f"Critical: {summary.critical_count} (max: {rules.max_critical_vulns}), "
            f"High: {summary.high_count} (max: {rules.max_high_vulns})",
            critical=summary.critical_count,
            high=summary.high_count,
            critical_ids=summary.critical_ids,
            high_ids=summary.high_ids,
        )

    def check_quality(self, rules: GateRuleSet) -> ValidationResult:
        if rules.min_quality_score <= 0:
            return _result("code_quality", True, "no minimum quality score configured")
        try:
            score = self.artifacts.quality_score()
        except ArtifactError as e:
            return _failed("code_quality", e)
        return _result(
            "code_quality",
            score >= rules.min_quality_score,
            f"Quality score: {score:.1f} (min: {rules.min_quality_score:.1f})",
            score=score,
        )

    # ------------------------------------------------------------------
    # reliability
    # ------------------------------------------------------------------

    def check_slo(self, sli_set: SLISet, rules: GateRuleSet) -> list[ValidationResult]:
        latency_ms = sli_set.latency_p95 * 1000
        return [
            _result(
                "slo_availability",
                sli_set.availability >= rules.min_availability,
                f"Availability: {sli_set.availability * 100:.2f}% "
                f"(min: {rules.min_availability * 100:.2f}%)",
                availability=sli_set.availability,
            ),
            _result(
                "slo_error_rate",
                sli_set.error_rate <= rules.max_error_rate,
                f"Error rate: {sli_set.error_rate * 100:.2f}% "
                f"(max: {rules.max_error_rate * 100:.2f}%)",
                error_rate=sli_set.error_rate,
            ),
            _result(
                "slo_latency",
                latency_ms <= rules.max_latency_p95_ms,
                f"P95 latency: {latency_ms:.0f}ms (max: {rules.max_latency_p95_ms:.0f}ms)",
                latency_p95_ms=latency_ms,
            ),
        ]

    def check_error_budget(self, namespace: str, rules: GateRuleSet) -> ValidationResult:
        try:
            _, status = assess_budget(self.config.service, self.metrics, namespace=namespace)
        except BudgetGuardError as e:
            return _failed("error_budget", e)
        return _result(
            "error_budget",
            status.consumed_fraction <= rules.max_error_budget_consumed,
            f"Error budget consumption: {status.consumed_pct:.1f}% "
            f"(max: {rules.max_error_budget_consumed * 100:.0f}%)",
            consumed_fraction=status.consumed_fraction,
            tier=status.tier.value,
        )

    def check_stability(self, environment: Environment, rules: GateRuleSet) -> ValidationResult:
        if rules.min_stable_minutes <= 0:
            return _result("deployment_stability", True, "no minimum stability period configured")
        if self._controller_factory is None:
            return _result("deployment_stability", False, _NO_CONTROLLER)
        try:
            status = self._controller_factory(environment.value).status()
        except BudgetGuardError as e:
            return _failed("deployment_stability", e)
        age = status.age_minutes(self._clock())
        if age is None:
            return _result("deployment_stability", False, "deployment time unknown")

        passed = status.converged and age >= rules.min_stable_minutes
        return _result(
            "deployment_stability",
            passed,
            f"Deployed {age:.0f} minutes ago (min: {rules.min_stable_minutes}), "
            f"{status.sync_status}/{status.health_status}",
            age_minutes=round(age, 1),
            health=status.health_status,
            sync=status.sync_status,
        )

    def check_alerts(self, namespace: str, rules: GateRuleSet) -> ValidationResult:
        try:
            firing = int(self.metrics.query(queries.critical_alerts(namespace)))
        except NoDataError:
            # count() over no firing alerts returns an empty vector
            firing = 0
        except BudgetGuardError as e:
            return _failed("critical_alerts", e)
        return _result(
            "critical_alerts",
            firing <= rules.max_critical_alerts,
            f"Firing critical alerts: {firing} (max: {rules.max_critical_alerts})",
            firing=firing,
        )

    def check_canary(
        self,
        edge: PromotionEdge,
        rules: GateRuleSet,
        sli_set: SLISet | None,
    ) -> ValidationResult:
        requirement = rules.canary_requirement
        assert requirement is not None
        if sli_set is None:
            return _result("canary", False, "data unavailable: canary SLIs could not be evaluated")

        settings = self.config.promotion
        canary_ns = self.namespace(edge.from_env)
        try:
            traffic = self.metrics.query(
                queries.traffic_share(
                    self.config.service.name,
                    settings.slo_window,
                    canary_ns,
                    [canary_ns, self.namespace(edge.to_env)],
                )
            )
        except BudgetGuardError as e:
            return _failed("canary", e)

        if self._controller_factory is None:
            return _result("canary", False, _NO_CONTROLLER)
        try:
            status = self._controller_factory(edge.from_env.value).status()
        except BudgetGuardError as e:
            return _failed("canary", e)
        elapsed = status.age_minutes(self._clock())
        if elapsed is None:
            return _result("canary", False, "canary deployment time unknown")

        problems = []
        if traffic < requirement.min_traffic_pct:
            problems.append(f"traffic {traffic:.1f}% < {requirement.min_traffic_pct:.1f}%")
        if elapsed < requirement.min_duration_minutes:
            problems.append(f"live {elapsed:.0f}m < {requirement.min_duration_minutes}m")
        if sli_set.availability < requirement.min_success_rate:
            problems.append(
                f"success rate {sli_set.availability * 100:.2f}% "
                f"< {requirement.min_success_rate * 100:.2f}%"
            )
        detail = (
            "; ".join(problems)
            if problems
            else f"traffic {traffic:.1f}%, live {elapsed:.0f}m, "
            f"success rate {sli_set.availability * 100:.2f}%"
        )
        return _result(
            "canary",
            not problems,
            detail,
            traffic_pct=traffic,
            elapsed_minutes=round(elapsed, 1),
            success_rate=sli_set.availability,
        )


__all__ = ["CHECK_ORDER", "PromotionValidator"]
