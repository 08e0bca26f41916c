"""Promotion orchestrator.

Drives one promotion attempt through the state machine::

    Requested -> Validating -> Rejected
                            -> AwaitingApproval
                            -> Approved -> Promoting -> Verifying -> Completed
                                                                 -> RolledBack

AwaitingApproval is terminal for an invocation: approvals are recorded out
of band and the next invocation re-validates and re-checks them. Nothing
here blocks on a human.

From Promoting onwards the orchestrator holds the remediation lock of the
target environment, so an error-budget rollback cannot interleave with a
promotion of the same environment.

Once the release is pushed the outcome is Completed or a rollback: a sync
or health timeout of the target counts as a failed verification. Failed is
left for a push that did not land and for a rollback that did not succeed.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from budgetguard.backends.argocd import ArgoCDClient
from budgetguard.backends.gitops import GitOpsRepository
from budgetguard.deadline import Deadline
from budgetguard.errors import BudgetGuardError, ConfigurationError
from budgetguard.notifications import Notifier
from budgetguard.promotion.approvals import ApprovalStore
from budgetguard.promotion.validator import PromotionValidator
from budgetguard.rollback.executor import RollbackExecutor
from budgetguard.rollback.locking import remediation_lock
from budgetguard.schemas.config import GuardConfig
from budgetguard.schemas.promotion import (
    CheckStatus,
    Environment,
    GateRuleSet,
    PromotionEdge,
    PromotionOutcome,
    PromotionState,
    ValidationResult,
)
from budgetguard.schemas.rollback import RollbackDecision, RollbackOutcome
from budgetguard.schemas.slo import BudgetTier
from budgetguard.slo.assessment import assess_budget
from budgetguard.slo.evaluator import SLIEvaluator
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)


class PromotionOrchestrator:
    """Validates, approves, promotes and verifies one edge at a time.

    Args:
        config: Loaded configuration.
        validator: Promotion validator (defaults to one built from config).
        approvals: Approval store (defaults to one under ``state_dir``).
        repository: Config repository (defaults to the configured one).
        controller_factory: Builds the controller client for an environment.
        executor_factory: Builds the rollback executor for an environment.
        notifier: Notification sink.
        clock: Returns the current UTC time (injected in tests).
        sleep: Sleep function used for settling and waits (injected in tests).
    """

    def __init__(
        self,
        config: GuardConfig,
        *,
        validator: PromotionValidator | None = None,
        approvals: ApprovalStore | None = None,
        repository: GitOpsRepository | None = None,
        controller_factory: Callable[[str], ArgoCDClient] | None = None,
        executor_factory: Callable[[str], RollbackExecutor] | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config
        self.validator = validator or PromotionValidator(config)
        self.approvals = approvals or ApprovalStore(config.state_dir)
        if repository is None and config.gitops is not None:
            repository = GitOpsRepository.from_config(config.gitops)
        self.repository = repository
        if controller_factory is None and config.controller is not None:
            controller_factory = functools.partial(ArgoCDClient.from_config, config.controller)
        self._controller_factory = controller_factory
        self.notifier = notifier or Notifier.from_config(config.notifications)
        if executor_factory is None:

            def executor_factory(environment: str) -> RollbackExecutor:
                return RollbackExecutor.from_config(config, environment, notifier=self.notifier)

        self._executor_factory = executor_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    def _environment_path(self, environment: Environment) -> str:
        assert self.config.gitops is not None
        return self.config.gitops.environment_path(environment.value)

    def _require_repository(self) -> GitOpsRepository:
        if self.repository is None or self.config.gitops is None:
            raise ConfigurationError("promotion requires a gitops configuration")
        return self.repository

    def _outcome(
        self,
        edge: PromotionEdge,
        state: PromotionState,
        reason: str,
        **fields: Any,
    ) -> PromotionOutcome:
        logger.info("promotion_state", edge=edge.key, state=state.value, reason=reason)
        return PromotionOutcome(
            from_env=edge.from_env,
            to_env=edge.to_env,
            state=state,
            reason=reason,
            **fields,
        )

    def release_reference(self, from_env: str | Environment) -> str:
        """Release currently deployed in ``from_env`` (kustomization newTag)."""
        repository = self._require_repository()
        repository.sync()
        return repository.release_reference(self._environment_path(Environment(from_env)))

    def approve(
        self,
        from_env: str | Environment,
        to_env: str | Environment,
        approver: str,
        role: str,
        *,
        release_reference: str | None = None,
    ) -> tuple[PromotionEdge, str, dict[str, int]]:
        """Record an approval for the release currently in ``from_env``.

        Returns:
            (edge, approved release, approvals still missing per role)

        Raises:
            InvalidEdgeError: If the environments are not adjacent.
            ConfigurationError: If the role is not required for the edge.
        """
        edge = PromotionEdge.resolve(from_env, to_env)
        rules = self.config.promotion.rule_set(edge)
        if rules.required_approvers.get(role, 0) <= 0:
            required = ", ".join(sorted(rules.required_approvers)) or "none"
            raise ConfigurationError(
                f"role {role!r} is not an approver for {edge.key} (required: {required})"
            )
        release = release_reference or self.release_reference(edge.from_env)
        self.approvals.record(edge, release, approver, role, now=self._clock())
        return edge, release, self.approvals.missing(edge, release, rules.required_approvers)

    def promote(
        self,
        from_env: str | Environment,
        to_env: str | Environment,
        *,
        dry_run: bool = False,
    ) -> PromotionOutcome:
        """Run one promotion attempt.

        Args:
            from_env: Source environment.
            to_env: Target environment (must be the next one).
            dry_run: Stop at Approved without side effects.

        Returns:
            PromotionOutcome in a terminal state (or Approved for dry runs).

        Raises:
            InvalidEdgeError: If the environments are not adjacent.
            ConfigurationError: If no config repository is configured.
            RemediationInProgressError: If the target environment is locked.
        """
        edge = PromotionEdge.resolve(from_env, to_env)
        rules = self.config.promotion.rule_set(edge)
        log = logger.bind(edge=edge.key, dry_run=dry_run)
        log.info("promotion_state", state=PromotionState.REQUESTED.value)

        with create_span(
            "budgetguard.promotion.promote",
            attributes={"edge": edge.key, "dry_run": dry_run},
        ) as span:
            outcome = self._promote(edge, rules, dry_run)
            span.set_attribute("state", outcome.state.value)

        self._announce(outcome)
        return outcome

    def _promote(self, edge: PromotionEdge, rules: GateRuleSet, dry_run: bool) -> PromotionOutcome:
        logger.info("promotion_state", edge=edge.key, state=PromotionState.VALIDATING.value)
        report = self.validator.validate(edge.from_env, edge.to_env)
        if not report.passed:
            failed = ", ".join(r.check_name for r in report.failures)
            return self._outcome(
                edge,
                PromotionState.REJECTED,
                f"validation failed: {failed}",
                report=report,
                dry_run=dry_run,
            )

        repository = self._require_repository()
        release = self.release_reference(edge.from_env)
        approvals = self.approvals.approvals(edge, release)
        missing = self.approvals.missing(edge, release, rules.required_approvers)
        if missing:
            needed = ", ".join(f"{role} x{count}" for role, count in sorted(missing.items()))
            return self._outcome(
                edge,
                PromotionState.AWAITING_APPROVAL,
                f"awaiting approval for release {release}: {needed}",
                report=report,
                release_reference=release,
                approvals=approvals,
                missing_approvals=missing,
                dry_run=dry_run,
            )

        if dry_run:
            return self._outcome(
                edge,
                PromotionState.APPROVED,
                f"dry run: release {release} would be promoted",
                report=report,
                release_reference=release,
                approvals=approvals,
                dry_run=True,
            )

        logger.info("promotion_state", edge=edge.key, state=PromotionState.APPROVED.value)
        deadline = (
            Deadline(self.config.promotion.deadline_seconds, sleep=self._sleep)
            if self._sleep is not None
            else Deadline(self.config.promotion.deadline_seconds)
        )
        fields: dict[str, Any] = {
            "report": report,
            "release_reference": release,
            "approvals": approvals,
        }

        with remediation_lock(self.config.state_dir, edge.to_env.value):
            logger.info("promotion_state", edge=edge.key, state=PromotionState.PROMOTING.value)
            try:
                self._push_release(repository, edge, release)
            except BudgetGuardError as e:
                logger.error("promotion_push_failed", edge=edge.key, error=str(e))
                return self._outcome(
                    edge, PromotionState.FAILED, f"promotion failed: {e}", **fields
                )

            try:
                self._converge(edge, deadline)
            except BudgetGuardError as e:
                # The release is already pushed; an unconverged target is remediated.
                logger.error("promotion_sync_failed", edge=edge.key, error=str(e))
                verification = [
                    ValidationResult(
                        check_name="deployment_sync",
                        status=CheckStatus.FAIL,
                        detail=str(e),
                    )
                ]
                tier = BudgetTier.CRITICAL
            else:
                logger.info(
                    "promotion_state", edge=edge.key, state=PromotionState.VERIFYING.value
                )
                deadline.sleep(self.config.promotion.settle_seconds)
                verification, tier = self.verify(edge.to_env, rules)

            failures = [r for r in verification if r.status == CheckStatus.FAIL]
            if not failures:
                return self._outcome(
                    edge,
                    PromotionState.COMPLETED,
                    f"release {release} promoted to {edge.to_env.value}",
                    verification=verification,
                    **fields,
                )

            reason = "Promotion verification failed: " + ", ".join(
                f"{r.check_name} ({r.detail})" for r in failures
            )
            decision = RollbackDecision(should_rollback=True, reason=reason, tier=tier)
            rollback = self._executor_factory(edge.to_env.value).execute(decision)

        state = (
            PromotionState.ROLLED_BACK
            if rollback.outcome == RollbackOutcome.SUCCEEDED
            else PromotionState.FAILED
        )
        return self._outcome(
            edge,
            state,
            f"{reason}; rollback {rollback.outcome.value}",
            verification=verification,
            rollback=rollback,
            **fields,
        )

    def _push_release(
        self,
        repository: GitOpsRepository,
        edge: PromotionEdge,
        release: str,
    ) -> None:
        repository.promote_release(
            self._environment_path(edge.from_env),
            self._environment_path(edge.to_env),
            edge.from_env.value,
            edge.to_env.value,
            release_reference=release,
            now=self._clock(),
        )

    def _converge(self, edge: PromotionEdge, deadline: Deadline) -> None:
        if self._controller_factory is None:
            logger.warning("promotion_controller_not_configured", edge=edge.key)
            return
        controller = self._controller_factory(edge.to_env.value)
        controller.sync()
        wait = self.config.controller.wait_timeout_seconds if self.config.controller else 300.0
        controller.wait_for_healthy(deadline.child(wait), after_sync=True)

    def verify(
        self,
        environment: Environment,
        rules: GateRuleSet,
    ) -> tuple[list[ValidationResult], BudgetTier]:
        """Re-evaluate SLIs and error budget of a freshly promoted environment.

        Returns:
            (check results, budget tier used as rollback trigger)
        """
        namespace = self.validator.namespace(environment)
        results: list[ValidationResult] = []
        try:
            sli_set = SLIEvaluator(self.validator.metrics).evaluate(
                self.config.service.name, self.config.promotion.slo_window, namespace=namespace
            )
        except BudgetGuardError as e:
            results.extend(
                ValidationResult(
                    check_name=name,
                    status=CheckStatus.FAIL,
                    detail=f"data unavailable: {e}",
                )
                for name in ("slo_availability", "slo_error_rate", "slo_latency")
            )
        else:
            results.extend(self.validator.check_slo(sli_set, rules))

        tier = BudgetTier.CRITICAL
        try:
            _, status = assess_budget(
                self.config.service, self.validator.metrics, namespace=namespace
            )
        except BudgetGuardError as e:
            results.append(
                ValidationResult(
                    check_name="error_budget",
                    status=CheckStatus.FAIL,
                    detail=f"data unavailable: {e}",
                )
            )
        else:
            tier = max(status.tier, BudgetTier.CRITICAL, key=lambda t: t.rank)
            results.append(
                ValidationResult(
                    check_name="error_budget",
                    status=(
                        CheckStatus.PASS
                        if status.consumed_fraction <= rules.max_error_budget_consumed
                        else CheckStatus.FAIL
                    ),
                    detail=f"Error budget consumption: {status.consumed_pct:.1f}% "
                    f"(max: {rules.max_error_budget_consumed * 100:.0f}%)",
                )
            )
        return results, tier

    def _announce(self, outcome: PromotionOutcome) -> None:
        severity = {
            PromotionState.COMPLETED: "info",
            PromotionState.AWAITING_APPROVAL: "info",
            PromotionState.APPROVED: "info",
            PromotionState.REJECTED: "warning",
            PromotionState.ROLLED_BACK: "critical",
            PromotionState.FAILED: "critical",
        }.get(outcome.state, "info")
        self.notifier.send(
            f"Promotion {outcome.from_env.value} -> {outcome.to_env.value}: "
            f"{outcome.state.value} ({outcome.reason})",
            severity,
            kinds=("slack",) if severity != "critical" else None,
            release=outcome.release_reference,
            state=outcome.state.value,
        )


__all__ = ["PromotionOrchestrator"]
