"""Rollback monitor: one scheduled unit of work.

Evaluate SLIs, compute the error budget, then, holding the remediation
lock for the environment, ask the safety gate and run the executor when the
gate clears a rollback. An external scheduler invokes :meth:`check`
periodically; nothing here loops or retries.

Example:
    >>> monitor = RollbackMonitor(load_config("budgetguard.yaml"))
    >>> report = monitor.check()
    >>> sys.exit(report.exit_code)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, ConfigDict

from budgetguard.errors import BudgetGuardError, RemediationInProgressError
from budgetguard.notifications import Notifier
from budgetguard.rollback.executor import RollbackExecutor
from budgetguard.rollback.history import AttemptLog
from budgetguard.rollback.locking import remediation_lock
from budgetguard.rollback.safety_gate import RollbackSafetyGate
from budgetguard.schemas.config import GuardConfig
from budgetguard.schemas.rollback import (
    ExecutionResult,
    RollbackAttemptRecord,
    RollbackDecision,
    RollbackOutcome,
    SkipKind,
    TargetSelection,
)
from budgetguard.schemas.slo import BudgetTier, ErrorBudgetStatus, SLISet
from budgetguard.slo.assessment import assess_budget
from budgetguard.slo.evaluator import MetricsBackend, PrometheusBackend
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)


class MonitorReport(BaseModel):
    """Everything one monitoring cycle observed and did."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: str
    sli_set: SLISet | None = None
    status: ErrorBudgetStatus | None = None
    decision: RollbackDecision
    execution: ExecutionResult | None = None

    @property
    def exit_code(self) -> int:
        """0 nominal, 1 warning, 2 critical or emergency."""
        return self.decision.tier.exit_code


class RollbackMonitor:
    """Evaluate, decide and remediate one environment.

    Args:
        config: Loaded configuration.
        environment: Environment to guard (defaults to the service's).
        metrics: Metrics backend (defaults to Prometheus from config).
        attempt_log: Attempt log (defaults to one under ``state_dir``).
        notifier: Notification sink (defaults to the configured channels).
        executor: Rollback executor (defaults to one built from config).
        clock: Returns the current UTC time (injected in tests).
    """

    def __init__(
        self,
        config: GuardConfig,
        environment: str | None = None,
        *,
        metrics: MetricsBackend | None = None,
        attempt_log: AttemptLog | None = None,
        notifier: Notifier | None = None,
        executor: RollbackExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.environment = environment or config.service.environment
        self.metrics = metrics or PrometheusBackend(
            config.metrics.url, timeout=config.metrics.timeout_seconds
        )
        self.attempt_log = attempt_log or AttemptLog(config.state_dir)
        self.notifier = notifier or Notifier.from_config(config.notifications)
        self._executor = executor
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = logger.bind(environment=self.environment, service=config.service.name)

    @property
    def executor(self) -> RollbackExecutor:
        if self._executor is None:
            self._executor = RollbackExecutor.from_config(
                self.config,
                self.environment,
                attempt_log=self.attempt_log,
                notifier=self.notifier,
            )
        return self._executor

    def gate(self) -> RollbackSafetyGate:
        return RollbackSafetyGate(
            self.config.rollback,
            self.attempt_log,
            self.environment,
            notifier=self.notifier,
            clock=self._clock,
        )

    def assess(self) -> tuple[SLISet, ErrorBudgetStatus]:
        return assess_budget(self.config.service, self.metrics)

    def check(
        self,
        *,
        target: TargetSelection | None = None,
        now: datetime | None = None,
    ) -> MonitorReport:
        """Run one monitoring cycle.

        Raises:
            BackendUnavailableError: Metrics backend unreachable.
            MetricsQueryError: A query was rejected.
            NoDataError: The service reported no samples.
        """
        now = now or self._clock()
        with create_span(
            "budgetguard.rollback.check",
            attributes={"environment": self.environment, "service": self.config.service.name},
        ):
            sli_set, status = self.assess()
            execution = None
            try:
                with remediation_lock(self.config.state_dir, self.environment):
                    decision = self.gate().decide(status, now=now)
                    if decision.should_rollback:
                        execution = self.executor.execute(decision, target, now=now)
            except RemediationInProgressError as e:
                decision = self._record_locked(status.tier, e, now)

        self.attempt_log.prune(self.environment, self.config.rollback.retention_days, now=now)
        self._log.info(
            "rollback_check_complete",
            tier=status.tier.value,
            should_rollback=decision.should_rollback,
            outcome=execution.outcome.value if execution else None,
        )
        return MonitorReport(
            environment=self.environment,
            sli_set=sli_set,
            status=status,
            decision=decision,
            execution=execution,
        )

    def execute_manual(
        self,
        reason: str,
        *,
        target: TargetSelection | None = None,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> MonitorReport:
        """Operator-initiated rollback, bypassing the safety gate.

        Still holds the remediation lock and records its outcome. The
        trigger tier is the currently measured one when metrics are
        available, Critical otherwise.
        """
        now = now or self._clock()
        sli_set: SLISet | None = None
        status: ErrorBudgetStatus | None = None
        tier = BudgetTier.CRITICAL
        try:
            sli_set, status = self.assess()
            tier = status.tier
        except BudgetGuardError as e:
            self._log.warning("manual_rollback_metrics_unavailable", error=str(e))

        decision = RollbackDecision(
            should_rollback=True,
            reason=f"Manual rollback: {reason}",
            tier=tier,
            dry_run=dry_run or self.config.rollback.dry_run,
        )
        execution = None
        try:
            with remediation_lock(self.config.state_dir, self.environment):
                execution = self.executor.execute(decision, target, now=now)
        except RemediationInProgressError as e:
            decision = self._record_locked(tier, e, now)

        return MonitorReport(
            environment=self.environment,
            sli_set=sli_set,
            status=status,
            decision=decision,
            execution=execution,
        )

    def _record_locked(
        self,
        tier: BudgetTier,
        error: RemediationInProgressError,
        now: datetime,
    ) -> RollbackDecision:
        reason = f"remediation already in progress (lock: {error.lock_path})"
        self._log.warning("rollback_skipped_locked", lock_path=error.lock_path)
        self.attempt_log.append(
            RollbackAttemptRecord(
                timestamp=now,
                environment=self.environment,
                trigger_tier=tier,
                outcome=RollbackOutcome.SKIPPED,
                reason=reason,
                dry_run=self.config.rollback.dry_run,
            )
        )
        return RollbackDecision(
            should_rollback=False,
            reason=reason,
            tier=tier,
            skip_kind=SkipKind.LOCKED,
            dry_run=self.config.rollback.dry_run,
        )


__all__ = ["MonitorReport", "RollbackMonitor"]
