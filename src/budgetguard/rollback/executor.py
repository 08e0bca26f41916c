"""Dual-backend rollback executor.

Restores the last known-good state of an environment through two
independent remediation paths:

* the GitOps config repository, by restoring the environment path from an
  earlier commit as a new commit;
* the deployment controller, by rolling the application back to an earlier
  history entry.

A failure in one path never prevents the other from being attempted. The
executor writes exactly one outcome record to the attempt log per call.

Example:
    >>> executor = RollbackExecutor(
    ...     "production",
    ...     AttemptLog(state_dir),
    ...     repository=GitOpsRepository.from_config(config.gitops),
    ...     environment_path="k8s/overlays/production",
    ...     controller=ArgoCDClient.from_config(config.controller, "production"),
    ... )
    >>> result = executor.execute(decision)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from budgetguard.backends.argocd import AppStatus, ArgoCDClient
from budgetguard.backends.gitops import GitOpsRepository
from budgetguard.deadline import Deadline
from budgetguard.errors import BudgetGuardError, NoRevertTargetError
from budgetguard.notifications import Notifier
from budgetguard.rollback.history import AttemptLog
from budgetguard.schemas.config import GuardConfig
from budgetguard.schemas.rollback import (
    BackendResult,
    ExecutionResult,
    RollbackAttemptRecord,
    RollbackBackend,
    RollbackDecision,
    RollbackOutcome,
    TargetSelection,
)
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)

DEFAULT_DEADLINE_SECONDS = 900.0
DEFAULT_WAIT_SECONDS = 300.0
DEFAULT_IDEMPOTENCY_WINDOW = timedelta(minutes=60)
MIN_IDEMPOTENCY_WINDOW = timedelta(minutes=15)


def combine_outcomes(results: list[BackendResult]) -> RollbackOutcome:
    """Overall outcome: Failed if any path failed, Succeeded if any path
    succeeded, Skipped when nothing ran."""
    outcomes = {r.outcome for r in results}
    if RollbackOutcome.FAILED in outcomes:
        return RollbackOutcome.FAILED
    if RollbackOutcome.SUCCEEDED in outcomes:
        return RollbackOutcome.SUCCEEDED
    return RollbackOutcome.SKIPPED


def _summary(results: list[BackendResult]) -> str:
    parts = []
    for result in results:
        text = f"{result.backend.value}={result.outcome.value}"
        if result.target_reference:
            text += f"@{result.target_reference}"
        if result.no_op:
            text += " (already at target)"
        elif result.outcome != RollbackOutcome.SUCCEEDED and result.detail:
            text += f" ({result.detail})"
        parts.append(text)
    return "; ".join(parts)


class RollbackExecutor:
    """Runs a rollback against every configured backend.

    Args:
        environment: Environment to remediate.
        attempt_log: Attempt log receiving the outcome record.
        repository: Config repository backend (None when not configured).
        environment_path: Environment path inside the config repository.
        controller: Deployment controller backend (None when not configured).
        notifier: Notification sink.
        deadline_seconds: Overall time budget of one execution.
        wait_timeout_seconds: Time budget for the controller to converge.
        idempotency_window: How far back an executed rollback counts as the
            one being repeated.
        clock: Returns the current UTC time (injected in tests).
        sleep: Sleep function used by waits (injected in tests).
    """

    def __init__(
        self,
        environment: str,
        attempt_log: AttemptLog,
        *,
        repository: GitOpsRepository | None = None,
        environment_path: str | None = None,
        controller: ArgoCDClient | None = None,
        notifier: Notifier | None = None,
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
        wait_timeout_seconds: float = DEFAULT_WAIT_SECONDS,
        idempotency_window: timedelta = DEFAULT_IDEMPOTENCY_WINDOW,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if repository is not None and not environment_path:
            raise ValueError("environment_path is required with a config repository")
        self.environment = environment
        self.attempt_log = attempt_log
        self.repository = repository
        self.environment_path = environment_path
        self.controller = controller
        self.notifier = notifier or Notifier()
        self.deadline_seconds = deadline_seconds
        self.wait_timeout_seconds = wait_timeout_seconds
        self.idempotency_window = idempotency_window
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._log = logger.bind(environment=environment)

    @classmethod
    def from_config(
        cls,
        config: GuardConfig,
        environment: str,
        *,
        attempt_log: AttemptLog | None = None,
        notifier: Notifier | None = None,
    ) -> RollbackExecutor:
        """Build an executor with the backends the configuration declares."""
        repository = None
        environment_path = None
        if config.gitops is not None:
            repository = GitOpsRepository.from_config(config.gitops)
            environment_path = config.gitops.environment_path(environment)
        controller = None
        wait_timeout = DEFAULT_WAIT_SECONDS
        if config.controller is not None:
            controller = ArgoCDClient.from_config(config.controller, environment)
            wait_timeout = config.controller.wait_timeout_seconds
        return cls(
            environment,
            attempt_log or AttemptLog(config.state_dir),
            repository=repository,
            environment_path=environment_path,
            controller=controller,
            notifier=notifier or Notifier.from_config(config.notifications),
            deadline_seconds=config.rollback.deadline_seconds,
            wait_timeout_seconds=wait_timeout,
            idempotency_window=max(
                timedelta(minutes=config.rollback.cooldown_minutes), MIN_IDEMPOTENCY_WINDOW
            ),
        )

    def _new_deadline(self) -> Deadline:
        if self._sleep is None:
            return Deadline(self.deadline_seconds)
        return Deadline(self.deadline_seconds, sleep=self._sleep)

    def _previous_targets(self, now: datetime) -> dict[RollbackBackend, str]:
        """Targets reached by the most recent executed rollback, if recent."""
        records = self.attempt_log.records(self.environment, since=now - self.idempotency_window)
        for record in reversed(records):
            if record.outcome != RollbackOutcome.SKIPPED and record.backend_targets:
                return dict(record.backend_targets)
        return {}

    def execute(
        self,
        decision: RollbackDecision,
        target: TargetSelection | None = None,
        *,
        now: datetime | None = None,
    ) -> ExecutionResult:
        """Execute a cleared rollback decision.

        Args:
            decision: Decision from the safety gate (or a manual one).
            target: Optional explicit targets per backend.
            now: Execution time (defaults to the injected clock).

        Returns:
            ExecutionResult with one BackendResult per configured backend.

        Raises:
            ValueError: If the decision does not clear a rollback.
        """
        if not decision.should_rollback:
            raise ValueError(f"decision does not clear a rollback: {decision.reason}")
        target = target or TargetSelection()
        now = now or self._clock()
        dry_run = decision.dry_run
        deadline = self._new_deadline()
        previous = self._previous_targets(now)

        self._log.warning(
            "rollback_started",
            reason=decision.reason,
            tier=decision.tier.value,
            dry_run=dry_run,
        )
        self.notifier.send(
            f"{'DRY RUN: ' if dry_run else ''}Initiating rollback of {self.environment}: "
            f"{decision.reason}",
            "warning" if dry_run else "critical",
            environment=self.environment,
            tier=decision.tier.value,
        )

        results: list[BackendResult] = []
        with create_span(
            "budgetguard.rollback.execute",
            attributes={"environment": self.environment, "dry_run": dry_run},
        ) as span:
            if self.repository is not None:
                results.append(
                    self._run_backend(
                        RollbackBackend.CONFIG_REPOSITORY,
                        lambda: self._rollback_repository(decision, target, previous, now),
                    )
                )
            if self.controller is not None:
                results.append(
                    self._run_backend(
                        RollbackBackend.DEPLOYMENT_CONTROLLER,
                        lambda: self._rollback_controller(target, previous, deadline, dry_run),
                    )
                )
            outcome = combine_outcomes(results)
            if dry_run and outcome == RollbackOutcome.SUCCEEDED:
                outcome = RollbackOutcome.SKIPPED
            span.set_attribute("outcome", outcome.value)

        app_status = self._post_action_status()
        if not results:
            reason = "no rollback backend configured"
        elif dry_run:
            reason = f"dry run: {decision.reason}; {_summary(results)}"
        else:
            reason = f"{decision.reason}; {_summary(results)}"

        result = ExecutionResult(
            environment=self.environment,
            outcome=outcome,
            backends=results,
            reason=reason,
            health_status=app_status.health_status if app_status else None,
            sync_status=app_status.sync_status if app_status else None,
            current_revision=app_status.revision if app_status else None,
            dry_run=dry_run,
        )
        self._record(decision, result, now)
        self._announce(result)
        return result

    def _run_backend(
        self,
        backend: RollbackBackend,
        action: Callable[[], BackendResult],
    ) -> BackendResult:
        try:
            return action()
        except BudgetGuardError as e:
            self._log.error(
                "rollback_backend_failed",
                backend=backend.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            return BackendResult.failed(backend, type(e).__name__, str(e))

    def _rollback_repository(
        self,
        decision: RollbackDecision,
        target: TargetSelection,
        previous: dict[RollbackBackend, str],
        now: datetime,
    ) -> BackendResult:
        backend = RollbackBackend.CONFIG_REPOSITORY
        repository = self.repository
        path = self.environment_path
        assert repository is not None and path is not None

        repository.sync()

        recorded = previous.get(backend)
        if target.commit is None and recorded and repository.commit_exists(recorded):
            if repository.path_matches(recorded, path):
                self._log.info("rollback_repository_already_applied", target=recorded)
                return BackendResult.succeeded(
                    backend, recorded, "already at previously restored commit", no_op=True
                )

        sha = target.commit or repository.select_revert_target(path, now).sha
        if not repository.commit_exists(sha):
            raise NoRevertTargetError(path, f"commit {sha} does not exist")
        if repository.path_matches(sha, path):
            return BackendResult.succeeded(backend, sha, "path already matches target", no_op=True)

        if decision.dry_run:
            self._log.warning("rollback_repository_dry_run", target=sha, path=path)
            return BackendResult.skipped(
                backend, f"dry run: would restore {path} from {sha[:12]}", sha
            )

        reverted = repository.revert_path(sha, path, decision.reason, now=now)
        if reverted.no_op:
            return BackendResult.succeeded(
                backend, reverted.target_sha, "path already matches target", no_op=True
            )
        return BackendResult.succeeded(
            backend,
            reverted.target_sha,
            f"commit {reverted.commit_sha} pushed to {reverted.pushed_ref}",
        )

    def _rollback_controller(
        self,
        target: TargetSelection,
        previous: dict[RollbackBackend, str],
        deadline: Deadline,
        dry_run: bool,
    ) -> BackendResult:
        backend = RollbackBackend.DEPLOYMENT_CONTROLLER
        controller = self.controller
        assert controller is not None

        current = controller.status()
        recorded = previous.get(backend)
        if target.revision is None and recorded and current.revision == recorded:
            self._log.info("rollback_controller_already_applied", revision=recorded)
            return BackendResult.succeeded(
                backend, recorded, "already at previously restored revision", no_op=True
            )

        if target.revision is not None:
            history = {entry.id: entry for entry in controller.history()}
            entry = history.get(target.revision)
            history_id = target.revision
            revision = entry.revision if entry and entry.revision else str(target.revision)
        else:
            selected = controller.select_rollback_revision()
            if selected is None:
                raise NoRevertTargetError(controller.app_name, "no earlier deployment in history")
            history_id = selected.id
            revision = selected.revision or str(selected.id)

        at_target = current.history_id == history_id or current.revision == revision
        if at_target:
            return BackendResult.succeeded(
                backend, revision, "already at target revision", no_op=True
            )

        if dry_run:
            self._log.warning(
                "rollback_controller_dry_run", history_id=history_id, revision=revision
            )
            return BackendResult.skipped(
                backend, f"dry run: would roll back to history id {history_id}", revision
            )

        controller.rollback(history_id)
        if not target.wait_for_healthy:
            return BackendResult.succeeded(
                backend, revision, f"rollback to history id {history_id} initiated"
            )

        status = controller.wait_for_healthy(deadline.child(self.wait_timeout_seconds))
        return BackendResult.succeeded(
            backend,
            revision,
            f"rolled back to history id {history_id} ({status.sync_status}/{status.health_status})",
        )

    def _post_action_status(self) -> AppStatus | None:
        if self.controller is None:
            return None
        try:
            return self.controller.status()
        except BudgetGuardError as e:
            self._log.warning("rollback_status_unavailable", error=str(e))
            return None

    def _record(self, decision: RollbackDecision, result: ExecutionResult, now: datetime) -> None:
        targets = {
            r.backend: r.target_reference
            for r in result.backends
            if r.outcome == RollbackOutcome.SUCCEEDED and r.target_reference
        }
        references = ", ".join(
            f"{r.backend.value}={r.target_reference}" for r in result.backends if r.target_reference
        )
        self.attempt_log.append(
            RollbackAttemptRecord(
                timestamp=now,
                environment=self.environment,
                trigger_tier=decision.tier,
                backends=[r.backend for r in result.backends],
                outcome=result.outcome,
                reason=result.reason,
                target_reference=references or None,
                backend_targets=targets,
                dry_run=result.dry_run,
            )
        )

    def _announce(self, result: ExecutionResult) -> None:
        verb, severity = "skipped", "info"
        if result.outcome == RollbackOutcome.SUCCEEDED:
            verb, severity = "succeeded", "warning"
        elif result.outcome == RollbackOutcome.FAILED:
            verb, severity = "FAILED", "critical"
        message = f"Rollback of {self.environment} {verb}: {result.reason}"
        self._log.info(
            "rollback_finished",
            outcome=result.outcome.value,
            health=result.health_status,
            sync=result.sync_status,
        )
        self.notifier.send(
            message,
            severity,
            environment=self.environment,
            outcome=result.outcome.value,
            health=result.health_status,
            sync=result.sync_status,
        )


__all__ = ["RollbackExecutor", "combine_outcomes"]
