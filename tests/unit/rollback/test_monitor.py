"""Unit tests for the rollback monitoring cycle."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from budgetguard.errors import BackendUnavailableError, NoDataError
from budgetguard.rollback.executor import RollbackExecutor
from budgetguard.rollback.history import AttemptLog
from budgetguard.rollback.locking import remediation_lock
from budgetguard.rollback.monitor import RollbackMonitor
from budgetguard.schemas.config import GuardConfig, RollbackPolicy
from budgetguard.schemas.rollback import (
    ExecutionResult,
    RollbackOutcome,
    SkipKind,
    TargetSelection,
)
from budgetguard.schemas.slo import BudgetTier


def _config(state_dir: Path, **policy: Any) -> GuardConfig:
    return GuardConfig(state_dir=state_dir, rollback=RollbackPolicy(**policy))


def _executor_mock(outcome: RollbackOutcome = RollbackOutcome.SUCCEEDED) -> MagicMock:
    executor = MagicMock(spec=RollbackExecutor)
    executor.execute.return_value = ExecutionResult(
        environment="production", outcome=outcome, reason="restored"
    )
    return executor


def _monitor(
    state_dir: Path,
    metrics: Any,
    notifier: Any,
    executor: MagicMock,
    **policy: Any,
) -> RollbackMonitor:
    return RollbackMonitor(
        _config(state_dir, **policy),
        metrics=metrics,
        notifier=notifier,
        executor=executor,
    )


class TestCheck:
    """Tests for RollbackMonitor.check()."""

    @pytest.mark.requirement("monitor-cycle")
    def test_within_budget_does_nothing(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """A healthy service is recorded as skipped and nothing runs."""
        executor = _executor_mock()
        report = _monitor(state_dir, fake_metrics(0.9999), notifier, executor).check(now=now)

        assert report.decision.tier == BudgetTier.OK
        assert report.decision.skip_kind == SkipKind.WITHIN_BUDGET
        assert report.execution is None
        assert report.exit_code == 0
        executor.execute.assert_not_called()
        assert len(AttemptLog(state_dir).records("production")) == 1

    @pytest.mark.requirement("monitor-cycle")
    def test_emergency_runs_executor(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """A cleared decision is handed to the executor once."""
        executor = _executor_mock()
        report = _monitor(state_dir, fake_metrics(0.9988), notifier, executor).check(now=now)

        assert report.decision.should_rollback is True
        assert report.decision.tier == BudgetTier.EMERGENCY
        assert report.execution is not None
        assert report.execution.outcome == RollbackOutcome.SUCCEEDED
        assert report.exit_code == 2
        executor.execute.assert_called_once()
        decision = executor.execute.call_args.args[0]
        assert decision.reason.startswith("Emergency: Error budget 120.00% consumed")

    def test_explicit_target_is_forwarded(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """Explicit targets reach the executor unchanged."""
        executor = _executor_mock()
        target = TargetSelection(revision=4)
        _monitor(state_dir, fake_metrics(0.9988), notifier, executor).check(
            target=target, now=now
        )
        assert executor.execute.call_args.args[1] is target

    @pytest.mark.requirement("monitor-lock")
    def test_held_lock_skips(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """Another actor holding the lock turns the cycle into a Locked skip."""
        executor = _executor_mock()
        monitor = _monitor(state_dir, fake_metrics(0.9988), notifier, executor)

        with remediation_lock(state_dir, "production"):
            report = monitor.check(now=now)

        assert report.decision.should_rollback is False
        assert report.decision.skip_kind == SkipKind.LOCKED
        executor.execute.assert_not_called()
        latest = AttemptLog(state_dir).latest("production")
        assert latest is not None
        assert latest.outcome == RollbackOutcome.SKIPPED
        assert latest.reason.startswith("remediation already in progress")

    def test_missing_data_propagates(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """No samples is an error of the cycle, not a healthy reading."""
        monitor = _monitor(state_dir, fake_metrics(missing=True), notifier, _executor_mock())
        with pytest.raises(NoDataError):
            monitor.check(now=now)
        assert len(AttemptLog(state_dir).records("production")) == 0


class TestExecuteManual:
    """Tests for RollbackMonitor.execute_manual()."""

    def test_bypasses_gate(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """Operators can roll back even while the budget is healthy."""
        executor = _executor_mock()
        report = _monitor(
            state_dir, fake_metrics(0.9999), notifier, executor, enabled=False
        ).execute_manual("bad deploy", now=now)

        decision = executor.execute.call_args.args[0]
        assert decision.should_rollback is True
        assert decision.reason == "Manual rollback: bad deploy"
        assert decision.tier == BudgetTier.OK
        assert report.execution is not None

    def test_metrics_outage_defaults_to_critical(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """Without metrics the manual rollback is attributed to Critical."""
        executor = _executor_mock()
        metrics = fake_metrics(error=BackendUnavailableError("metrics", "connection refused"))
        report = _monitor(state_dir, metrics, notifier, executor).execute_manual(
            "metrics down", dry_run=True, now=now
        )

        decision = executor.execute.call_args.args[0]
        assert decision.tier == BudgetTier.CRITICAL
        assert decision.dry_run is True
        assert report.status is None

    def test_held_lock_is_recorded(
        self,
        state_dir: Path,
        fake_metrics: Callable[..., Any],
        notifier: Any,
        now: datetime,
    ) -> None:
        """A manual rollback never waits for another remediation."""
        executor = _executor_mock()
        monitor = _monitor(state_dir, fake_metrics(0.9988), notifier, executor)

        with remediation_lock(state_dir, "production"):
            report = monitor.execute_manual("bad deploy", now=now)

        assert report.decision.skip_kind == SkipKind.LOCKED
        assert report.execution is None
        executor.execute.assert_not_called()
