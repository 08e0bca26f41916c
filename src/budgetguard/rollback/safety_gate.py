"""Rollback safety gate.

Decides whether an automated rollback may run now, given the current error
budget tier and the persisted attempt history. Evaluation order:

1. OK / Warning: no rollback (Warning notifies at warning severity).
2. Critical: eligible only if ``auto_rollback_critical``.
3. Emergency: eligible only if ``auto_rollback_emergency``.
4. Rollback globally disabled: skip.
5. Inside a blackout window: skip.
6. Last successful rollback within the cooldown: skip.
7. Daily or hourly rollback limit reached: skip.
8. Approval required (and not dry run): hand over to a human.
9. Otherwise: roll back.

Every branch that does not proceed appends exactly one Skipped record to
the attempt log; the executor records the outcome of branch 9.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from budgetguard.notifications import Notifier
from budgetguard.rollback.history import AttemptLog
from budgetguard.schemas.config import RollbackPolicy
from budgetguard.schemas.rollback import (
    RollbackAttemptRecord,
    RollbackDecision,
    RollbackOutcome,
    SkipKind,
)
from budgetguard.schemas.slo import BudgetTier, ErrorBudgetStatus
from budgetguard.slo.budget import tier_severity
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)

RATE_LIMIT_HORIZON = timedelta(hours=24)
CHAT_CHANNELS = ("slack",)

_TIER_THRESHOLD_PCT = {BudgetTier.CRITICAL: 80, BudgetTier.EMERGENCY: 95}


def breach_reason(status: ErrorBudgetStatus) -> str:
    """Human-readable description of a Critical/Emergency breach."""
    threshold = _TIER_THRESHOLD_PCT.get(status.tier)
    label = status.tier.value.capitalize()
    if threshold is None:
        return f"{label}: Error budget {status.consumed_pct:.2f}% consumed"
    return f"{label}: Error budget {status.consumed_pct:.2f}% consumed (threshold: {threshold}%)"


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


class RollbackSafetyGate:
    """Layered safety checks in front of the rollback executor.

    Args:
        policy: Safety parameters.
        attempt_log: Persisted attempt history.
        environment: Environment the gate guards.
        notifier: Notification sink (optional).
        clock: Returns the current time (injected in tests).
    """

    def __init__(
        self,
        policy: RollbackPolicy,
        attempt_log: AttemptLog,
        environment: str,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.policy = policy
        self.attempt_log = attempt_log
        self.environment = environment
        self.notifier = notifier or Notifier()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = logger.bind(environment=environment)

    def _skip(
        self,
        status: ErrorBudgetStatus,
        kind: SkipKind,
        reason: str,
        now: datetime,
        *,
        severity: str | None = None,
        page: bool = False,
        requires_approval: bool = False,
    ) -> RollbackDecision:
        self.attempt_log.append(
            RollbackAttemptRecord(
                timestamp=now,
                environment=self.environment,
                trigger_tier=status.tier,
                outcome=RollbackOutcome.SKIPPED,
                reason=reason,
                dry_run=self.policy.dry_run,
            )
        )
        self._log.info("rollback_skipped", kind=kind.value, reason=reason, tier=status.tier.value)

        if severity is not None:
            context = {
                "environment": self.environment,
                "tier": status.tier.value,
                "consumed_pct": round(status.consumed_pct, 2),
            }
            kinds = None if page else CHAT_CHANNELS
            self.notifier.send(reason, severity, kinds=kinds, **context)

        return RollbackDecision(
            should_rollback=False,
            reason=reason,
            requires_approval=requires_approval,
            tier=status.tier,
            skip_kind=kind,
            dry_run=self.policy.dry_run,
        )

    def decide(self, status: ErrorBudgetStatus, *, now: datetime | None = None) -> RollbackDecision:
        """Decide whether to roll back for the given budget status.

        Args:
            status: Freshly computed error budget status.
            now: Decision time (defaults to the injected clock).

        Returns:
            The RollbackDecision. Non-proceeding decisions are already
            recorded in the attempt log.
        """
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        tier = status.tier
        severity = tier_severity(tier)

        with create_span(
            "budgetguard.rollback.decide",
            attributes={"environment": self.environment, "tier": tier.value},
        ) as span:
            decision = self._decide(status, now, severity)
            span.set_attribute("should_rollback", decision.should_rollback)
            if decision.skip_kind is not None:
                span.set_attribute("skip_kind", decision.skip_kind.value)
        return decision

    def _decide(self, status: ErrorBudgetStatus, now: datetime, severity: str) -> RollbackDecision:
        tier = status.tier
        policy = self.policy

        if tier == BudgetTier.OK:
            return self._skip(
                status,
                SkipKind.WITHIN_BUDGET,
                f"Error budget within acceptable limits: {status.consumed_pct:.2f}% consumed",
                now,
            )
        if tier == BudgetTier.WARNING:
            decision = self._skip(
                status,
                SkipKind.WITHIN_BUDGET,
                f"Warning threshold reached: {status.consumed_pct:.2f}% consumed "
                "(no rollback, monitoring only)",
                now,
            )
            self.notifier.send(
                f"Error budget {status.consumed_pct:.2f}% consumed. Monitoring closely.",
                "warning",
                kinds=CHAT_CHANNELS,
                environment=self.environment,
                tier=tier.value,
            )
            return decision

        reason = breach_reason(status)

        auto_enabled = (
            policy.auto_rollback_critical
            if tier == BudgetTier.CRITICAL
            else policy.auto_rollback_emergency
        )
        if not auto_enabled:
            return self._skip(
                status,
                SkipKind.AUTO_DISABLED,
                f"{reason} - {tier.value} threshold reached but auto-rollback disabled",
                now,
                severity=severity,
            )

        if not policy.enabled:
            return self._skip(
                status,
                SkipKind.DISABLED,
                f"{reason} - threshold breached but rollback is disabled",
                now,
                severity=severity,
            )

        for window in policy.blackout_windows:
            if window.contains(now):
                return self._skip(
                    status,
                    SkipKind.BLACKOUT,
                    f"blackout window active ({window.describe()}): {reason}",
                    now,
                    severity=severity,
                )

        horizon = now - max(RATE_LIMIT_HORIZON, timedelta(minutes=policy.cooldown_minutes))
        succeeded = [
            r
            for r in self.attempt_log.records(self.environment, since=horizon)
            if r.outcome == RollbackOutcome.SUCCEEDED
        ]

        cooldown = timedelta(minutes=policy.cooldown_minutes)
        if succeeded and cooldown > timedelta(0):
            last = succeeded[-1].timestamp
            if last <= now < last + cooldown:
                return self._skip(
                    status,
                    SkipKind.COOLDOWN,
                    f"cooldown: last successful rollback {_minutes(now - last)} minutes ago "
                    f"(cooldown {policy.cooldown_minutes} minutes)",
                    now,
                    severity=severity,
                )

        in_day = sum(1 for r in succeeded if r.timestamp >= now - RATE_LIMIT_HORIZON)
        if in_day >= policy.max_per_day:
            return self._skip(
                status,
                SkipKind.RATE_LIMITED,
                f"rate limit: {in_day} successful rollbacks in the last 24h "
                f"(max {policy.max_per_day})",
                now,
                severity=severity,
            )
        in_hour = sum(1 for r in succeeded if r.timestamp >= now - timedelta(hours=1))
        if in_hour >= policy.max_per_hour:
            return self._skip(
                status,
                SkipKind.RATE_LIMITED,
                f"rate limit: {in_hour} successful rollbacks in the last hour "
                f"(max {policy.max_per_hour})",
                now,
                severity=severity,
            )

        if policy.require_approval and not policy.dry_run:
            return self._skip(
                status,
                SkipKind.APPROVAL_REQUIRED,
                f"Rollback approval required: {reason}",
                now,
                severity=severity,
                page=True,
                requires_approval=True,
            )

        self._log.warning("rollback_cleared", reason=reason, dry_run=policy.dry_run)
        return RollbackDecision(
            should_rollback=True,
            reason=reason,
            tier=tier,
            dry_run=policy.dry_run,
        )


__all__ = ["RollbackSafetyGate", "breach_reason"]
