"""Rollback decision, attempt record and execution result schemas.

Key Components:
    RollbackOutcome: Outcome of a rollback attempt (succeeded, failed, skipped)
    RollbackBackend: Remediation path (config repository, deployment controller)
    SkipKind: Why the safety gate did not clear a rollback
    RollbackAttemptRecord: Entry of the append-only attempt log
    RollbackDecision: Transient output of the safety gate
    TargetSelection: Optional explicit rollback targets
    BackendResult: Tagged outcome of one remediation path
    ExecutionResult: Combined outcome of a rollback execution
    BlackoutWindow: Recurring period during which automated rollback is blocked

The attempt log is the sole source of truth for cooldown and rate-limit
state; records are appended, never edited.
"""

from __future__ import annotations

from datetime import datetime, time
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from budgetguard.schemas.slo import BudgetTier

if TYPE_CHECKING:
    from typing_extensions import Self

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class RollbackOutcome(str, Enum):
    """Outcome of a rollback attempt or of a single backend path."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RollbackBackend(str, Enum):
    """Independent remediation paths of the rollback executor."""

    CONFIG_REPOSITORY = "config_repository"
    DEPLOYMENT_CONTROLLER = "deployment_controller"


class SkipKind(str, Enum):
    """Reason category for a rollback that was not executed.

    Attributes:
        WITHIN_BUDGET: Tier OK or Warning.
        AUTO_DISABLED: Tier eligible but its auto-rollback flag is off.
        DISABLED: Rollback globally disabled.
        BLACKOUT: Inside a configured blackout window.
        COOLDOWN: A successful rollback happened within the cooldown period.
        RATE_LIMITED: Daily or hourly rollback limit reached.
        APPROVAL_REQUIRED: Human approval needed before executing.
        LOCKED: Another actor is already remediating the environment.
    """

    WITHIN_BUDGET = "within_budget"
    AUTO_DISABLED = "auto_disabled"
    DISABLED = "disabled"
    BLACKOUT = "blackout"
    COOLDOWN = "cooldown"
    RATE_LIMITED = "rate_limited"
    APPROVAL_REQUIRED = "approval_required"
    LOCKED = "locked"


class RollbackAttemptRecord(BaseModel):
    """One entry of the append-only rollback attempt log.

    Attributes:
        record_id: Unique record identifier.
        timestamp: When the decision or outcome was recorded (UTC).
        environment: Target environment the record is keyed by.
        trigger_tier: Budget tier that triggered the evaluation.
        backends: Backends attempted (empty for skipped decisions).
        outcome: Succeeded, Failed or Skipped.
        reason: Human-readable reason.
        target_reference: Summary of the rollback target(s).
        backend_targets: Target reference per backend that reached its target.
        dry_run: Whether the attempt ran in dry-run mode.

    Examples:
        >>> record = RollbackAttemptRecord(
        ...     timestamp=datetime.now(timezone.utc),
        ...     environment="production",
        ...     trigger_tier=BudgetTier.EMERGENCY,
        ...     outcome=RollbackOutcome.SKIPPED,
        ...     reason="cooldown: last rollback 10 minutes ago",
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime
    environment: str = Field(..., min_length=1)
    trigger_tier: BudgetTier
    backends: list[RollbackBackend] = Field(default_factory=list)
    outcome: RollbackOutcome
    reason: str = ""
    target_reference: str | None = None
    backend_targets: dict[RollbackBackend, str] = Field(default_factory=dict)
    dry_run: bool = False


class RollbackDecision(BaseModel):
    """Output of the rollback safety gate. Computed once per evaluation.

    Attributes:
        should_rollback: Whether the executor should run now.
        reason: Human-readable reason suitable for notification channels.
        requires_approval: True when blocked only by the approval requirement.
        tier: Tier the decision was made for.
        skip_kind: Category of the skip, None when clearing the rollback.
        dry_run: Whether the executor should only simulate.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    should_rollback: bool
    reason: str
    requires_approval: bool = False
    tier: BudgetTier
    skip_kind: SkipKind | None = None
    dry_run: bool = False


class TargetSelection(BaseModel):
    """Optional explicit rollback targets.

    When a field is None the executor selects the target itself.

    Attributes:
        commit: Config repository commit to restore the environment path from.
        revision: Deployment controller history id to roll back to.
        wait_for_healthy: Block until the controller reports Synced/Healthy.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    commit: str | None = Field(default=None, pattern=r"^[0-9a-fA-F]{7,40}$")
    revision: int | None = Field(default=None, ge=0)
    wait_for_healthy: bool = True


class BackendResult(BaseModel):
    """Tagged outcome of one remediation path.

    Variants:
        succeeded: target reached (``no_op`` when it was already current)
        skipped(reason): path not executed (dry run, not configured)
        failed(kind, detail): path failed, ``failure_kind`` names the error

    Attributes:
        backend: Remediation path.
        outcome: Succeeded, Failed or Skipped.
        target_reference: Commit sha or revision the path targeted.
        failure_kind: Exception class name for failures.
        detail: Human-readable detail.
        no_op: True when the state already matched the target.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: RollbackBackend
    outcome: RollbackOutcome
    target_reference: str | None = None
    failure_kind: str | None = None
    detail: str = ""
    no_op: bool = False

    @classmethod
    def succeeded(
        cls,
        backend: RollbackBackend,
        target_reference: str | None,
        detail: str = "",
        *,
        no_op: bool = False,
    ) -> BackendResult:
        """Build a Succeeded result."""
        return cls(
            backend=backend,
            outcome=RollbackOutcome.SUCCEEDED,
            target_reference=target_reference,
            detail=detail,
            no_op=no_op,
        )

    @classmethod
    def skipped(
        cls,
        backend: RollbackBackend,
        reason: str,
        target_reference: str | None = None,
    ) -> BackendResult:
        """Build a Skipped result."""
        return cls(
            backend=backend,
            outcome=RollbackOutcome.SKIPPED,
            target_reference=target_reference,
            detail=reason,
        )

    @classmethod
    def failed(
        cls,
        backend: RollbackBackend,
        kind: str,
        detail: str,
        target_reference: str | None = None,
    ) -> BackendResult:
        """Build a Failed result."""
        return cls(
            backend=backend,
            outcome=RollbackOutcome.FAILED,
            target_reference=target_reference,
            failure_kind=kind,
            detail=detail,
        )


class ExecutionResult(BaseModel):
    """Combined outcome of a rollback execution.

    Attributes:
        environment: Environment that was remediated.
        outcome: Succeeded if every attempted path succeeded, Skipped if no
            path ran (dry run, nothing configured), Failed otherwise.
        backends: Per-path results in execution order.
        reason: Human-readable summary.
        health_status: Controller health after the action (if available).
        sync_status: Controller sync state after the action (if available).
        current_revision: Controller revision after the action (if available).
        dry_run: Whether this was a simulation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: str
    outcome: RollbackOutcome
    backends: list[BackendResult] = Field(default_factory=list)
    reason: str = ""
    health_status: str | None = None
    sync_status: str | None = None
    current_revision: str | None = None
    dry_run: bool = False

    def for_backend(self, backend: RollbackBackend) -> BackendResult | None:
        """Return the result for a given backend, if it was attempted."""
        for result in self.backends:
            if result.backend == backend:
                return result
        return None


class BlackoutWindow(BaseModel):
    """Recurring period during which automated rollback is not allowed.

    ``end`` earlier than ``start`` denotes a window spanning midnight; the
    window then belongs to the day it starts on.

    Attributes:
        days: Weekdays (mon..sun) the window starts on.
        start: Local start time (inclusive).
        end: Local end time (exclusive).
        timezone: IANA timezone name the times are expressed in.

    Examples:
        >>> window = BlackoutWindow(days=["fri"], start="18:00", end="23:59")
        >>> window.contains(datetime(2026, 10, 16, 19, 0, tzinfo=timezone.utc))
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    days: list[str] = Field(default_factory=lambda: list(WEEKDAYS), min_length=1)
    start: time
    end: time
    timezone: str = "UTC"

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: list[str]) -> list[str]:
        """Validate weekday names."""
        normalized = [d.lower()[:3] for d in v]
        invalid = set(normalized) - set(WEEKDAYS)
        if invalid:
            raise ValueError(f"Invalid weekdays: {sorted(invalid)}. Valid: {list(WEEKDAYS)}")
        return normalized

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_clock(cls, v: object) -> object:
        """Accept YAML 1.1 base-60 integers (unquoted 18:00 loads as 1080)."""
        if isinstance(v, int) and not isinstance(v, bool):
            if v < 24 * 60:
                return time(v // 60, v % 60)
            return time(v // 3600 % 24, v // 60 % 60, v % 60)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone name resolves."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_span(self) -> Self:
        """Reject empty windows where start and end are the same time."""
        if self.start == self.end:
            raise ValueError(
                f"Blackout window start and end must differ (both {self.start.strftime('%H:%M')})"
            )
        return self

    def contains(self, moment: datetime) -> bool:
        """Check whether an aware datetime falls inside the window."""
        local = moment.astimezone(ZoneInfo(self.timezone))
        current = local.time()
        weekday = WEEKDAYS[local.weekday()]
        previous_day = WEEKDAYS[(local.weekday() - 1) % 7]

        if self.start <= self.end:
            return weekday in self.days and self.start <= current < self.end

        # Window spans midnight
        if weekday in self.days and current >= self.start:
            return True
        return previous_day in self.days and current < self.end

    def describe(self) -> str:
        """Human-readable description of the window."""
        return (
            f"{','.join(self.days)} {self.start.strftime('%H:%M')}-"
            f"{self.end.strftime('%H:%M')} {self.timezone}"
        )


__all__ = [
    "WEEKDAYS",
    "BackendResult",
    "BlackoutWindow",
    "ExecutionResult",
    "RollbackAttemptRecord",
    "RollbackBackend",
    "RollbackDecision",
    "RollbackOutcome",
    "SkipKind",
    "TargetSelection",
]
