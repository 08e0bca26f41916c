"""Environment promotion schemas.

This module defines Pydantic v2 schemas for promoting a release along the
fixed environment path dev -> staging -> canary -> production, the gate
rules owned by each edge, and the records produced by validation and
orchestration.

Key Components:
    Environment: Ordered deployment environments
    PromotionEdge: A directed pair of adjacent environments
    CanaryRequirement: Canary traffic/duration/success minima
    GateRuleSet: Thresholds and approvals required by an edge
    CheckStatus: Outcome of a single validation check
    ValidationResult: Individual check result
    PromotionReport: Ordered, exhaustive validation report
    PromotionState: Orchestrator lifecycle state
    ApprovalRecord: Human approval bound to a release reference
    PromotionOutcome: Result of an orchestrated promotion
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from budgetguard.errors import InvalidEdgeError
from budgetguard.schemas.rollback import ExecutionResult

# =============================================================================
# Enums
# =============================================================================


class Environment(str, Enum):
    """Deployment environments in promotion order.

    Examples:
        >>> Environment.STAGING.next()
        <Environment.CANARY: 'canary'>
        >>> Environment.PRODUCTION.next() is None
        True
    """

    DEV = "dev"
    STAGING = "staging"
    CANARY = "canary"
    PRODUCTION = "production"

    @property
    def order(self) -> int:
        """Position of the environment on the promotion path."""
        return list(Environment).index(self)

    def next(self) -> Environment | None:
        """Return the environment this one promotes into."""
        members = list(Environment)
        if self.order + 1 < len(members):
            return members[self.order + 1]
        return None


class CheckStatus(str, Enum):
    """Validation check outcome. Any FAIL blocks the promotion."""

    PASS = "pass"
    FAIL = "fail"


class PromotionState(str, Enum):
    """Promotion orchestrator lifecycle states.

    Transitions:
        REQUESTED -> VALIDATING -> REJECTED (terminal)
        VALIDATING -> AWAITING_APPROVAL (terminal until re-invoked)
        VALIDATING -> APPROVED -> PROMOTING -> VERIFYING
        VERIFYING -> COMPLETED | ROLLED_BACK
    """

    REQUESTED = "requested"
    VALIDATING = "validating"
    REJECTED = "rejected"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    PROMOTING = "promoting"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether an orchestrator invocation stops in this state."""
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        PromotionState.REJECTED,
        PromotionState.AWAITING_APPROVAL,
        PromotionState.COMPLETED,
        PromotionState.ROLLED_BACK,
        PromotionState.FAILED,
    }
)


# =============================================================================
# Edges and rules
# =============================================================================


class PromotionEdge(BaseModel):
    """A directed promotion between two adjacent environments.

    Use :meth:`resolve` to build an edge from user input; it raises
    InvalidEdgeError for unknown or non-adjacent environments.

    Attributes:
        from_env: Source environment.
        to_env: Target environment (must directly follow from_env).

    Examples:
        >>> PromotionEdge.resolve("staging", "canary").key
        'staging->canary'
        >>> PromotionEdge.resolve("dev", "production")
        Traceback (most recent call last):
            ...
        InvalidEdgeError: Invalid promotion edge dev -> production: ...
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    from_env: Environment
    to_env: Environment

    @classmethod
    def resolve(cls, from_env: str | Environment, to_env: str | Environment) -> PromotionEdge:
        """Validate and build an edge.

        Args:
            from_env: Source environment name.
            to_env: Target environment name.

        Returns:
            The validated PromotionEdge.

        Raises:
            InvalidEdgeError: If either environment is unknown or the pair is
                not adjacent in promotion order.
        """
        source_name = from_env.value if isinstance(from_env, Environment) else str(from_env)
        target_name = to_env.value if isinstance(to_env, Environment) else str(to_env)
        try:
            source = Environment(source_name)
            target = Environment(target_name)
        except ValueError as e:
            raise InvalidEdgeError(
                source_name,
                target_name,
                f"unknown environment (valid: {[env.value for env in Environment]})",
            ) from e

        if source.next() != target:
            raise InvalidEdgeError(source.value, target.value)
        return cls(from_env=source, to_env=target)

    @property
    def key(self) -> str:
        """Edge key used in configuration ("from->to")."""
        return f"{self.from_env.value}->{self.to_env.value}"


class CanaryRequirement(BaseModel):
    """Minimum canary exposure before promoting to production.

    Attributes:
        min_traffic_pct: Minimum share of traffic served by the canary (0-100).
        min_duration_minutes: Minimum time the canary release has been live.
        min_success_rate: Minimum canary success ratio (0-1).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_traffic_pct: float = Field(
        default=10.0,
        ge=0.0,
        le=100.0,
        description="Minimum canary traffic share in percent",
    )
    min_duration_minutes: int = Field(
        default=60,
        ge=0,
        description="Minimum canary age in minutes",
    )
    min_success_rate: float = Field(
        default=0.999,
        ge=0.0,
        le=1.0,
        description="Minimum canary success ratio",
    )


class GateRuleSet(BaseModel):
    """Thresholds and approval requirements for one promotion edge.

    Attributes:
        min_coverage: Minimum line coverage percentage.
        max_critical_vulns: Maximum critical vulnerabilities allowed.
        max_high_vulns: Maximum high vulnerabilities allowed.
        min_availability: Minimum from-env availability (0-1).
        max_error_rate: Maximum from-env error rate (0-1).
        max_latency_p95_ms: Maximum from-env p95 latency in milliseconds.
        max_error_budget_consumed: Maximum 30-day budget consumption (0-1+).
        required_approvers: Role -> number of approvals required.
        canary_requirement: Canary minima (only for canary -> production).
        require_e2e_tests: Whether end-to-end test results are required.
        min_quality_score: Minimum code quality score (0-100).
        min_stable_minutes: Minimum age of the from-env deployment.
        max_critical_alerts: Maximum firing critical alerts in from-env.

    Examples:
        >>> rules = default_rule_set(PromotionEdge.resolve("canary", "production"))
        >>> rules.min_coverage
        85.0
        >>> rules.required_approvers
        {'release-manager': 1, 'sre': 1}
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_coverage: float = Field(default=70.0, ge=0.0, le=100.0)
    max_critical_vulns: int = Field(default=0, ge=0)
    max_high_vulns: int = Field(default=5, ge=0)
    min_availability: float = Field(default=0.99, ge=0.0, le=1.0)
    max_error_rate: float = Field(default=0.01, ge=0.0, le=1.0)
    max_latency_p95_ms: float = Field(default=1000.0, gt=0.0)
    max_error_budget_consumed: float = Field(default=0.50, ge=0.0)
    required_approvers: dict[str, int] = Field(
        default_factory=dict,
        description="Role name -> required approval count",
    )
    canary_requirement: CanaryRequirement | None = None
    require_e2e_tests: bool = False
    min_quality_score: float = Field(default=0.0, ge=0.0, le=100.0)
    min_stable_minutes: int = Field(default=30, ge=0)
    max_critical_alerts: int = Field(default=0, ge=0)

    @property
    def requires_approval(self) -> bool:
        """Whether any approval is required for this edge."""
        return any(count > 0 for count in self.required_approvers.values())


_DEFAULT_RULES: dict[str, dict[str, Any]] = {
    "dev->staging": {
        "min_coverage": 70.0,
        "max_high_vulns": 5,
        "min_availability": 0.99,
        "max_error_rate": 0.01,
        "max_latency_p95_ms": 1000.0,
        "max_error_budget_consumed": 0.50,
        "min_stable_minutes": 30,
    },
    "staging->canary": {
        "min_coverage": 80.0,
        "max_high_vulns": 0,
        "min_availability": 0.995,
        "max_error_rate": 0.005,
        "max_latency_p95_ms": 800.0,
        "max_error_budget_consumed": 0.30,
        "required_approvers": {"release-manager": 1},
        "require_e2e_tests": True,
        "min_stable_minutes": 60,
    },
    "canary->production": {
        "min_coverage": 85.0,
        "max_high_vulns": 0,
        "min_availability": 0.999,
        "max_error_rate": 0.001,
        "max_latency_p95_ms": 500.0,
        "max_error_budget_consumed": 0.20,
        "required_approvers": {"release-manager": 1, "sre": 1},
        "canary_requirement": CanaryRequirement(),
        "require_e2e_tests": True,
        "min_stable_minutes": 60,
    },
}


def default_rule_set(edge: PromotionEdge) -> GateRuleSet:
    """Return the built-in rule set for an edge."""
    return GateRuleSet(**_DEFAULT_RULES[edge.key])


# =============================================================================
# Results
# =============================================================================


class ValidationResult(BaseModel):
    """Outcome of a single promotion check.

    Attributes:
        check_name: Check identifier (tests, coverage, security_scan, ...).
        status: PASS or FAIL.
        detail: Human-readable explanation with measured values and limits.
        data: Machine-readable measured values.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    check_name: str = Field(..., min_length=1)
    status: CheckStatus
    detail: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        """Whether the check passed."""
        return self.status == CheckStatus.PASS


class PromotionReport(BaseModel):
    """Exhaustive, ordered validation report for one promotion attempt.

    Attributes:
        from_env: Source environment.
        to_env: Target environment.
        results: Check results in evaluation order.
        generated_at: When validation finished (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    from_env: Environment
    to_env: Environment
    results: list[ValidationResult]
    generated_at: datetime

    @property
    def passed(self) -> bool:
        """True when every check passed."""
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> list[ValidationResult]:
        """Checks that failed, in evaluation order."""
        return [result for result in self.results if not result.passed]

    def get(self, check_name: str) -> ValidationResult | None:
        """Look up a check result by name."""
        for result in self.results:
            if result.check_name == check_name:
                return result
        return None


class ApprovalRecord(BaseModel):
    """A human approval for promoting a specific release along an edge.

    Approvals are bound to the release reference that was approved; a new
    release in the source environment needs new approvals.

    Attributes:
        edge: Edge key ("staging->canary").
        release_reference: Release (image tag) that was approved.
        approver: Identity of the approver.
        role: Role the approver acted in (release-manager, sre, ...).
        recorded_at: When the approval was recorded (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    edge: str
    release_reference: str = Field(..., min_length=1)
    approver: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    recorded_at: datetime


class PromotionOutcome(BaseModel):
    """Result of one orchestrator invocation.

    Attributes:
        from_env: Source environment.
        to_env: Target environment.
        state: State the invocation stopped in.
        reason: Human-readable explanation of the state.
        report: Validation report (absent only if validation never ran).
        release_reference: Release being promoted.
        approvals: Approvals counted for this release.
        missing_approvals: Role -> approvals still needed.
        verification: Post-promotion check results.
        rollback: Rollback execution result when verification failed.
        dry_run: Whether side effects were suppressed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    from_env: Environment
    to_env: Environment
    state: PromotionState
    reason: str
    report: PromotionReport | None = None
    release_reference: str | None = None
    approvals: list[ApprovalRecord] = Field(default_factory=list)
    missing_approvals: dict[str, int] = Field(default_factory=dict)
    verification: list[ValidationResult] = Field(default_factory=list)
    rollback: ExecutionResult | None = None
    dry_run: bool = False


__all__ = [
    "ApprovalRecord",
    "CanaryRequirement",
    "CheckStatus",
    "Environment",
    "GateRuleSet",
    "PromotionEdge",
    "PromotionOutcome",
    "PromotionReport",
    "PromotionState",
    "ValidationResult",
    "default_rule_set",
]
