"""Service-level indicator and error budget schemas.

This module defines Pydantic v2 schemas for the values produced by the SLI
evaluator and the error budget calculator.

Key Components:
    SLI: A single measured indicator value over a window
    SLISet: All indicators evaluated for one service over one window
    BudgetTier: Severity tier derived from error budget consumption
    ErrorBudgetStatus: Budget consumption, burn rates and tier
    SLOTargets: Per-indicator objectives used by compliance checks
    ComplianceCheck / ComplianceReport: Result of comparing SLIs to targets

All models are immutable: a status is recomputed on every evaluation cycle
and replaced, never mutated.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Tier boundaries on consumed_fraction (lower bound inclusive)
WARNING_THRESHOLD = 0.50
CRITICAL_THRESHOLD = 0.80
EMERGENCY_THRESHOLD = 0.95


class BudgetTier(str, Enum):
    """Severity tier derived from 30-day error budget consumption.

    Attributes:
        OK: Less than 50% of the budget consumed.
        WARNING: 50% to <80% consumed. Monitoring only.
        CRITICAL: 80% to <95% consumed. Rollback eligible if enabled.
        EMERGENCY: 95% or more consumed. Rollback eligible if enabled.

    Examples:
        >>> BudgetTier.EMERGENCY.value
        'emergency'
        >>> BudgetTier.CRITICAL.rank > BudgetTier.WARNING.rank
        True
    """

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        """Ordinal position of the tier (OK=0 ... EMERGENCY=3)."""
        return list(BudgetTier).index(self)

    @property
    def exit_code(self) -> int:
        """Result code for check commands (0 nominal, 1 warning, 2 critical+)."""
        if self in (BudgetTier.CRITICAL, BudgetTier.EMERGENCY):
            return 2
        if self == BudgetTier.WARNING:
            return 1
        return 0


class SLI(BaseModel):
    """A single Service-Level Indicator value.

    Attributes:
        name: Indicator name (availability, error_rate, latency_p95, ...).
        value: Measured value. Ratios are 0-1, latencies are seconds.
        window: Evaluation window in Prometheus duration syntax (e.g. "30d").
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    value: float
    window: str = Field(..., min_length=1)


class SLISet(BaseModel):
    """All indicators evaluated for one service over one window.

    Latency percentiles and ratios are computed over the same window so burn
    rate comparisons stay consistent.

    Attributes:
        service: Service label the queries were scoped to.
        namespace: Optional namespace label (environment scoping).
        window: Evaluation window for the primary indicators.
        availability: Fraction of non-error (2xx/3xx) requests.
        error_rate: Fraction of 4xx/5xx requests.
        latency_p50: Median latency in seconds.
        latency_p95: 95th percentile latency in seconds.
        latency_p99: 99th percentile latency in seconds.
        throughput: Requests per second averaged over the window.
        burn_window_availability: Availability per short burn-rate window.
        has_traffic: False when the set was synthesised for zero traffic.
        evaluated_at: When the queries were issued (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    service: str
    namespace: str | None = None
    window: str
    availability: float = Field(..., ge=0.0, le=1.0)
    error_rate: float = Field(..., ge=0.0, le=1.0)
    latency_p50: float = Field(default=0.0, ge=0.0)
    latency_p95: float = Field(default=0.0, ge=0.0)
    latency_p99: float = Field(default=0.0, ge=0.0)
    throughput: float = Field(default=0.0, ge=0.0)
    burn_window_availability: dict[str, float] = Field(default_factory=dict)
    has_traffic: bool = True
    evaluated_at: datetime

    def as_slis(self) -> list[SLI]:
        """Return the primary indicators as individual SLI values."""
        return [
            SLI(name="availability", value=self.availability, window=self.window),
            SLI(name="error_rate", value=self.error_rate, window=self.window),
            SLI(name="latency_p50", value=self.latency_p50, window=self.window),
            SLI(name="latency_p95", value=self.latency_p95, window=self.window),
            SLI(name="latency_p99", value=self.latency_p99, window=self.window),
            SLI(name="throughput", value=self.throughput, window=self.window),
        ] + [
            SLI(name="availability", value=value, window=window)
            for window, value in self.burn_window_availability.items()
        ]


class ErrorBudgetStatus(BaseModel):
    """Error budget consumption, burn rates and severity tier.

    ``consumed_fraction = max(0, (1 - availability) / budget_total)``. The tier
    is a function of consumed_fraction alone; burn rates are advisory.

    Attributes:
        availability: 30-day availability the budget was derived from.
        error_rate: Error rate over the same window.
        latency_p50: Median latency (seconds).
        latency_p95: 95th percentile latency (seconds).
        latency_p99: 99th percentile latency (seconds).
        throughput: Requests per second.
        budget_total: Allowed unavailability fraction (e.g. 0.001 for 99.9%).
        consumed_fraction: Fraction of the budget consumed (>= 0).
        remaining_fraction: 1 - consumed_fraction (negative when overspent).
        burn_rate_1h: Burn rate over the last hour.
        burn_rate_6h: Burn rate over the last six hours.
        tier: Severity tier derived from consumed_fraction.
        time_to_exhaustion_hours: Hours until the budget is gone at the 6h
            burn rate (0 when exhausted, None when not burning).

    Examples:
        >>> status.consumed_fraction  # doctest: +SKIP
        1.5
        >>> status.tier  # doctest: +SKIP
        <BudgetTier.EMERGENCY: 'emergency'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    availability: float = Field(..., ge=0.0, le=1.0)
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    latency_p50: float = Field(default=0.0, ge=0.0)
    latency_p95: float = Field(default=0.0, ge=0.0)
    latency_p99: float = Field(default=0.0, ge=0.0)
    throughput: float = Field(default=0.0, ge=0.0)
    budget_total: float = Field(..., gt=0.0, le=1.0)
    consumed_fraction: float = Field(..., ge=0.0)
    remaining_fraction: float
    burn_rate_1h: float = Field(default=0.0, ge=0.0)
    burn_rate_6h: float = Field(default=0.0, ge=0.0)
    tier: BudgetTier
    time_to_exhaustion_hours: float | None = None

    @property
    def consumed_pct(self) -> float:
        """Consumed fraction as a percentage."""
        return self.consumed_fraction * 100.0


class SLOTargets(BaseModel):
    """Objectives for each indicator.

    Defaults follow the reference service objectives: 99.9% availability,
    0.1% error rate, 200/500/1000 ms p50/p95/p99 latency and 100 rps.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    availability: float = Field(default=0.999, gt=0.0, le=1.0)
    error_rate: float = Field(default=0.001, ge=0.0, le=1.0)
    latency_p50_ms: float = Field(default=200.0, gt=0.0)
    latency_p95_ms: float = Field(default=500.0, gt=0.0)
    latency_p99_ms: float = Field(default=1000.0, gt=0.0)
    throughput_rps: float = Field(default=100.0, ge=0.0)


class ComplianceCheck(BaseModel):
    """Comparison of one indicator against its objective.

    Attributes:
        name: Indicator name.
        actual: Measured value (ratios 0-1, latencies in ms, throughput in rps).
        target: Objective value in the same unit.
        met: Whether the objective is met.
        advisory: Advisory checks never count as violations.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    actual: float
    target: float
    met: bool
    advisory: bool = False


class ComplianceReport(BaseModel):
    """Result of an SLO compliance check.

    Attributes:
        service: Service that was checked.
        window: Evaluation window.
        checks: Individual indicator comparisons.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    service: str
    window: str
    checks: list[ComplianceCheck]

    @property
    def violations(self) -> list[ComplianceCheck]:
        """Non-advisory checks whose objective is not met."""
        return [c for c in self.checks if not c.met and not c.advisory]

    @property
    def compliant(self) -> bool:
        """True when every non-advisory objective is met."""
        return not self.violations


__all__ = [
    "CRITICAL_THRESHOLD",
    "EMERGENCY_THRESHOLD",
    "WARNING_THRESHOLD",
    "SLI",
    "BudgetTier",
    "ComplianceCheck",
    "ComplianceReport",
    "ErrorBudgetStatus",
    "SLISet",
    "SLOTargets",
]
