"""Error budget calculation and tier classification.

The tier is a pure, monotonic function of the fraction of the budget
consumed over the SLO window. Burn rates over short windows are advisory:
they feed the time-to-exhaustion estimate and alert prioritisation, never
the tier.

Example:
    >>> classify_tier(1.5)
    <BudgetTier.EMERGENCY: 'emergency'>
    >>> format_hours(36.0)
    '1.5d'
"""

from __future__ import annotations

import structlog

from budgetguard.schemas.slo import (
    CRITICAL_THRESHOLD,
    EMERGENCY_THRESHOLD,
    WARNING_THRESHOLD,
    BudgetTier,
    ErrorBudgetStatus,
    SLISet,
)

logger = structlog.get_logger(__name__)

DEFAULT_BUDGET_WINDOW_HOURS = 720.0
"""30-day budget window."""

# 6h burn rate levels used for alert prioritisation
ELEVATED_BURN_RATE = 6.0
CRITICAL_BURN_RATE = 14.4

_PRECISION = 9

RECOMMENDED_ACTIONS: dict[BudgetTier, tuple[str, ...]] = {
    BudgetTier.OK: (),
    BudgetTier.WARNING: (
        "Review recent deployments",
        "Monitor closely",
        "Notify SRE team",
    ),
    BudgetTier.CRITICAL: (
        "Consider freezing deployments for 24h",
        "High priority review with SRE team",
        "Notify stakeholders",
    ),
    BudgetTier.EMERGENCY: (
        "Freeze all deployments immediately",
        "Escalate to engineering lead",
        "Emergency review meeting",
        "Notify all stakeholders",
    ),
}


def consumed_fraction(availability: float, budget_total: float) -> float:
    """Fraction of the error budget consumed, clamped to >= 0.

    Rounded to 1e-9 so boundary values such as 0.99905 against a 0.001
    budget land on 0.95 exactly.
    """
    if budget_total <= 0:
        raise ValueError(f"budget_total must be positive, got {budget_total}")
    return round(max(0.0, (1.0 - availability) / budget_total), _PRECISION)


def burn_rate(availability: float, budget_total: float) -> float:
    """Budget burn rate for one window: ``(1 - availability) / budget_total``."""
    return consumed_fraction(availability, budget_total)


def classify_tier(consumed: float) -> BudgetTier:
    """Map consumed fraction to a tier (lower bounds inclusive)."""
    if consumed >= EMERGENCY_THRESHOLD:
        return BudgetTier.EMERGENCY
    if consumed >= CRITICAL_THRESHOLD:
        return BudgetTier.CRITICAL
    if consumed >= WARNING_THRESHOLD:
        return BudgetTier.WARNING
    return BudgetTier.OK


def classify_burn_rate(rate: float) -> str:
    """Label a 6h burn rate as normal, elevated or critical."""
    if rate >= CRITICAL_BURN_RATE:
        return "critical"
    if rate >= ELEVATED_BURN_RATE:
        return "elevated"
    return "normal"


def time_to_exhaustion(
    remaining: float,
    rate: float,
    budget_total: float,
    budget_window_hours: float = DEFAULT_BUDGET_WINDOW_HOURS,
) -> float | None:
    """Hours until the budget is gone at the given burn rate.

    Returns:
        None when the burn rate is not positive, 0.0 when the budget is
        already exhausted.
    """
    if rate <= 0:
        return None
    if remaining <= 0:
        return 0.0
    budget_per_hour = budget_total / budget_window_hours
    return remaining / (rate * budget_per_hour)


def format_hours(hours: float | None) -> str:
    """Render an exhaustion estimate as minutes, hours or days."""
    if hours is None:
        return "N/A (no burn)"
    if hours < 1:
        return f"{int(hours * 60)}m"
    if hours < 24:
        return f"{hours:.2f}h"
    return f"{hours / 24:.1f}d"


def recommended_actions(tier: BudgetTier) -> list[str]:
    """Operator actions recommended for a tier."""
    return list(RECOMMENDED_ACTIONS[tier])


def tier_severity(tier: BudgetTier) -> str:
    """Notification severity for a tier."""
    if tier in (BudgetTier.CRITICAL, BudgetTier.EMERGENCY):
        return "critical"
    if tier == BudgetTier.WARNING:
        return "warning"
    return "info"


class ErrorBudgetCalculator:
    """Derives ErrorBudgetStatus from an SLISet.

    Args:
        budget_window_hours: Length of the SLO window in hours.
        short_window: Burn window reported as ``burn_rate_1h``.
        long_window: Burn window reported as ``burn_rate_6h`` and used for
            the time-to-exhaustion estimate.
    """

    def __init__(
        self,
        budget_window_hours: float = DEFAULT_BUDGET_WINDOW_HOURS,
        short_window: str = "1h",
        long_window: str = "6h",
    ) -> None:
        self.budget_window_hours = budget_window_hours
        self.short_window = short_window
        self.long_window = long_window

    def compute(self, sli_set: SLISet, budget_total: float) -> ErrorBudgetStatus:
        """Compute consumption, burn rates and tier.

        Args:
            sli_set: Indicators evaluated over the SLO window.
            budget_total: Allowed unavailability fraction (e.g. 0.001).

        Returns:
            A fresh ErrorBudgetStatus.

        Raises:
            ValueError: If budget_total is not positive.
        """
        consumed = consumed_fraction(sli_set.availability, budget_total)
        remaining = 1.0 - consumed

        burn_windows = sli_set.burn_window_availability
        burn_1h = burn_rate(burn_windows.get(self.short_window, 1.0), budget_total)
        burn_6h = burn_rate(burn_windows.get(self.long_window, 1.0), budget_total)

        tier = classify_tier(consumed)
        status = ErrorBudgetStatus(
            availability=sli_set.availability,
            error_rate=sli_set.error_rate,
            latency_p50=sli_set.latency_p50,
            latency_p95=sli_set.latency_p95,
            latency_p99=sli_set.latency_p99,
            throughput=sli_set.throughput,
            budget_total=budget_total,
            consumed_fraction=consumed,
            remaining_fraction=remaining,
            burn_rate_1h=burn_1h,
            burn_rate_6h=burn_6h,
            tier=tier,
            time_to_exhaustion_hours=time_to_exhaustion(
                remaining, burn_6h, budget_total, self.budget_window_hours
            ),
        )
        logger.info(
            "error_budget_computed",
            service=sli_set.service,
            consumed_pct=round(status.consumed_pct, 2),
            burn_rate_1h=burn_1h,
            burn_rate_6h=burn_6h,
            burn_level=classify_burn_rate(burn_6h),
            tier=tier.value,
        )
        return status


__all__ = [
    "CRITICAL_BURN_RATE",
    "DEFAULT_BUDGET_WINDOW_HOURS",
    "ELEVATED_BURN_RATE",
    "RECOMMENDED_ACTIONS",
    "ErrorBudgetCalculator",
    "burn_rate",
    "classify_burn_rate",
    "classify_tier",
    "consumed_fraction",
    "format_hours",
    "recommended_actions",
    "tier_severity",
    "time_to_exhaustion",
]
