"""Evaluate a configured service and derive its error budget status."""

from __future__ import annotations

from budgetguard.schemas.config import ServiceConfig
from budgetguard.schemas.slo import ErrorBudgetStatus, SLISet
from budgetguard.slo.budget import ErrorBudgetCalculator
from budgetguard.slo.evaluator import MetricsBackend, SLIEvaluator


def assess_budget(
    service: ServiceConfig,
    backend: MetricsBackend,
    *,
    namespace: str | None = None,
    window: str | None = None,
) -> tuple[SLISet, ErrorBudgetStatus]:
    """Evaluate ``service`` over its SLO window and compute the budget.

    Args:
        service: Service settings (name, window, budget, burn windows).
        backend: Metrics backend to query.
        namespace: Namespace override (defaults to the service's).
        window: Window override (defaults to ``service.slo_window``).

    Raises:
        BackendUnavailableError: Metrics backend unreachable.
        MetricsQueryError: A query was rejected.
        NoDataError: The service reported no samples.
    """
    sli_set = SLIEvaluator(backend).evaluate(
        service.name,
        window or service.slo_window,
        namespace=namespace if namespace is not None else service.namespace,
        burn_windows=service.burn_windows,
    )
    calculator = ErrorBudgetCalculator(
        budget_window_hours=service.budget_window_hours,
        short_window=service.burn_windows[0],
        long_window=service.burn_windows[-1],
    )
    return sli_set, calculator.compute(sli_set, service.error_budget)


__all__ = ["assess_budget"]
