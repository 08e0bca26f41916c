"""SLI evaluation, error budget calculation and SLO compliance."""

from __future__ import annotations

from budgetguard.slo.assessment import assess_budget
from budgetguard.slo.budget import ErrorBudgetCalculator, classify_tier
from budgetguard.slo.compliance import build_slo_report, check_compliance
from budgetguard.slo.evaluator import MetricsBackend, PrometheusBackend, SLIEvaluator

__all__ = [
    "ErrorBudgetCalculator",
    "MetricsBackend",
    "PrometheusBackend",
    "SLIEvaluator",
    "assess_budget",
    "build_slo_report",
    "check_compliance",
    "classify_tier",
]
