"""Pydantic schemas for budgetguard.

Submodules:
    slo: SLI values, error budget status, objectives and compliance
    rollback: Attempt records, decisions and execution results
    promotion: Environments, edges, gate rules and promotion results
    config: Configuration models and YAML loader
"""

from __future__ import annotations

from budgetguard.schemas.config import GuardConfig, RollbackPolicy, load_config
from budgetguard.schemas.promotion import (
    Environment,
    GateRuleSet,
    PromotionEdge,
    PromotionOutcome,
    PromotionReport,
    PromotionState,
    ValidationResult,
)
from budgetguard.schemas.rollback import (
    BackendResult,
    ExecutionResult,
    RollbackAttemptRecord,
    RollbackBackend,
    RollbackDecision,
    RollbackOutcome,
    TargetSelection,
)
from budgetguard.schemas.slo import SLI, BudgetTier, ErrorBudgetStatus, SLISet

__all__ = [
    "SLI",
    "BackendResult",
    "BudgetTier",
    "Environment",
    "ErrorBudgetStatus",
    "ExecutionResult",
    "GateRuleSet",
    "GuardConfig",
    "PromotionEdge",
    "PromotionOutcome",
    "PromotionReport",
    "PromotionState",
    "RollbackAttemptRecord",
    "RollbackBackend",
    "RollbackDecision",
    "RollbackOutcome",
    "RollbackPolicy",
    "SLISet",
    "TargetSelection",
    "ValidationResult",
    "load_config",
]
