"""Environment promotion gate: validation, approvals and orchestration."""

from __future__ import annotations

from budgetguard.promotion.approvals import ApprovalStore
from budgetguard.promotion.artifacts import ArtifactError, PipelineArtifacts, parse_trivy_output
from budgetguard.promotion.orchestrator import PromotionOrchestrator
from budgetguard.promotion.validator import CHECK_ORDER, PromotionValidator

__all__ = [
    "CHECK_ORDER",
    "ApprovalStore",
    "ArtifactError",
    "PipelineArtifacts",
    "PromotionOrchestrator",
    "PromotionValidator",
    "parse_trivy_output",
]
