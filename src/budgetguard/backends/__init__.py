"""Remediation backends: GitOps config repository and Argo CD controller."""

from __future__ import annotations

from budgetguard.backends.argocd import AppStatus, ArgoCDClient, HistoryEntry
from budgetguard.backends.gitops import GitCommit, GitOpsRepository, PromotionCommit, RevertResult

__all__ = [
    "AppStatus",
    "ArgoCDClient",
    "GitCommit",
    "GitOpsRepository",
    "HistoryEntry",
    "PromotionCommit",
    "RevertResult",
]
