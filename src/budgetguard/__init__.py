"""budgetguard - error-budget rollback and environment promotion gate.

Evaluates SLIs against SLOs, derives error budget consumption, decides and
executes automated rollback across a GitOps config repository and an Argo CD
controller, and gates promotion along dev -> staging -> canary -> production.
"""

from __future__ import annotations

__version__ = "0.1.0"
