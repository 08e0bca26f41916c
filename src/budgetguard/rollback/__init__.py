"""Error-budget rollback: safety gate, attempt log, locking and execution."""

from __future__ import annotations

from budgetguard.rollback.executor import RollbackExecutor
from budgetguard.rollback.history import AttemptLog
from budgetguard.rollback.locking import remediation_lock
from budgetguard.rollback.monitor import MonitorReport, RollbackMonitor
from budgetguard.rollback.safety_gate import RollbackSafetyGate

__all__ = [
    "AttemptLog",
    "MonitorReport",
    "RollbackExecutor",
    "RollbackMonitor",
    "RollbackSafetyGate",
    "remediation_lock",
]
