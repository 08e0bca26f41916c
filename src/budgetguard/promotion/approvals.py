"""Approval store for promotion edges.

Approvals are recorded out of band (``budgetguard promote approve``) and
bound to the release reference that was approved. The orchestrator never
waits for them: it stops in AwaitingApproval and re-checks on the next
invocation.

Records are JSON lines under ``<state_dir>/approvals/<from>-to-<to>.jsonl``,
appended under an exclusive ``flock``.
"""

from __future__ import annotations

import fcntl
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import ValidationError

from budgetguard.schemas.promotion import ApprovalRecord, PromotionEdge

logger = structlog.get_logger(__name__)


class ApprovalStore:
    """Durable approvals keyed by promotion edge.

    Args:
        state_dir: State directory; records live in ``state_dir/approvals``.
    """

    def __init__(self, state_dir: Path) -> None:
        self.root = Path(state_dir) / "approvals"

    def path_for(self, edge: PromotionEdge) -> Path:
        return self.root / f"{edge.from_env.value}-to-{edge.to_env.value}.jsonl"

    @contextmanager
    def _locked(self, edge: PromotionEdge, exclusive: bool) -> Iterator[Path]:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(edge)
        mutex = path.with_suffix(".jsonl.lock")
        mutex.touch(exist_ok=True)
        fd = os.open(str(mutex), os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield path
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _read(self, path: Path) -> list[ApprovalRecord]:
        if not path.exists():
            return []
        records = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                records.append(ApprovalRecord.model_validate_json(line))
            except ValidationError as e:
                logger.warning("approval_corrupt_line", path=str(path), error=str(e)[:200])
        return records

    def record(
        self,
        edge: PromotionEdge,
        release_reference: str,
        approver: str,
        role: str,
        *,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        """Record an approval. Re-approving the same release is a no-op.

        Returns:
            The stored (or already existing) ApprovalRecord.
        """
        with self._locked(edge, exclusive=True) as path:
            for existing in self._read(path):
                if (
                    existing.release_reference == release_reference
                    and existing.approver == approver
                    and existing.role == role
                ):
                    logger.info("approval_already_recorded", edge=edge.key, approver=approver)
                    return existing

            record = ApprovalRecord(
                edge=edge.key,
                release_reference=release_reference,
                approver=approver,
                role=role,
                recorded_at=now or datetime.now(timezone.utc),
            )
            with path.open("a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
                f.flush()
                os.fsync(f.fileno())

        logger.info(
            "approval_recorded",
            edge=edge.key,
            release=release_reference,
            approver=approver,
            role=role,
        )
        return record

    def approvals(self, edge: PromotionEdge, release_reference: str) -> list[ApprovalRecord]:
        """Approvals for one release. Each approver counts once, for the
        first role they approved in."""
        with self._locked(edge, exclusive=False) as path:
            records = self._read(path)
        seen: set[str] = set()
        counted = []
        for record in records:
            if record.release_reference != release_reference or record.approver in seen:
                continue
            seen.add(record.approver)
            counted.append(record)
        return counted

    def missing(
        self,
        edge: PromotionEdge,
        release_reference: str,
        required: dict[str, int],
    ) -> dict[str, int]:
        """Role -> approvals still needed for ``release_reference``."""
        have: dict[str, int] = {}
        for record in self.approvals(edge, release_reference):
            have[record.role] = have.get(record.role, 0) + 1
        return {
            role: count - have.get(role, 0)
            for role, count in required.items()
            if count - have.get(role, 0) > 0
        }


__all__ = ["ApprovalStore"]
