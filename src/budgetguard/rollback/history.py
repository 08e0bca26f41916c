"""Append-only rollback attempt log.

One JSON-lines file per target environment under
``<state_dir>/attempts/<env>.jsonl``. The log is the only record of past
rollbacks, so cooldown and rate limits survive process restarts. Appends
and compaction are serialised with an exclusive ``flock`` on a sibling lock
file; reads take a shared lock.

Timestamps are kept non-decreasing: an append whose timestamp is earlier
than the last record (clock skew between hosts) is clamped to it.

Example:
    >>> log = AttemptLog(Path("/var/lib/budgetguard"))
    >>> log.append(record)
    >>> log.latest("production", outcome=RollbackOutcome.SUCCEEDED)
"""

from __future__ import annotations

import fcntl
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog
from pydantic import ValidationError

from budgetguard.rollback.locking import safe_environment_name
from budgetguard.schemas.rollback import RollbackAttemptRecord, RollbackOutcome

logger = structlog.get_logger(__name__)

DEFAULT_RETENTION_DAYS = 7


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class AttemptLog:
    """Durable, append-only RollbackAttemptRecord store keyed by environment.

    Args:
        state_dir: State directory; records live in ``state_dir/attempts``.
    """

    def __init__(self, state_dir: Path) -> None:
        self.root = Path(state_dir) / "attempts"

    def path_for(self, environment: str) -> Path:
        """JSON-lines file holding an environment's records."""
        return self.root / f"{safe_environment_name(environment)}.jsonl"

    @contextmanager
    def _locked(self, environment: str, exclusive: bool) -> Iterator[Path]:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(environment)
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

    def _read(self, path: Path) -> list[RollbackAttemptRecord]:
        if not path.exists():
            return []
        records: list[RollbackAttemptRecord] = []
        with path.open(encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(RollbackAttemptRecord.model_validate_json(line))
                except ValidationError as e:
                    logger.warning(
                        "attempt_log_corrupt_line",
                        path=str(path),
                        line=line_number,
                        error=str(e)[:200],
                    )
        return records

    def append(self, record: RollbackAttemptRecord) -> RollbackAttemptRecord:
        """Append a record, clamping its timestamp to the last one.

        Returns:
            The record as written.
        """
        record = record.model_copy(update={"timestamp": _aware(record.timestamp)})
        with self._locked(record.environment, exclusive=True) as path:
            existing = self._read(path)
            if existing and record.timestamp < existing[-1].timestamp:
                logger.warning(
                    "attempt_timestamp_clamped",
                    environment=record.environment,
                    requested=record.timestamp.isoformat(),
                    clamped_to=existing[-1].timestamp.isoformat(),
                )
                record = record.model_copy(update={"timestamp": existing[-1].timestamp})
            with path.open("a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
                f.flush()
                os.fsync(f.fileno())

        logger.info(
            "rollback_attempt_recorded",
            environment=record.environment,
            outcome=record.outcome.value,
            tier=record.trigger_tier.value,
            reason=record.reason,
        )
        return record

    def records(
        self,
        environment: str,
        *,
        since: datetime | None = None,
    ) -> list[RollbackAttemptRecord]:
        """All records for an environment, oldest first."""
        with self._locked(environment, exclusive=False) as path:
            records = self._read(path)
        if since is not None:
            cutoff = _aware(since)
            records = [r for r in records if r.timestamp >= cutoff]
        return records

    def latest(
        self,
        environment: str,
        *,
        outcome: RollbackOutcome | None = None,
    ) -> RollbackAttemptRecord | None:
        """Most recent record, optionally restricted to one outcome."""
        for record in reversed(self.records(environment)):
            if outcome is None or record.outcome == outcome:
                return record
        return None

    def count_since(
        self,
        environment: str,
        since: datetime,
        outcome: RollbackOutcome = RollbackOutcome.SUCCEEDED,
    ) -> int:
        """Number of records with ``outcome`` at or after ``since``."""
        return sum(1 for r in self.records(environment, since=since) if r.outcome == outcome)

    def prune(
        self,
        environment: str,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        *,
        now: datetime | None = None,
    ) -> int:
        """Drop records older than the retention period.

        Retention must cover the longest safety lookback (24 hours), so at
        least one day is always kept.

        Returns:
            Number of records removed.
        """
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        cutoff = _aware(now or datetime.now(timezone.utc)) - timedelta(days=retention_days)

        with self._locked(environment, exclusive=True) as path:
            records = self._read(path)
            kept = [r for r in records if r.timestamp >= cutoff]
            removed = len(records) - len(kept)
            if removed:
                tmp = path.with_suffix(".jsonl.tmp")
                with tmp.open("w", encoding="utf-8") as f:
                    for record in kept:
                        f.write(record.model_dump_json() + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, path)

        if removed:
            logger.info(
                "attempt_log_pruned",
                environment=environment,
                removed=removed,
                retention_days=retention_days,
            )
        return removed


__all__ = ["DEFAULT_RETENTION_DAYS", "AttemptLog"]
