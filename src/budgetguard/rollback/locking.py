"""Per-environment remediation lock.

At most one remediation action may run against a target environment at a
time. The lock is an advisory ``flock`` on ``<state_dir>/locks/<env>.lock``
acquired without blocking: a held lock means another actor is already
remediating, so the caller skips instead of waiting.
"""

from __future__ import annotations

import errno
import fcntl
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from budgetguard.errors import RemediationInProgressError

logger = structlog.get_logger(__name__)

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


def safe_environment_name(environment: str) -> str:
    """File-system safe form of an environment identifier."""
    name = _SAFE_NAME_RE.sub("_", environment)
    if not name or name.startswith("."):
        raise ValueError(f"Invalid environment identifier: {environment!r}")
    return name


def lock_path(state_dir: Path, environment: str) -> Path:
    """Path of the remediation lock for an environment."""
    return state_dir / "locks" / f"{safe_environment_name(environment)}.lock"


@contextmanager
def remediation_lock(state_dir: Path, environment: str) -> Iterator[Path]:
    """Hold the remediation lock for ``environment``.

    Released on normal exit and when the body raises.

    Args:
        state_dir: State directory.
        environment: Target environment.

    Yields:
        Path of the held lock file.

    Raises:
        RemediationInProgressError: If another process holds the lock.
    """
    path = lock_path(state_dir, environment)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)

    lock_fd = os.open(str(path), os.O_RDWR)
    lock_acquired = False
    try:
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            lock_acquired = True
        except OSError as e:
            if e.errno not in (errno.EAGAIN, errno.EWOULDBLOCK, errno.EACCES):
                raise
            logger.warning("remediation_lock_busy", environment=environment, lock_path=str(path))
            raise RemediationInProgressError(environment, str(path)) from e

        logger.debug("remediation_lock_acquired", environment=environment, lock_path=str(path))
        yield path

    finally:
        if lock_acquired:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            logger.debug("remediation_lock_released", environment=environment)
        os.close(lock_fd)


__all__ = ["lock_path", "remediation_lock", "safe_environment_name"]
