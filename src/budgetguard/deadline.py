"""Monotonic deadlines bounding every wait.

Example:
    >>> deadline = Deadline(300)
    >>> deadline.bound(30)
    30.0
"""

from __future__ import annotations

import time
from collections.abc import Callable


class Deadline:
    """An overall time budget measured on a monotonic clock.

    Args:
        seconds: Total budget in seconds.
        clock: Monotonic clock (injected in tests).
        sleep: Sleep function (injected in tests).
    """

    def __init__(
        self,
        seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.seconds = float(seconds)
        self._clock = clock
        self._sleep = sleep
        self._expires_at = clock() + self.seconds

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def bound(self, seconds: float) -> float:
        """Clamp a wait to what is left of the deadline."""
        return min(float(seconds), self.remaining())

    def sleep(self, seconds: float) -> float:
        """Sleep for at most ``seconds`` within the deadline.

        Returns:
            The number of seconds actually slept.
        """
        duration = self.bound(seconds)
        if duration > 0:
            self._sleep(duration)
        return duration

    def child(self, seconds: float) -> Deadline:
        """A nested deadline that never outlives this one."""
        return Deadline(self.bound(seconds), clock=self._clock, sleep=self._sleep)


__all__ = ["Deadline"]
