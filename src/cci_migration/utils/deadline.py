"""Cooperative wall-clock deadline for long-running phases.

Batch loops call ``check()`` between items. In-flight requests are never
interrupted; they are bounded by the HTTP client's own timeout.
"""

import time
from collections.abc import Callable

from cci_migration.client.exceptions import PhaseTimeoutError


class Deadline:
    """Tracks elapsed time against an optional timeout.

    Usage:
        deadline = Deadline(600, phase="execute")
        for item in items:
            deadline.check(completed=done)
            ...
    """

    def __init__(
        self,
        timeout: float | None,
        phase: str = "phase",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self.phase = phase
        self._clock = clock
        self.start_time = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self.start_time

    @property
    def remaining(self) -> float | None:
        if self.timeout is None:
            return None
        return max(self.timeout - self.elapsed, 0.0)

    @property
    def expired(self) -> bool:
        return self.timeout is not None and self.elapsed > self.timeout

    def check(self, completed: int = 0) -> None:
        """Raise PhaseTimeoutError if the deadline has passed."""
        if self.expired:
            raise PhaseTimeoutError(self.phase, float(self.timeout or 0), completed)
