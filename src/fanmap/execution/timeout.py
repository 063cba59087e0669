"""Per-item deadline tracking.

Worker execution cannot be interrupted from the coordinating thread, so
deadlines are enforced from outside: every dispatch opens a deadline for the
busy worker, the dispatcher sleeps no longer than the nearest one, and on
expiry the pool tears the worker down.

Example:
    >>> tracker = DeadlineTracker(timeout_seconds=0.5)
    >>> tracker.open(worker_id=0, index=3)
    >>> tracker.wait_budget(default=None) <= 0.5
    True
    >>> tracker.expired()
    []
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class DeadlineContext:
    """Deadline for one in-flight item.

    Attributes:
        index: Item the deadline applies to
        deadline: Absolute deadline timestamp (monotonic clock)
        timeout_seconds: Original timeout value in seconds
        start_time: When the item was dispatched
    """

    index: int
    deadline: float
    timeout_seconds: float
    start_time: float = field(default_factory=time.monotonic)

    def remaining(self) -> float:
        """Seconds left; negative once expired."""
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        """Seconds since dispatch."""
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return time.monotonic() >= self.deadline


class DeadlineTracker:
    """Deadlines keyed by worker id.

    With ``timeout_seconds=None`` the tracker is inert: nothing is opened and
    nothing ever expires.
    """

    def __init__(self, timeout_seconds: float | None):
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self._deadlines: dict[int, DeadlineContext] = {}

    @property
    def enabled(self) -> bool:
        return self.timeout_seconds is not None

    def open(self, worker_id: int, index: int) -> None:
        if self.timeout_seconds is None:
            return
        now = time.monotonic()
        self._deadlines[worker_id] = DeadlineContext(
            index=index,
            deadline=now + self.timeout_seconds,
            timeout_seconds=self.timeout_seconds,
            start_time=now,
        )

    def close(self, worker_id: int) -> DeadlineContext | None:
        return self._deadlines.pop(worker_id, None)

    def get(self, worker_id: int) -> DeadlineContext | None:
        return self._deadlines.get(worker_id)

    def expired(self) -> list[tuple[int, DeadlineContext]]:
        """(worker_id, deadline) pairs past their deadline, oldest first."""
        now = time.monotonic()
        hits = [(wid, ctx) for wid, ctx in self._deadlines.items() if now >= ctx.deadline]
        return sorted(hits, key=lambda pair: pair[1].deadline)

    def wait_budget(self, default: float | None) -> float | None:
        """How long the dispatcher may block before the next deadline."""
        if not self._deadlines:
            return default
        nearest = max(0.0, min(ctx.remaining() for ctx in self._deadlines.values()))
        return nearest if default is None else min(nearest, default)


__all__ = ["DeadlineContext", "DeadlineTracker"]
