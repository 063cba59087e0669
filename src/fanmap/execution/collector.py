"""Result Collector - ordered assembly of out-of-order completions.

ARCHITECTURE
────────────
::

    worker completions (any order)          caller
          │  collect(slot)                    │  finalize()
          ▼                                   ▼
    ┌───────────────────────────────────────────────────┐
    │ ResultCollector(n)                                │
    │   slots[0..n-1]  pre-allocated, empty             │
    │   each index written exactly once                 │
    │   Condition: wakes finalize() when full/aborted   │
    └───────────────────────────────────────────────────┘
                          │
                          ▼
                RunResult (submission order)

Completion order never leaks into ``RunResult``: entry *i* is always the
outcome of input *i*.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, overload

from fanmap.core.errors import (
    AbortedError,
    DuplicateResultError,
    FanmapError,
    NotRunError,
    RunAbortedError,
)
from fanmap.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResultSlot:
    """Per-index container for an item's outcome.

    An empty slot has ``completed=False``.  A completed slot holds exactly one
    of ``value`` / ``error``.
    """

    index: int
    value: Any = None
    error: FanmapError | None = None
    completed: bool = False
    attempts: int = 0
    worker_id: int | None = None
    duration_seconds: float | None = None

    @classmethod
    def success(
        cls,
        index: int,
        value: Any,
        *,
        attempts: int = 1,
        worker_id: int | None = None,
        duration_seconds: float | None = None,
    ) -> ResultSlot:
        return cls(index, value, None, True, attempts, worker_id, duration_seconds)

    @classmethod
    def failure(
        cls,
        index: int,
        error: FanmapError,
        *,
        attempts: int = 1,
        worker_id: int | None = None,
        duration_seconds: float | None = None,
    ) -> ResultSlot:
        return cls(index, None, error, True, attempts, worker_id, duration_seconds)

    @property
    def ok(self) -> bool:
        """True if the item completed with a value."""
        return self.completed and self.error is None

    @property
    def outcome(self) -> Any:
        """The value, the error, or ``NotRunError`` for an empty slot."""
        if not self.completed:
            return NotRunError(self.index)
        return self.error if self.error is not None else self.value


class RunResult(Sequence[Any]):
    """The ordered outcome of a run.

    Always has one entry per submitted item; each entry is either the task's
    return value or a typed error.  Entries for items that never ran are
    ``NotRunError`` and their indices are listed in ``unfinished``.

    Example:
        >>> result = run([4, 9], math.sqrt)
        >>> list(result)
        [2.0, 3.0]
        >>> result.ok
        True
    """

    def __init__(
        self,
        slots: Sequence[ResultSlot],
        *,
        aborted: bool = False,
        abort_reason: str | None = None,
        run_id: str | None = None,
    ):
        self._slots = tuple(slots)
        self.aborted = aborted
        self.abort_reason = abort_reason
        self.run_id = run_id

    @overload
    def __getitem__(self, index: int) -> Any: ...

    @overload
    def __getitem__(self, index: slice) -> list[Any]: ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [slot.outcome for slot in self._slots[index]]
        return self._slots[index].outcome

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[Any]:
        return (slot.outcome for slot in self._slots)

    @property
    def slots(self) -> tuple[ResultSlot, ...]:
        return self._slots

    @property
    def ok(self) -> bool:
        """True if every item completed with a value."""
        return not self.aborted and all(slot.ok for slot in self._slots)

    @property
    def unfinished(self) -> list[int]:
        """Indices that never produced an outcome (empty or aborted in flight)."""
        return [
            slot.index
            for slot in self._slots
            if not slot.completed or isinstance(slot.error, AbortedError)
        ]

    def values(self) -> list[Any]:
        """Values of successful items, in submission order."""
        return [slot.value for slot in self._slots if slot.ok]

    def errors(self) -> dict[int, FanmapError]:
        """Index → error for every failed item."""
        return {slot.index: slot.error for slot in self._slots if slot.error is not None}

    def raise_on_error(self) -> list[Any]:
        """Return the plain value list, or raise the first failure.

        Raises:
            RunAbortedError: If the run was aborted
            FanmapError: The error of the first failed item
        """
        if self.aborted:
            raise RunAbortedError(self.abort_reason or "aborted", self.unfinished)
        for slot in self._slots:
            if slot.error is not None:
                raise slot.error
            if not slot.completed:
                raise NotRunError(slot.index)
        return [slot.value for slot in self._slots]

    def to_dict(self) -> dict[str, Any]:
        """Summary for logging / CLI output."""
        return {
            "run_id": self.run_id,
            "total": len(self._slots),
            "succeeded": sum(1 for s in self._slots if s.ok),
            "failed": len(self.errors()),
            "unfinished": self.unfinished,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }

    def __repr__(self) -> str:
        return (
            f"RunResult(total={len(self._slots)}, ok={self.ok}, "
            f"aborted={self.aborted}, unfinished={len(self.unfinished)})"
        )


class ResultCollector:
    """Thread-safe, index-addressed store for N result slots.

    ``collect()`` may be called from any thread; ``finalize()`` blocks until
    every slot is populated or ``abort()`` is called.
    """

    def __init__(self, size: int, run_id: str | None = None):
        if size < 0:
            raise ValueError(f"size must be non-negative, got {size}")
        self._size = size
        self._run_id = run_id
        self._slots: list[ResultSlot] = [ResultSlot(index=i) for i in range(size)]
        self._filled = 0
        self._aborted = False
        self._abort_reason: str | None = None
        self._cond = threading.Condition()

    @property
    def size(self) -> int:
        return self._size

    @property
    def filled(self) -> int:
        with self._cond:
            return self._filled

    @property
    def is_complete(self) -> bool:
        with self._cond:
            return self._filled == self._size

    @property
    def aborted(self) -> bool:
        with self._cond:
            return self._aborted

    def collect(self, slot: ResultSlot) -> None:
        """Store a completed slot at its index.

        Raises:
            IndexError: If the index is outside the submission
            DuplicateResultError: If the index was already populated
        """
        if not 0 <= slot.index < self._size:
            raise IndexError(f"slot index {slot.index} out of range [0, {self._size})")
        if not slot.completed:
            raise ValueError(f"slot {slot.index} is not completed")
        with self._cond:
            if self._slots[slot.index].completed:
                raise DuplicateResultError(slot.index)
            self._slots[slot.index] = slot
            self._filled += 1
            if self._filled == self._size:
                self._cond.notify_all()

    def is_filled(self, index: int) -> bool:
        with self._cond:
            return self._slots[index].completed

    def pending(self) -> list[int]:
        """Indices not yet populated."""
        with self._cond:
            return [s.index for s in self._slots if not s.completed]

    def abort(self, reason: str) -> None:
        """Mark the run aborted and wake any ``finalize()`` waiters."""
        with self._cond:
            if self._aborted:
                return
            self._aborted = True
            self._abort_reason = reason
            self._cond.notify_all()
        logger.warning("collector.aborted", run_id=self._run_id, reason=reason)

    def finalize(self, timeout: float | None = None) -> RunResult:
        """Wait for all slots (or an abort) and assemble the ordered result.

        Args:
            timeout: Max seconds to wait; None waits indefinitely

        Raises:
            TimeoutError: If the wait times out
        """
        with self._cond:
            done = self._cond.wait_for(
                lambda: self._filled == self._size or self._aborted,
                timeout=timeout,
            )
            if not done:
                raise TimeoutError(
                    f"{self._size - self._filled} of {self._size} results still pending after {timeout}s"
                )
            return RunResult(
                self._slots,
                aborted=self._aborted,
                abort_reason=self._abort_reason,
                run_id=self._run_id,
            )


__all__ = ["ResultSlot", "RunResult", "ResultCollector"]
