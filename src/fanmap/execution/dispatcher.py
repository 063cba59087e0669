"""Dispatcher - keeps every idle worker busy while items remain.

WHY
───
Completion order depends on how long each item takes; dispatch order must
not.  The dispatcher hands out indices FIFO, reacts to every worker event
immediately (no batching delay), and turns crashes, timeouts and task
failures into typed slots so one bad item never stops its siblings.

ARCHITECTURE
────────────
::

    Dispatcher.run()                         (coordinating thread)
      loop:
        ├── apply cancel request (cooperative drain | hard terminate)
        ├── fill idle workers    ← ready retries first, then FIFO cursor
        ├── pool.poll(budget)    ← budget = nearest deadline / retry / tick
        │     READY   → worker becomes idle
        │     RESULT  → collect success  → notify progress
        │     FAILURE → retry? else collect failure → notify progress
        │     CRASHED → WorkerCrashedError (retry? else collect)
        └── expire deadlines     → TimedOutError, pool recycles/terminates

    Exit when every slot is filled, when a cancel has drained, or when no
    live workers remain ("all workers lost").  Items still waiting for a
    retry at exit keep the error from their last attempt.

Related modules:
    pool/base.py   - WorkerPool.poll / dispatch / handle_timeout
    collector.py   - ResultCollector (ordered assembly)
    retry.py       - RetryStrategy
    timeout.py     - DeadlineTracker
"""

from __future__ import annotations

import heapq
import threading
import time
from collections import deque

from fanmap.core.enums import CancelPolicy
from fanmap.core.errors import (
    AbortedError,
    FanmapError,
    TaskError,
    TimedOutError,
    categorize_error,
)
from fanmap.core.logging import get_logger

from .collector import ResultCollector, ResultSlot
from .pool.base import EventKind, WorkerEvent, WorkerPool
from .progress import ProgressReporter, notify
from .queue import TaskQueue
from .retry import NoRetry, RetryStrategy
from .timeout import DeadlineTracker

logger = get_logger(__name__)

ABORT_ALL_WORKERS_LOST = "all workers lost"
ABORT_CANCELLED = "cancelled"


class Dispatcher:
    """Assigns queued items to idle workers and records every outcome.

    Args:
        pool: A prepared worker pool
        queue: The items to run
        collector: Receives one slot per item
        reporter: Optional progress observer
        per_item_timeout: Seconds an item may run (None = unbounded)
        retry: Retry strategy for retryable failures (default: none)
        cancel_policy: Policy applied by ``cancel()`` when none is given
        poll_interval: Longest single wait; bounds cancel latency
    """

    def __init__(
        self,
        pool: WorkerPool,
        queue: TaskQueue,
        collector: ResultCollector,
        *,
        reporter: ProgressReporter | None = None,
        per_item_timeout: float | None = None,
        retry: RetryStrategy | None = None,
        cancel_policy: CancelPolicy = CancelPolicy.COOPERATIVE,
        poll_interval: float = 0.1,
        run_id: str | None = None,
    ):
        self._pool = pool
        self._queue = queue
        self._collector = collector
        self._reporter = reporter
        self._deadlines = DeadlineTracker(per_item_timeout)
        self._retry = retry or NoRetry()
        self._default_cancel_policy = cancel_policy
        self._poll_interval = poll_interval
        self._run_id = run_id

        self._cursor: deque[int] = deque(range(len(queue)))
        self._retry_heap: list[tuple[float, int]] = []
        self._last_error: dict[int, tuple[FanmapError, int | None]] = {}
        self._attempts: dict[int, int] = {}
        self._started_at: dict[int, float] = {}

        self._cancel_event = threading.Event()
        self._cancel_policy: CancelPolicy | None = None
        self._cancelled = False
        self._abort_reason: str | None = None
        self._dispatched = 0
        self._completed = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def in_flight(self) -> int:
        return len(self._pool.busy_handles())

    @property
    def dispatched(self) -> int:
        """Dispatches so far, retries included."""
        return self._dispatched

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self._cancel_event.is_set()

    @property
    def abort_reason(self) -> str | None:
        return self._abort_reason

    # ── Control ──────────────────────────────────────────────────────

    def cancel(self, policy: CancelPolicy | str | None = None) -> None:
        """Stop assigning new items.  Safe to call from any thread.

        COOPERATIVE lets in-flight items finish; HARD terminates their
        workers and records ``AbortedError`` for them.  Items never
        dispatched stay empty and are reported as unfinished.
        """
        self._cancel_policy = CancelPolicy(policy) if policy is not None else self._default_cancel_policy
        self._cancel_event.set()

    def run(self) -> None:
        """Drive the pool until every item has a slot or the run aborts."""
        logger.debug(
            "dispatcher.started",
            items=len(self._queue),
            workers=self._pool.worker_count,
            timeout=self._deadlines.timeout_seconds,
        )
        while not self._collector.is_complete:
            if self._cancel_event.is_set() and not self._cancelled:
                self._apply_cancel()

            if self._cancelled:
                if not self._pool.busy_handles():
                    self._abort(ABORT_CANCELLED)
                    break
            else:
                self._fill()

            if self._pool.live_count == 0:
                self._abort(ABORT_ALL_WORKERS_LOST)
                break

            for event in self._pool.poll(self._wait_budget()):
                self._handle_event(event)
            self._expire_deadlines()

        logger.debug(
            "dispatcher.finished",
            dispatched=self._dispatched,
            completed=self._completed,
            aborted=self._abort_reason,
        )

    # ── Dispatch ─────────────────────────────────────────────────────

    def _next_index(self) -> int | None:
        if self._retry_heap and self._retry_heap[0][0] <= time.monotonic():
            return heapq.heappop(self._retry_heap)[1]
        if self._cursor:
            return self._cursor.popleft()
        return None

    def _fill(self) -> None:
        for handle in self._pool.idle_handles():
            index = self._next_index()
            if index is None:
                return
            item = self._queue[index]
            attempts = self._attempts.get(index, 0) + 1
            try:
                sent = self._pool.dispatch(handle, item)
            except TaskError as exc:
                # Payload cannot cross the pipe; it would fail on every worker.
                self._attempts[index] = attempts
                self._complete(ResultSlot.failure(index, exc, attempts=attempts))
                continue
            if not sent:
                self._cursor.appendleft(index)
                continue
            self._attempts[index] = attempts
            self._started_at[index] = time.monotonic()
            self._deadlines.open(handle.worker_id, index)
            self._dispatched += 1
            logger.debug(
                "dispatcher.item_dispatched",
                index=index,
                worker_id=handle.worker_id,
                attempt=attempts,
            )

    def _wait_budget(self) -> float:
        budget = self._deadlines.wait_budget(default=self._poll_interval)
        if self._retry_heap:
            until_retry = max(0.0, self._retry_heap[0][0] - time.monotonic())
            budget = min(budget, until_retry) if budget is not None else until_retry
        return self._poll_interval if budget is None else budget

    # ── Events ───────────────────────────────────────────────────────

    def _handle_event(self, event: WorkerEvent) -> None:
        if event.kind is EventKind.READY:
            return
        deadline = self._deadlines.close(event.worker_id)
        index = event.index
        if index is None:
            # An idle worker died; nothing to record.
            return
        if self._collector.is_filled(index):
            logger.warning(
                "dispatcher.stale_event",
                kind=event.kind.value,
                index=index,
                worker_id=event.worker_id,
            )
            return

        if (
            event.kind is not EventKind.CRASHED
            and deadline is not None
            and deadline.index == index
            and deadline.is_expired()
        ):
            # Finished, but only after its deadline passed.
            error = TimedOutError(index, deadline.timeout_seconds, deadline.elapsed)
            error.with_context(worker_id=event.worker_id, backend=self._pool.backend.value)
            self._fail(index, error, event.worker_id)
            return

        if event.kind is EventKind.RESULT:
            self._complete(
                ResultSlot.success(
                    index,
                    event.value,
                    attempts=self._attempts.get(index, 1),
                    worker_id=event.worker_id,
                    duration_seconds=self._duration(index),
                )
            )
        elif event.error is not None:
            self._fail(index, event.error, event.worker_id)

    def _expire_deadlines(self) -> None:
        for worker_id, ctx in self._deadlines.expired():
            self._deadlines.close(worker_id)
            handle = self._pool.handle(worker_id)
            if handle.index != ctx.index:
                continue
            error = TimedOutError(ctx.index, ctx.timeout_seconds, ctx.elapsed)
            error.with_context(worker_id=worker_id, backend=self._pool.backend.value)
            logger.warning(
                "dispatcher.item_timed_out",
                index=ctx.index,
                worker_id=worker_id,
                timeout=ctx.timeout_seconds,
            )
            self._pool.handle_timeout(handle)
            self._fail(ctx.index, error, worker_id)

    # ── Outcomes ─────────────────────────────────────────────────────

    def _duration(self, index: int) -> float | None:
        started = self._started_at.pop(index, None)
        return None if started is None else time.monotonic() - started

    def _fail(self, index: int, error: FanmapError, worker_id: int | None) -> None:
        attempts = self._attempts.get(index, 1)
        duration = self._duration(index)
        if not self.cancelled and self._retry.should_retry(attempts - 1, error):
            delay = self._retry.next_delay(attempts - 1)
            heapq.heappush(self._retry_heap, (time.monotonic() + delay, index))
            self._last_error[index] = (error, worker_id)
            logger.info(
                "dispatcher.item_retry",
                index=index,
                attempt=attempts,
                delay=delay,
                error=type(error).__name__,
            )
            return
        self._last_error.pop(index, None)
        error.with_context(attempt=attempts, run_id=self._run_id)
        self._complete(
            ResultSlot.failure(
                index,
                error,
                attempts=attempts,
                worker_id=worker_id,
                duration_seconds=duration,
            )
        )

    def _complete(self, slot: ResultSlot) -> None:
        self._collector.collect(slot)
        self._completed += 1
        notify(self._reporter, slot)
        if not slot.ok:
            logger.info(
                "dispatcher.item_failed",
                index=slot.index,
                error=type(slot.error).__name__,
                category=categorize_error(slot.error).value,
                attempts=slot.attempts,
            )

    def record_aborted(self, indices: list[int], reason: str) -> None:
        """Fill empty slots for items that were in flight when the run ended."""
        for index in indices:
            if self._collector.is_filled(index):
                continue
            error = AbortedError(index, reason)
            error.with_context(run_id=self._run_id)
            self._complete(
                ResultSlot.failure(index, error, attempts=self._attempts.get(index, 1))
            )

    # ── Cancel / abort ───────────────────────────────────────────────

    def _apply_cancel(self) -> None:
        self._cancelled = True
        policy = self._cancel_policy or self._default_cancel_policy
        busy = self._pool.busy_handles()
        logger.info("dispatcher.cancelled", policy=policy.value, in_flight=len(busy))
        if policy is CancelPolicy.HARD:
            indices = []
            for handle in busy:
                if handle.index is not None:
                    indices.append(handle.index)
                self._deadlines.close(handle.worker_id)
                self._pool.terminate_worker(handle)
            self.record_aborted(indices, ABORT_CANCELLED)

    def _settle_pending_retries(self) -> None:
        """Record the last failure of every item still waiting for a retry.

        Those items ran, so their slots carry the error they failed with
        rather than staying empty.
        """
        while self._retry_heap:
            _, index = heapq.heappop(self._retry_heap)
            error, worker_id = self._last_error.pop(index)
            attempts = self._attempts.get(index, 1)
            error.with_context(attempt=attempts, run_id=self._run_id)
            self._complete(
                ResultSlot.failure(index, error, attempts=attempts, worker_id=worker_id)
            )

    def _abort(self, reason: str) -> None:
        self._settle_pending_retries()
        self._abort_reason = reason
        self._collector.abort(reason)


__all__ = ["Dispatcher", "ABORT_ALL_WORKERS_LOST", "ABORT_CANCELLED"]
