"""Worker pool base - handles, events and the shared pipe plumbing.

ARCHITECTURE
────────────
::

    WorkerPool (ABC)
      ├── .start()                    ─ create up-front workers (isolated)
      ├── .submit_export(bindings)    ─ ship named bindings (isolated only)
      ├── .prepare(task, queue)       ─ make workers able to run ``task``
      ├── .dispatch(handle, item)     ─ send one item to an idle worker
      ├── .poll(timeout)              ─ wait for READY/RESULT/FAILURE/CRASHED
      ├── .handle_timeout(handle)     ─ recycle or terminate a stuck worker
      └── .shutdown()                 ─ release everything (idempotent)

    Implementations:
      ForkPool        ─ fork start method, copy-on-write state
      IsolatedPool    ─ spawn start method, explicit exports, recycling
      SequentialPool  ─ one in-process thread (fallback)

Every worker talks over a duplex pipe; ``poll`` waits on all pipes plus the
process sentinels with ``multiprocessing.connection.wait`` so results and
deaths arrive through one call on the coordinating thread.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from multiprocessing import connection
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Any

from fanmap.core.enums import Backend, WorkerState
from fanmap.core.errors import (
    FanmapError,
    MissingBindingError,
    TaskError,
    UnsupportedBackendError,
    WorkerCrashedError,
)
from fanmap.core.logging import get_logger

from ..queue import TaskQueue, WorkItem
from .worker import (
    DOWN_STOP,
    FAILURE_BINDING,
    UP_FAILURE,
    UP_READY,
    UP_RESULT,
)

logger = get_logger(__name__)

TaskFunction = Callable[[Any], Any]


class EventKind(str, Enum):
    """What a worker reported."""

    READY = "ready"
    RESULT = "result"
    FAILURE = "failure"
    CRASHED = "crashed"


@dataclass
class WorkerEvent:
    """One observation from ``WorkerPool.poll``.

    ``index`` is the item concerned (None for READY, or for a crash of an
    idle worker).  FAILURE and busy CRASHED events carry a typed ``error``.
    """

    kind: EventKind
    worker_id: int
    index: int | None = None
    value: Any = None
    error: FanmapError | None = None
    exitcode: int | None = None


@dataclass
class WorkerHandle:
    """One execution unit and its pipe."""

    worker_id: int
    conn: Connection
    unit: BaseProcess | threading.Thread
    state: WorkerState = WorkerState.STARTING
    index: int | None = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def sentinel(self) -> int | None:
        if isinstance(self.unit, BaseProcess):
            return self.unit.sentinel
        return None

    @property
    def pid(self) -> int | None:
        if isinstance(self.unit, BaseProcess):
            return self.unit.pid
        return None

    @property
    def is_live(self) -> bool:
        return self.state.is_live

    def has_exited(self) -> bool:
        if isinstance(self.unit, BaseProcess):
            return self.unit.exitcode is not None
        return not self.unit.is_alive()

    @property
    def exitcode(self) -> int | None:
        if isinstance(self.unit, BaseProcess):
            return self.unit.exitcode
        return None


class WorkerPool(ABC):
    """Base class for the three backends.

    Subclasses implement ``_launch`` (create and start one worker),
    ``prepare`` and ``handle_timeout``; everything that talks to pipes lives
    here.
    """

    backend: Backend

    def __init__(self, worker_count: int, *, shutdown_grace: float = 5.0):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._worker_count = worker_count
        self._shutdown_grace = shutdown_grace
        self._handles: dict[int, WorkerHandle] = {}
        self._next_id = 0
        self._started = False
        self._prepared = False
        self._closed = False
        self.crashed_count = 0
        self.recycled_count = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def worker_count(self) -> int:
        """Configured number of workers."""
        return self._worker_count

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def live_count(self) -> int:
        return sum(1 for h in self._handles.values() if h.is_live)

    def handles(self) -> list[WorkerHandle]:
        return list(self._handles.values())

    def handle(self, worker_id: int) -> WorkerHandle:
        return self._handles[worker_id]

    def live_handles(self) -> list[WorkerHandle]:
        return [h for h in self._handles.values() if h.is_live]

    def idle_handles(self) -> list[WorkerHandle]:
        return [h for h in self._handles.values() if h.state is WorkerState.IDLE]

    def busy_handles(self) -> list[WorkerHandle]:
        return [h for h in self._handles.values() if h.state is WorkerState.BUSY]

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Create workers that must exist before ``prepare`` (none by default)."""
        self._check_open()
        self._started = True

    @abstractmethod
    def prepare(self, task: TaskFunction, queue: TaskQueue) -> None:
        """Make every worker able to run ``task`` on items of ``queue``."""
        ...

    def submit_export(self, bindings: dict[str, Any]) -> None:
        """Ship named bindings to every worker (isolated backend only)."""
        raise UnsupportedBackendError(
            self.backend.value,
            f"submit_export is only valid for the isolated backend, not {self.backend.value!r}",
        )

    @abstractmethod
    def handle_timeout(self, handle: WorkerHandle) -> WorkerHandle | None:
        """Tear down a worker whose item overran; return its replacement, if any."""
        ...

    def _new_worker_id(self) -> int:
        worker_id = self._next_id
        self._next_id += 1
        return worker_id

    def _register(self, handle: WorkerHandle) -> WorkerHandle:
        self._handles[handle.worker_id] = handle
        logger.debug(
            "pool.worker_started",
            backend=self.backend.value,
            worker_id=handle.worker_id,
            pid=handle.pid,
        )
        return handle

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} has been shut down")

    # ── Dispatch ─────────────────────────────────────────────────────

    def _run_message(self, item: WorkItem) -> tuple[str, Any]:
        raise NotImplementedError

    def dispatch(self, handle: WorkerHandle, item: WorkItem) -> bool:
        """Send ``item`` to an idle worker.

        Returns:
            False if the worker's pipe is already broken; the item was not
            sent and the worker is marked dead.

        Raises:
            TaskError: If the payload cannot be pickled for the worker
        """
        self._check_open()
        if handle.state is not WorkerState.IDLE:
            raise RuntimeError(f"worker {handle.worker_id} is {handle.state.value}, not idle")
        try:
            handle.conn.send(self._run_message(item))
        except OSError:
            self._mark_crashed(handle)
            return False
        except Exception as exc:
            raise TaskError(item.index, exc) from exc
        handle.state = WorkerState.BUSY
        handle.index = item.index
        return True

    # ── Event collection ─────────────────────────────────────────────

    def poll(self, timeout: float | None = None) -> list[WorkerEvent]:
        """Wait up to ``timeout`` seconds for worker events."""
        live = self.live_handles()
        if not live:
            return []

        waitables: dict[Any, WorkerHandle] = {}
        for h in live:
            waitables[h.conn] = h
            if h.sentinel is not None:
                waitables[h.sentinel] = h

        ready = connection.wait(list(waitables), timeout)

        touched: list[WorkerHandle] = []
        for obj in ready:
            h = waitables[obj]
            if h not in touched:
                touched.append(h)
        # Threads have no sentinel; notice dead ones on every poll.
        for h in live:
            if h.sentinel is None and h not in touched and h.has_exited():
                touched.append(h)

        events: list[WorkerEvent] = []
        for h in touched:
            events.extend(self._drain(h))
        return events

    def _drain(self, handle: WorkerHandle) -> list[WorkerEvent]:
        events: list[WorkerEvent] = []
        while handle.is_live:
            try:
                if not handle.conn.poll():
                    break
                message = handle.conn.recv()
            except (EOFError, OSError):
                events.append(self._mark_crashed(handle))
                break
            event = self._translate(handle, message)
            if event is not None:
                events.append(event)
        if handle.is_live and handle.has_exited():
            events.append(self._mark_crashed(handle))
        return events

    def _translate(self, handle: WorkerHandle, message: tuple[str, Any]) -> WorkerEvent | None:
        key, data = message
        if key == UP_READY:
            if handle.state is WorkerState.STARTING:
                handle.state = WorkerState.IDLE
            return WorkerEvent(EventKind.READY, handle.worker_id)

        if key == UP_RESULT:
            index, value = data
            handle.state = WorkerState.IDLE
            handle.index = None
            return WorkerEvent(EventKind.RESULT, handle.worker_id, index=index, value=value)

        if key == UP_FAILURE:
            index, kind, payload, tb_text = data
            handle.state = WorkerState.IDLE
            handle.index = None
            error: FanmapError
            if kind == FAILURE_BINDING:
                error = MissingBindingError(index, payload)
            else:
                error = TaskError(index, payload, traceback=tb_text)
            error.with_context(worker_id=handle.worker_id, backend=self.backend.value)
            return WorkerEvent(EventKind.FAILURE, handle.worker_id, index=index, error=error)

        logger.warning("pool.unknown_message", worker_id=handle.worker_id, key=key)
        return None

    def _mark_crashed(self, handle: WorkerHandle) -> WorkerEvent:
        if isinstance(handle.unit, BaseProcess):
            handle.unit.join(timeout=1.0)
        index = handle.index
        exitcode = handle.exitcode
        handle.state = WorkerState.DEAD
        handle.index = None
        handle.conn.close()
        self.crashed_count += 1

        error = None
        if index is not None:
            error = WorkerCrashedError(index, handle.worker_id, exitcode)
            error.with_context(backend=self.backend.value)
        logger.warning(
            "pool.worker_crashed",
            backend=self.backend.value,
            worker_id=handle.worker_id,
            index=index,
            exitcode=exitcode,
        )
        return WorkerEvent(
            EventKind.CRASHED, handle.worker_id, index=index, error=error, exitcode=exitcode
        )

    # ── Teardown ─────────────────────────────────────────────────────

    def terminate_worker(self, handle: WorkerHandle) -> None:
        """Forcefully stop one worker and release its pipe."""
        unit = handle.unit
        if isinstance(unit, BaseProcess):
            if unit.is_alive():
                unit.terminate()
                unit.join(timeout=self._shutdown_grace)
                if unit.is_alive():
                    unit.kill()
                    unit.join()
        # A thread cannot be stopped; closing the pipe makes it exit once
        # its current call returns.
        handle.conn.close()
        handle.state = WorkerState.DEAD
        handle.index = None

    def shutdown(self) -> list[int]:
        """Release all workers.  Safe to call more than once.

        Returns:
            Indices that were in flight; the caller records them as aborted.
            Empty on every call after the first.
        """
        if self._closed:
            return []
        self._closed = True

        in_flight = [h.index for h in self.busy_handles() if h.index is not None]

        for h in self.live_handles():
            if h.state is WorkerState.BUSY:
                self.terminate_worker(h)
                continue
            try:
                h.conn.send((DOWN_STOP, None))
            except OSError:
                pass

        deadline = time.monotonic() + self._shutdown_grace
        for h in self._handles.values():
            if h.state is WorkerState.DEAD:
                continue
            remaining = max(0.0, deadline - time.monotonic())
            h.unit.join(timeout=remaining)
            if isinstance(h.unit, BaseProcess) and h.unit.is_alive():
                self.terminate_worker(h)
            h.conn.close()
            h.state = WorkerState.STOPPED

        logger.debug(
            "pool.shutdown",
            backend=self.backend.value,
            workers=len(self._handles),
            in_flight=len(in_flight),
        )
        return in_flight

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


__all__ = [
    "TaskFunction",
    "EventKind",
    "WorkerEvent",
    "WorkerHandle",
    "WorkerPool",
]
