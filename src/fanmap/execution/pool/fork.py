"""Fork Pool - worker processes created by address-space duplication.

Manifesto:
The cheapest way to give a worker the caller's state is to not send it at
all.  ``ForkPool`` forks its children after the task and items are known,
so every child already holds both (copy-on-write) and only item indices
cross the pipe.

ARCHITECTURE
────────────
::

    ForkPool(worker_count=4)
      ├── .start()                  ─ refuse if the platform cannot fork
      ├── .prepare(fn, queue)       ─ fork N children inheriting fn + items
      ├── .handle_timeout(handle)   ─ terminate the child, no replacement
      ├── .restart()                ─ re-fork dead children explicitly
      └── .shutdown()               ─ STOP idle children, terminate busy ones

Mutations a child makes to inherited state stay in that child; neither the
caller nor sibling workers ever see them.

Tags:
    fanmap, execution, pool, fork, copy-on-write
"""

from __future__ import annotations

import multiprocessing as mp
from collections.abc import Sequence
from multiprocessing.connection import Connection
from typing import Any

from fanmap.core import capabilities
from fanmap.core.enums import Backend
from fanmap.core.errors import UnsupportedBackendError
from fanmap.core.logging import get_logger

from ..queue import TaskQueue, WorkItem
from .base import TaskFunction, WorkerHandle, WorkerPool
from .worker import DOWN_RUN, worker_main

logger = get_logger(__name__)


def _forked_main(
    conn: Connection,
    inherited: list[Connection],
    worker_id: int,
    task: TaskFunction,
    items: Sequence[Any],
) -> None:
    # Drop the coordinator-side pipe ends this child inherited so that EOF
    # is seen as soon as the coordinator closes its end.
    for other in inherited:
        other.close()
    worker_main(conn, worker_id, task=task, items=items)


class ForkPool(WorkerPool):
    """Shared-memory pool using the ``fork`` start method.

    Workers are created by ``prepare`` rather than ``start`` because the
    children must be forked after the task and its inputs exist.
    """

    backend = Backend.FORK

    def __init__(self, worker_count: int, *, shutdown_grace: float = 5.0):
        super().__init__(worker_count, shutdown_grace=shutdown_grace)
        self._task: TaskFunction | None = None
        self._items: tuple[Any, ...] = ()
        self._ctx: Any = None

    def start(self) -> None:
        if not capabilities.fork_supported():
            raise UnsupportedBackendError(self.backend.value)
        self._ctx = mp.get_context("fork")
        super().start()

    def prepare(self, task: TaskFunction, queue: TaskQueue) -> None:
        self._check_open()
        if not self._started:
            self.start()
        if self._prepared:
            raise RuntimeError("ForkPool.prepare() may only be called once")
        self._task = task
        self._items = queue.payloads()
        for _ in range(self._worker_count):
            self._launch()
        self._prepared = True
        logger.debug("fork_pool.prepared", workers=self._worker_count, items=len(self._items))

    def _launch(self) -> WorkerHandle:
        parent_conn, child_conn = mp.Pipe(duplex=True)
        inherited = [h.conn for h in self._handles.values() if not h.conn.closed]
        inherited.append(parent_conn)
        worker_id = self._new_worker_id()
        process = self._ctx.Process(
            target=_forked_main,
            args=(child_conn, inherited, worker_id, self._task, self._items),
            name=f"fanmap-fork-{worker_id}",
            daemon=True,
        )
        process.start()
        child_conn.close()
        return self._register(WorkerHandle(worker_id, parent_conn, process))

    def _run_message(self, item: WorkItem) -> tuple[str, Any]:
        return (DOWN_RUN, (item.index,))

    def handle_timeout(self, handle: WorkerHandle) -> WorkerHandle | None:
        self.terminate_worker(handle)
        logger.warning(
            "fork_pool.worker_terminated",
            worker_id=handle.worker_id,
            live=self.live_count,
        )
        return None

    def restart(self) -> list[WorkerHandle]:
        """Fork replacements for dead workers, back up to ``worker_count``.

        Returns:
            The new handles (they report READY through ``poll``)
        """
        self._check_open()
        if not self._prepared:
            raise RuntimeError("ForkPool.restart() requires prepare() first")
        missing = self._worker_count - self.live_count
        started = [self._launch() for _ in range(max(0, missing))]
        if started:
            logger.info("fork_pool.restarted", started=len(started))
        return started


__all__ = ["ForkPool"]
