"""Sequential Pool - one in-process worker thread.

The explicit fallback for platforms that cannot fork (see
``fallback_config``).  It runs the same worker loop as the process pools
over an in-process pipe, so the dispatcher treats it like any other pool.

A thread cannot be killed: on timeout the worker is abandoned (its pipe is
closed so it exits after the stuck call returns) and a fresh thread takes
its place.
"""

from __future__ import annotations

import multiprocessing as mp
import threading
from typing import Any

from fanmap.core.enums import Backend
from fanmap.core.logging import get_logger

from ..queue import TaskQueue, WorkItem
from .base import TaskFunction, WorkerHandle, WorkerPool
from .worker import DOWN_RUN, worker_main

logger = get_logger(__name__)


class SequentialPool(WorkerPool):
    backend = Backend.SEQUENTIAL

    def __init__(self, worker_count: int = 1, *, shutdown_grace: float = 5.0):
        if worker_count > 1:
            logger.warning("sequential_pool.worker_count_clamped", requested=worker_count)
            worker_count = 1
        super().__init__(worker_count, shutdown_grace=shutdown_grace)
        self._task: TaskFunction | None = None
        self._items: tuple[Any, ...] = ()

    def prepare(self, task: TaskFunction, queue: TaskQueue) -> None:
        self._check_open()
        if self._prepared:
            raise RuntimeError("SequentialPool.prepare() may only be called once")
        self._started = True
        self._task = task
        self._items = queue.payloads()
        self._launch()
        self._prepared = True

    def _launch(self) -> WorkerHandle:
        parent_conn, child_conn = mp.Pipe(duplex=True)
        worker_id = self._new_worker_id()
        thread = threading.Thread(
            target=worker_main,
            args=(child_conn, worker_id, self._task, self._items),
            name=f"fanmap-sequential-{worker_id}",
            daemon=True,
        )
        thread.start()
        return self._register(WorkerHandle(worker_id, parent_conn, thread))

    def _run_message(self, item: WorkItem) -> tuple[str, Any]:
        return (DOWN_RUN, (item.index,))

    def handle_timeout(self, handle: WorkerHandle) -> WorkerHandle | None:
        self.terminate_worker(handle)
        replacement = self._launch()
        self.recycled_count += 1
        logger.warning(
            "sequential_pool.worker_abandoned",
            old_worker_id=handle.worker_id,
            new_worker_id=replacement.worker_id,
        )
        return replacement


__all__ = ["SequentialPool"]
