"""Isolated Pool - long-lived spawned workers with explicit state export.

Manifesto:
A spawned interpreter shares nothing with its parent.  Anything the task
needs beyond its own module (configuration values, lookup tables, helper
objects) has to be shipped by name before work starts.  A worker that
evaluates a name nobody exported fails that item with
``MissingBindingError`` instead of quietly computing the wrong thing.

ARCHITECTURE
────────────
::

    IsolatedPool(worker_count=4)
      ├── .start()                    ─ spawn N workers up front
      ├── .submit_export(bindings)    ─ pickle snapshot, send to every worker
      ├── .prepare(fn, queue)         ─ pickle fn once, LOAD into every worker
      ├── .handle_timeout(handle)     ─ recycle: terminate + spawn replacement
      └── .shutdown()                 ─ STOP idle workers, terminate busy ones

    coordinator ──EXPORT(name, blob)──▶ worker   (any time, last write wins)
    coordinator ──LOAD(task blob)─────▶ worker ──READY──▶ coordinator
    coordinator ──RUN(index, payload)─▶ worker ──RESULT/FAILURE──▶

Exports are snapshots: the value is pickled when ``submit_export`` is
called, so later mutation on the caller side is not seen unless re-exported.

Tags:
    fanmap, execution, pool, spawn, message-passing, isolation
"""

from __future__ import annotations

import multiprocessing as mp
import pickle
from collections.abc import Mapping
from typing import Any

from fanmap.core.enums import Backend
from fanmap.core.errors import BindingExportError, UnpicklableTaskError
from fanmap.core.logging import get_logger

from ..queue import TaskQueue, WorkItem
from .base import TaskFunction, WorkerHandle, WorkerPool
from .worker import DOWN_EXPORT, DOWN_LOAD, DOWN_RUN, worker_main

logger = get_logger(__name__)


class IsolatedPool(WorkerPool):
    """Message-passing pool using the ``spawn`` start method."""

    backend = Backend.ISOLATED

    def __init__(self, worker_count: int, *, shutdown_grace: float = 5.0):
        super().__init__(worker_count, shutdown_grace=shutdown_grace)
        self._ctx = mp.get_context("spawn")
        self._exports: dict[str, bytes] = {}
        self._task_blob: bytes | None = None

    @property
    def exported_names(self) -> list[str]:
        return sorted(self._exports)

    def start(self) -> None:
        self._check_open()
        if self._started:
            return
        for _ in range(self._worker_count):
            self._launch()
        super().start()

    def _launch(self) -> WorkerHandle:
        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        worker_id = self._new_worker_id()
        process = self._ctx.Process(
            target=worker_main,
            args=(child_conn, worker_id),
            kwargs={"isolated": True},
            name=f"fanmap-isolated-{worker_id}",
            daemon=True,
        )
        process.start()
        child_conn.close()
        return self._register(WorkerHandle(worker_id, parent_conn, process))

    def submit_export(self, bindings: Mapping[str, Any]) -> None:
        """Snapshot ``bindings`` and send them to every live worker.

        Re-exporting a name replaces the previous value everywhere.

        Raises:
            BindingExportError: If a value cannot be pickled; nothing from
                this call is sent in that case
        """
        self._check_open()
        blobs: dict[str, bytes] = {}
        for name, value in bindings.items():
            try:
                blobs[name] = pickle.dumps(value)
            except Exception as exc:
                raise BindingExportError(name, exc) from exc

        self._exports.update(blobs)
        for handle in self.live_handles():
            for name, blob in blobs.items():
                try:
                    handle.conn.send((DOWN_EXPORT, (name, blob)))
                except OSError:
                    # Reported as a crash by the next poll.
                    break
        logger.debug("isolated_pool.exported", names=sorted(blobs), workers=self.live_count)

    def prepare(self, task: TaskFunction, queue: TaskQueue) -> None:
        self._check_open()
        if not self._started:
            self.start()
        if self._prepared:
            raise RuntimeError("IsolatedPool.prepare() may only be called once")
        try:
            self._task_blob = pickle.dumps(task)
        except Exception as exc:
            raise UnpicklableTaskError(task, exc) from exc

        for handle in self.live_handles():
            try:
                handle.conn.send((DOWN_LOAD, self._task_blob))
            except OSError:
                continue
        self._prepared = True
        logger.debug("isolated_pool.prepared", workers=self.live_count, items=len(queue))

    def _run_message(self, item: WorkItem) -> tuple[str, Any]:
        return (DOWN_RUN, (item.index, item.payload))

    def handle_timeout(self, handle: WorkerHandle) -> WorkerHandle | None:
        """Tear down the stuck worker and spawn a replacement.

        The replacement receives every current export and then the task, so
        it reports READY through ``poll`` in the same state as its siblings.
        """
        self.terminate_worker(handle)
        replacement = self._launch()
        for name, blob in self._exports.items():
            replacement.conn.send((DOWN_EXPORT, (name, blob)))
        if self._task_blob is not None:
            replacement.conn.send((DOWN_LOAD, self._task_blob))
        self.recycled_count += 1
        logger.info(
            "isolated_pool.worker_recycled",
            old_worker_id=handle.worker_id,
            new_worker_id=replacement.worker_id,
        )
        return replacement


__all__ = ["IsolatedPool"]
