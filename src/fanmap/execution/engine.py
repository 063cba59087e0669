"""Parallel map engine - the public entry point.

Manifesto:
``run(items, fn)`` must behave like ``[fn(x) for x in items]`` with
errors captured per item: same length, same order, no exception leaking
across item boundaries.  Everything else (backend, pool size, timeouts,
retries, progress, cancellation) is configuration.

ARCHITECTURE
────────────
::

    run(items, fn, config)
      └── ParallelMap(config).run(items, fn)
            ├── TaskQueue(items)                 ─ index once, copy input
            ├── ResultCollector(len(items))      ─ N empty slots
            ├── acquire(config) → WorkerPool     ─ may raise UnsupportedBackendError
            ├── pool.prepare(fn, queue)          ─ fork / LOAD / thread
            ├── Dispatcher(...).run()            ─ coordinating loop
            ├── pool.shutdown()                  ─ in-flight → AbortedError
            └── collector.finalize() → RunResult

    ParallelMap.submit(items, fn) → RunHandle    ─ same, on a background thread
      ├── .result(timeout)
      ├── .cancel(policy)
      └── .done()

Run-level failures that happen before dispatch (unsupported backend,
unpicklable task, unpicklable export) raise.  Losing every worker mid-run
does not: the result comes back with ``aborted=True`` and the unfinished
indices listed.

Example::

    from fanmap import run, PoolConfig

    result = run([4, 9, 16, 25], math.sqrt, PoolConfig(backend="fork", worker_count=2))
    list(result)            # [2.0, 3.0, 4.0, 5.0]

    result = run(items, score, backend="isolated",
                 exported_bindings={"WEIGHTS": weights},
                 per_item_timeout=5.0, retry_count=2)
    for index, error in result.errors().items():
        ...

Tags:
    fanmap, execution, engine, parallel-map, ordering
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from fanmap.core.enums import CancelPolicy
from fanmap.core.logging import LogContext, get_logger

from .collector import ResultCollector, RunResult
from .config import PoolConfig
from .dispatcher import Dispatcher
from .pool.factory import acquire, ensure_backend_supported
from .progress import as_reporter
from .queue import TaskQueue
from .retry import strategy_for

logger = get_logger(__name__)

ABORT_SHUTDOWN = "pool shut down"


class ParallelMap:
    """Reusable engine bound to one ``PoolConfig``.

    Each ``run`` acquires a fresh pool and releases it before returning.
    One run at a time per instance; use separate instances for concurrent
    runs.
    """

    def __init__(self, config: PoolConfig | None = None, **overrides: Any):
        if config is None:
            config = PoolConfig.from_settings(**overrides)
        elif overrides:
            config = config.replace(**{k: v for k, v in overrides.items() if v is not None})
        self.config = config
        self._lock = threading.Lock()
        self._active = False
        self._dispatcher: Dispatcher | None = None
        self._pending_cancel: CancelPolicy | None = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._active

    def run(self, items: Iterable[Any], fn: Callable[[Any], Any]) -> RunResult:
        """Apply ``fn`` to every item and return outcomes in input order.

        Blocks until every item has an outcome or the run aborts.

        Raises:
            UnsupportedBackendError: The backend cannot run on this host
            UnpicklableTaskError: ISOLATED backend and ``fn`` cannot be pickled
            BindingExportError: An exported binding cannot be pickled
        """
        self._begin()
        try:
            return self._run(items, fn)
        finally:
            self._end()

    def _begin(self) -> None:
        with self._lock:
            if self._active:
                raise RuntimeError("ParallelMap is already running; create another instance")
            self._active = True
            self._pending_cancel = None

    def _end(self) -> None:
        with self._lock:
            self._active = False
            self._dispatcher = None
            self._pending_cancel = None

    def _run(self, items: Iterable[Any], fn: Callable[[Any], Any]) -> RunResult:
        config = self.config
        run_id = uuid.uuid4().hex[:12]
        queue = TaskQueue(items)
        collector = ResultCollector(len(queue), run_id=run_id)
        started = time.monotonic()

        with LogContext(run_id=run_id):
            logger.info("engine.run_started", items=len(queue), **config.to_dict())

            if not queue:
                ensure_backend_supported(config)
                result = collector.finalize()
                logger.info("engine.run_complete", duration_seconds=0.0, **result.to_dict())
                return result

            pool = acquire(config)
            dispatcher = Dispatcher(
                pool,
                queue,
                collector,
                reporter=as_reporter(config.on_progress),
                per_item_timeout=config.per_item_timeout,
                retry=strategy_for(
                    config.retry_count,
                    config.retry_delay,
                    config.retry_backoff,
                    config.retry_jitter,
                ),
                cancel_policy=config.cancel_policy,
                run_id=run_id,
            )
            try:
                pool.prepare(fn, queue)
                with self._lock:
                    self._dispatcher = dispatcher
                    pending = self._pending_cancel
                if pending is not None:
                    dispatcher.cancel(pending)
                dispatcher.run()
            finally:
                in_flight = pool.shutdown()
                if in_flight:
                    dispatcher.record_aborted(in_flight, ABORT_SHUTDOWN)
                if not collector.is_complete:
                    collector.abort(dispatcher.abort_reason or ABORT_SHUTDOWN)

            result = collector.finalize()
            logger.info(
                "engine.run_complete",
                duration_seconds=round(time.monotonic() - started, 4),
                dispatched=dispatcher.dispatched,
                crashed_workers=pool.crashed_count,
                recycled_workers=pool.recycled_count,
                **result.to_dict(),
            )
            return result

    def submit(self, items: Iterable[Any], fn: Callable[[Any], Any]) -> RunHandle:
        """Start ``run`` on a background coordinator thread.

        The run counts as active from the moment this returns, so an
        immediate ``cancel()`` is not lost.
        """
        # Materialize on the caller's thread so a generator is not consumed
        # concurrently with the caller.
        items = list(items)
        self._begin()
        handle = RunHandle(self)
        try:
            handle._start(items, fn)
        except BaseException:
            self._end()
            raise
        return handle

    def cancel(self, policy: CancelPolicy | str | None = None) -> None:
        """Cancel the current run (no-op when idle).

        A cancel that arrives before dispatch starts is applied as soon as
        the dispatcher exists.
        """
        resolved = CancelPolicy(policy) if policy is not None else self.config.cancel_policy
        with self._lock:
            if not self._active:
                logger.debug("engine.cancel_ignored", reason="no active run")
                return
            dispatcher = self._dispatcher
            if dispatcher is None:
                self._pending_cancel = resolved
                return
        dispatcher.cancel(resolved)


class RunHandle:
    """A run executing on a background thread."""

    def __init__(self, engine: ParallelMap):
        self._engine = engine
        self._done = threading.Event()
        self._result: RunResult | None = None
        self._exception: BaseException | None = None
        self._thread: threading.Thread | None = None

    def _start(self, items: list[Any], fn: Callable[[Any], Any]) -> None:
        self._thread = threading.Thread(
            target=self._target, args=(items, fn), name="fanmap-coordinator", daemon=True
        )
        self._thread.start()

    def _target(self, items: list[Any], fn: Callable[[Any], Any]) -> None:
        try:
            self._result = self._engine._run(items, fn)
        except BaseException as exc:
            self._exception = exc
        finally:
            self._engine._end()
            self._done.set()

    def done(self) -> bool:
        return self._done.is_set()

    def result(self, timeout: float | None = None) -> RunResult:
        """Wait for the run and return its result.

        Raises:
            TimeoutError: If the run is still going after ``timeout`` seconds
            Exception: Whatever ``ParallelMap.run`` raised
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"run still in progress after {timeout}s")
        if self._exception is not None:
            raise self._exception
        assert self._result is not None
        return self._result

    def exception(self, timeout: float | None = None) -> BaseException | None:
        if not self._done.wait(timeout):
            raise TimeoutError(f"run still in progress after {timeout}s")
        return self._exception

    def cancel(self, policy: CancelPolicy | str | None = None) -> None:
        self._engine.cancel(policy)


def run(
    items: Iterable[Any],
    fn: Callable[[Any], Any],
    config: PoolConfig | None = None,
    **overrides: Any,
) -> RunResult:
    """Apply ``fn`` to every item in parallel; outcomes come back in input order.

    Args:
        items: Inputs; consumed once
        fn: Task function.  For the isolated backend it must be picklable
            (module-level functions are)
        config: Pool configuration; None builds one from settings
        **overrides: ``PoolConfig`` fields overriding ``config``

    Returns:
        RunResult with one entry per item: the return value or a typed error
    """
    return ParallelMap(config, **overrides).run(items, fn)


__all__ = ["ParallelMap", "RunHandle", "run"]
