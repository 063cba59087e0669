"""Worker-side loop shared by every backend.

Each worker owns one end of a duplex ``multiprocessing`` pipe and exchanges
``(key, data)`` tuples with the coordinator.

Keys
────
Downstream (coordinator → worker)::

    DOWN_LOAD    pickled task function        (isolated workers)
    DOWN_EXPORT  (name, pickled value)        (isolated workers)
    DOWN_RUN     (index,) or (index, payload)
    DOWN_STOP    None

Upstream (worker → coordinator)::

    UP_READY     worker_id
    UP_RESULT    (index, value)
    UP_FAILURE   (index, kind, error, traceback_text)

``kind`` is ``FAILURE_TASK`` for exceptions raised by the task and
``FAILURE_BINDING`` when an isolated worker hit a name nobody exported.

This module must stay importable in a freshly spawned interpreter: the
isolated backend uses ``worker_main`` as its process target.
"""

from __future__ import annotations

import pickle
import traceback
from collections.abc import Callable, Sequence
from multiprocessing.connection import Connection
from typing import Any

from fanmap.core.errors import RemoteException

DOWN_LOAD = "__fanmap-down:load"
DOWN_EXPORT = "__fanmap-down:export"
DOWN_RUN = "__fanmap-down:run"
DOWN_STOP = "__fanmap-down:stop"

UP_READY = "__fanmap-up:ready"
UP_RESULT = "__fanmap-up:result"
UP_FAILURE = "__fanmap-up:failure"

FAILURE_TASK = "task"
FAILURE_BINDING = "binding"

# Bindings exported to this worker process.  Only populated inside isolated
# workers; each spawned process has its own copy.
_BINDINGS: dict[str, Any] = {}


def get_binding(name: str) -> Any:
    """Read a binding exported to the current isolated worker.

    Raises:
        NameError: If ``name`` was never exported (reported to the caller as
            ``MissingBindingError`` for the item being run)
    """
    try:
        return _BINDINGS[name]
    except KeyError:
        raise NameError(f"binding {name!r} was not exported to this worker", name=name) from None


def _task_globals(task: Callable[..., Any]) -> dict[str, Any] | None:
    """Module globals a task function resolves free names against."""
    target = task
    while hasattr(target, "func"):  # functools.partial and friends
        target = target.func
    return getattr(target, "__globals__", None)


def _install_binding(task: Callable[..., Any] | None, name: str, value: Any) -> None:
    _BINDINGS[name] = value
    if task is not None:
        namespace = _task_globals(task)
        if namespace is not None:
            namespace[name] = value


def _portable_exception(exc: BaseException, tb_text: str) -> BaseException:
    """The exception itself if it survives pickling, else a RemoteException."""
    try:
        pickle.loads(pickle.dumps(exc))
    except Exception:
        return RemoteException(type(exc).__name__, str(exc), tb_text)
    return exc


def _send_failure(conn: Connection, index: int, kind: str, exc: BaseException) -> None:
    tb_text = traceback.format_exc()
    if kind == FAILURE_BINDING:
        conn.send((UP_FAILURE, (index, kind, getattr(exc, "name", None), tb_text)))
    else:
        conn.send((UP_FAILURE, (index, kind, _portable_exception(exc, tb_text), tb_text)))


def worker_main(
    conn: Connection,
    worker_id: int,
    task: Callable[..., Any] | None = None,
    items: Sequence[Any] | None = None,
    isolated: bool = False,
) -> None:
    """Serve RUN requests until STOP, EOF or a broken pipe.

    Args:
        conn: Worker end of the pipe
        worker_id: Identifier echoed in READY
        task: Task inherited from the parent (fork/sequential); isolated
            workers receive it later via DOWN_LOAD
        items: Payloads inherited from the parent; RUN messages then carry
            only the index
        isolated: Report ``NameError`` as a missing binding
    """
    try:
        if task is not None:
            conn.send((UP_READY, worker_id))

        while True:
            try:
                key, data = conn.recv()
            except EOFError:
                break

            if key == DOWN_STOP:
                break

            if key == DOWN_LOAD:
                task = pickle.loads(data)
                for name, value in _BINDINGS.items():
                    _install_binding(task, name, value)
                conn.send((UP_READY, worker_id))

            elif key == DOWN_EXPORT:
                name, blob = data
                _install_binding(task, name, pickle.loads(blob))

            elif key == DOWN_RUN:
                index, *rest = data
                payload = rest[0] if rest else items[index]  # type: ignore[index]
                try:
                    value = task(payload)  # type: ignore[misc]
                except NameError as exc:
                    _send_failure(conn, index, FAILURE_BINDING if isolated else FAILURE_TASK, exc)
                    continue
                except Exception as exc:
                    _send_failure(conn, index, FAILURE_TASK, exc)
                    continue
                try:
                    conn.send((UP_RESULT, (index, value)))
                except OSError:
                    raise
                except Exception as exc:
                    # Return value could not be pickled; nothing was written.
                    _send_failure(conn, index, FAILURE_TASK, exc)
    except (BrokenPipeError, ConnectionResetError):
        # Coordinator went away (shutdown or abandoned worker).
        pass
    finally:
        conn.close()


__all__ = [
    "DOWN_LOAD",
    "DOWN_EXPORT",
    "DOWN_RUN",
    "DOWN_STOP",
    "UP_READY",
    "UP_RESULT",
    "UP_FAILURE",
    "FAILURE_TASK",
    "FAILURE_BINDING",
    "get_binding",
    "worker_main",
]
