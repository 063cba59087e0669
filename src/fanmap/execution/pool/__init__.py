"""
Worker pools.

Three backends share one pipe protocol (``worker.py``) and one event loop
primitive (``WorkerPool.poll``):

* ``ForkPool``       - forked children, copy-on-write caller state
* ``IsolatedPool``   - spawned workers, explicit exports, recycled on timeout
* ``SequentialPool`` - one in-process thread, the explicit fallback

Use ``acquire(config)`` rather than constructing pools directly.
"""

from fanmap.execution.pool.base import EventKind, WorkerEvent, WorkerHandle, WorkerPool
from fanmap.execution.pool.factory import (
    acquire,
    check_oversubscription,
    ensure_backend_supported,
    fallback_config,
)
from fanmap.execution.pool.fork import ForkPool
from fanmap.execution.pool.isolated import IsolatedPool
from fanmap.execution.pool.sequential import SequentialPool
from fanmap.execution.pool.worker import get_binding

__all__ = [
    "EventKind",
    "WorkerEvent",
    "WorkerHandle",
    "WorkerPool",
    "ForkPool",
    "IsolatedPool",
    "SequentialPool",
    "acquire",
    "check_oversubscription",
    "ensure_backend_supported",
    "fallback_config",
    "get_binding",
]
