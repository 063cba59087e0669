"""
Shared enums for fanmap.

Used by settings, pool configuration, the pools themselves and the CLI, so
they live here rather than in any one execution module.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class Backend(str, Enum):
    """
    Worker acquisition strategy.

    FORK:       child processes created by address-space duplication; caller
                state is visible copy-on-write, nothing needs exporting.
    ISOLATED:   long-lived spawned processes; only explicitly exported
                bindings are visible to the task.
    SEQUENTIAL: a single in-process worker thread; the explicit fallback when
                the platform cannot fork.
    """

    FORK = "fork"
    ISOLATED = "isolated"
    SEQUENTIAL = "sequential"


class CancelPolicy(str, Enum):
    """
    What happens to in-flight items when a run is cancelled.

    COOPERATIVE: stop dispatching, let in-flight items finish.
    HARD:        stop dispatching, terminate busy workers.
    """

    COOPERATIVE = "cooperative"
    HARD = "hard"


class WorkerState(str, Enum):
    """
    Lifecycle of a worker handle.

    Valid transition graph::

        STARTING → IDLE | DEAD
        IDLE     → BUSY | STOPPED | DEAD
        BUSY     → IDLE | STOPPED | DEAD
        STOPPED  → (terminal)
        DEAD     → (terminal)
    """

    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"
    DEAD = "dead"

    @property
    def is_live(self) -> bool:
        return self in (WorkerState.STARTING, WorkerState.IDLE, WorkerState.BUSY)


__all__ = ["Backend", "CancelPolicy", "WorkerState"]
