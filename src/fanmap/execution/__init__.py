"""fanmap execution - queue, pools, dispatcher, collector and engine.

WHY
───
Parallel map looks trivial until items finish out of order, workers die,
tasks hang, or the task needs state the worker cannot see.  This package
keeps those concerns in separate, testable pieces behind one call.

ARCHITECTURE
────────────
::

    run(items, fn, config) / ParallelMap
      │
      ▼
    TaskQueue ──▶ Dispatcher ──▶ WorkerPool (fork | isolated | sequential)
                     │                 │
                     │◀── events ──────┘
                     ▼
              ResultCollector ──▶ RunResult (submission order)
                     │
                     └──▶ ProgressReporter (completion order)

    Resilience
      ├── RetryStrategy     ─ constant / exponential backoff
      └── DeadlineTracker   ─ per-item timeouts
"""

from fanmap.execution.collector import ResultCollector, ResultSlot, RunResult
from fanmap.execution.config import PoolConfig
from fanmap.execution.dispatcher import Dispatcher
from fanmap.execution.engine import ParallelMap, RunHandle, run
from fanmap.execution.pool import (
    ForkPool,
    IsolatedPool,
    SequentialPool,
    WorkerPool,
    acquire,
    fallback_config,
    get_binding,
)
from fanmap.execution.progress import (
    CallbackReporter,
    LoggingReporter,
    ProgressCallback,
    ProgressReporter,
)
from fanmap.execution.queue import TaskQueue, WorkItem
from fanmap.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryStrategy,
)
from fanmap.execution.timeout import DeadlineContext, DeadlineTracker

__all__ = [
    # Engine
    "run",
    "ParallelMap",
    "RunHandle",
    "PoolConfig",
    # Queue / results
    "TaskQueue",
    "WorkItem",
    "ResultCollector",
    "ResultSlot",
    "RunResult",
    "Dispatcher",
    # Pools
    "WorkerPool",
    "ForkPool",
    "IsolatedPool",
    "SequentialPool",
    "acquire",
    "fallback_config",
    "get_binding",
    # Progress
    "ProgressCallback",
    "ProgressReporter",
    "CallbackReporter",
    "LoggingReporter",
    # Resilience
    "RetryStrategy",
    "NoRetry",
    "ConstantBackoff",
    "ExponentialBackoff",
    "DeadlineContext",
    "DeadlineTracker",
]
