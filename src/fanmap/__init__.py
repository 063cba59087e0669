"""
fanmap - parallel map with ordered results.

    from fanmap import run

    result = run([4, 9, 16, 25], math.sqrt, backend="fork", worker_count=2)
    list(result)  # [2.0, 3.0, 4.0, 5.0]
"""

__version__ = "0.3.0"

from fanmap.core import *  # noqa: F401,F403
from fanmap.core import __all__ as _core_all
from fanmap.execution import (
    CallbackReporter,
    LoggingReporter,
    ParallelMap,
    PoolConfig,
    ProgressReporter,
    ResultSlot,
    RunHandle,
    RunResult,
    acquire,
    fallback_config,
    get_binding,
    run,
)

__all__ = [
    "__version__",
    "run",
    "ParallelMap",
    "RunHandle",
    "PoolConfig",
    "RunResult",
    "ResultSlot",
    "ProgressReporter",
    "CallbackReporter",
    "LoggingReporter",
    "acquire",
    "fallback_config",
    "get_binding",
    *_core_all,
]
