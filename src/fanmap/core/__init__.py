"""
fanmap core - errors, logging, settings and platform checks shared by every
execution module.
"""

from fanmap.core.capabilities import available_parallelism, fork_supported
from fanmap.core.enums import Backend, CancelPolicy, WorkerState
from fanmap.core.errors import (
    AbortedError,
    BindingExportError,
    DuplicateResultError,
    ErrorCategory,
    ErrorContext,
    FanmapError,
    InvalidConfigError,
    ItemError,
    MissingBindingError,
    NotRunError,
    RemoteException,
    RunAbortedError,
    TaskError,
    TimedOutError,
    UnpicklableTaskError,
    UnsupportedBackendError,
    WorkerCrashedError,
)
from fanmap.core.logging import configure_logging, get_logger

__all__ = [
    "available_parallelism",
    "fork_supported",
    "Backend",
    "CancelPolicy",
    "WorkerState",
    "ErrorCategory",
    "ErrorContext",
    "FanmapError",
    "UnsupportedBackendError",
    "InvalidConfigError",
    "UnpicklableTaskError",
    "BindingExportError",
    "DuplicateResultError",
    "RunAbortedError",
    "ItemError",
    "TaskError",
    "MissingBindingError",
    "WorkerCrashedError",
    "TimedOutError",
    "AbortedError",
    "NotRunError",
    "RemoteException",
    "configure_logging",
    "get_logger",
]
