"""
Structured error types for fanmap.

Every failure the engine can report is a typed ``FanmapError`` carrying a
category, a retry flag, structured context (item index, worker, backend,
attempt) and an optional chained cause.  Per-item errors are stored in the
item's result slot; run-level errors are raised before dispatch or reported
through ``RunResult``.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        FanmapError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │  Run-level                     Per-item                         │
        │  ─────────                     ────────                         │
        │  UnsupportedBackendError       TaskError                        │
        │  UnpicklableTaskError          MissingBindingError              │
        │  BindingExportError            WorkerCrashedError               │
        │  InvalidConfigError            TimedOutError                    │
        │  RunAbortedError               AbortedError                     │
        │  DuplicateResultError          NotRunError                      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = TimedOutError(3, timeout=0.5)
    >>> err.retryable
    True
    >>> err.to_dict()["category"]
    'TIMEOUT'

    >>> try:
    ...     raise ValueError("bad row")
    ... except ValueError as e:
    ...     err = TaskError(7, cause=e)
    >>> err.cause
    ValueError('bad row')

Tags:
    error-handling, exception-hierarchy, retry-logic, fanmap

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and logging.

    Attributes:
        PLATFORM: The host cannot honour the requested backend
        CONFIG: Invalid configuration or unpicklable inputs
        BINDING: An exported binding is missing in a worker
        WORKER: A worker process/thread died
        TIMEOUT: A per-item deadline expired
        TASK: The task function itself raised
        CANCELLED: Work stopped by cancellation or abort
        INTERNAL: Engine invariant violated
    """

    PLATFORM = "PLATFORM"
    CONFIG = "CONFIG"
    BINDING = "BINDING"
    WORKER = "WORKER"
    TIMEOUT = "TIMEOUT"
    TASK = "TASK"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that are set are emitted by ``to_dict()``, so the dict can be
    splatted straight into a structlog call.

    Attributes:
        index: Submission index of the work item
        worker_id: Worker that was executing the item
        backend: Backend name (fork, isolated, sequential)
        attempt: Attempt number (1 = first dispatch)
        run_id: Identifier of the run
        metadata: Additional key-value pairs
    """

    index: int | None = None
    worker_id: int | None = None
    backend: str | None = None
    attempt: int | None = None
    run_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["index", "worker_id", "backend", "attempt", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FanmapError(Exception):
    """
    Base exception for all fanmap errors.

    Subclasses set ``default_category`` and ``default_retryable``; instances
    may override either.  ``cause`` is chained as ``__cause__`` so tracebacks
    show the underlying exception.

    Examples:
        >>> error = FanmapError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(index=3).context.index
        3
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FanmapError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TaskError(3, cause=exc).with_context(worker_id=1, attempt=0)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RUN-LEVEL ERRORS
# =============================================================================


class UnsupportedBackendError(FanmapError):
    """The platform cannot honour the requested backend.

    Raised by ``acquire()`` before any item is dispatched.
    """

    default_category = ErrorCategory.PLATFORM

    def __init__(self, backend: str, message: str | None = None):
        self.backend = backend
        super().__init__(
            message or f"Backend {backend!r} is not supported on this platform",
            context=ErrorContext(backend=backend),
        )


class InvalidConfigError(FanmapError):
    """A configuration value is invalid."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration {key}={value!r}")


class UnpicklableTaskError(FanmapError):
    """The task function cannot be shipped to isolated workers."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, task: Any, cause: BaseException | None = None):
        self.task_name = getattr(task, "__qualname__", repr(task))
        super().__init__(
            f"Task {self.task_name} cannot be pickled for isolated workers; "
            "define it at module level or use the fork backend",
            cause=cause,
        )


class BindingExportError(FanmapError):
    """An exported binding cannot be snapshotted for isolated workers."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, name: str, cause: BaseException | None = None):
        self.name = name
        super().__init__(f"Binding {name!r} cannot be exported", cause=cause)


class DuplicateResultError(FanmapError):
    """A result slot was written twice."""

    default_category = ErrorCategory.INTERNAL

    def __init__(self, index: int):
        self.index = index
        super().__init__(
            f"Result slot {index} is already populated",
            context=ErrorContext(index=index),
        )


class RunAbortedError(FanmapError):
    """A run stopped before every item completed."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, reason: str, unfinished: list[int]):
        self.reason = reason
        self.unfinished = unfinished
        super().__init__(f"Run aborted ({reason}); {len(unfinished)} item(s) unfinished")


# =============================================================================
# PER-ITEM ERRORS
# =============================================================================


class ItemError(FanmapError):
    """Base for errors recorded in a single item's result slot."""

    def __init__(self, index: int, message: str, **kwargs: Any):
        self.index = index
        super().__init__(message, **kwargs)
        self.context.index = index


class TaskError(ItemError):
    """The task function raised for this item.

    ``cause`` is the exception the task raised, unchanged, when it survived
    the trip back from the worker; otherwise a ``RemoteException``.
    """

    default_category = ErrorCategory.TASK
    default_retryable = True

    def __init__(self, index: int, cause: BaseException, traceback: str | None = None):
        self.traceback = traceback
        super().__init__(
            index,
            f"Task failed for item {index}: {type(cause).__name__}: {cause}",
            cause=cause,
        )


class MissingBindingError(ItemError):
    """An isolated worker evaluated a name that was never exported."""

    default_category = ErrorCategory.BINDING

    def __init__(self, index: int, name: str | None, cause: BaseException | None = None):
        self.name = name
        super().__init__(
            index,
            f"Item {index} referenced unexported binding {name!r}",
            cause=cause,
        )


class WorkerCrashedError(ItemError):
    """The worker died while executing this item."""

    default_category = ErrorCategory.WORKER
    default_retryable = True

    def __init__(self, index: int, worker_id: int, exitcode: int | None = None):
        self.worker_id = worker_id
        self.exitcode = exitcode
        super().__init__(
            index,
            f"Worker {worker_id} crashed while running item {index} (exitcode={exitcode})",
        )
        self.context.worker_id = worker_id


class TimedOutError(ItemError):
    """The item exceeded its per-item deadline."""

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(self, index: int, timeout: float, elapsed: float | None = None):
        self.timeout = timeout
        self.elapsed = elapsed
        msg = f"Item {index} timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(index, msg)


class AbortedError(ItemError):
    """The item was in flight when the run was aborted or hard-cancelled."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, index: int, reason: str = "aborted"):
        self.reason = reason
        super().__init__(index, f"Item {index} aborted: {reason}")


class NotRunError(ItemError):
    """Placeholder for an item that was never executed."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, index: int):
        super().__init__(index, f"Item {index} never ran")


class RemoteException(Exception):
    """Stand-in for a worker exception that could not be pickled."""

    def __init__(self, type_name: str, message: str, traceback: str = ""):
        self.type_name = type_name
        self.message = message
        self.traceback = traceback
        super().__init__(type_name, message, traceback)

    def __str__(self) -> str:
        return f"{self.type_name}: {self.message}"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, FanmapError):
        return error.retryable
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, FanmapError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    return ErrorCategory.TASK


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FanmapError",
    # Run-level
    "UnsupportedBackendError",
    "InvalidConfigError",
    "UnpicklableTaskError",
    "BindingExportError",
    "DuplicateResultError",
    "RunAbortedError",
    # Per-item
    "ItemError",
    "TaskError",
    "MissingBindingError",
    "WorkerCrashedError",
    "TimedOutError",
    "AbortedError",
    "NotRunError",
    "RemoteException",
    # Utilities
    "is_retryable",
    "categorize_error",
]
