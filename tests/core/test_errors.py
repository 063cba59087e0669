"""Tests for fanmap.core.errors module."""

import pickle

import pytest

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
    categorize_error,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.index is None
        assert ctx.worker_id is None
        assert ctx.metadata == {}
        assert ctx.to_dict() == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields plus metadata."""
        ctx = ErrorContext(index=3, backend="fork", metadata={"extra": 1})
        d = ctx.to_dict()
        assert d == {"index": 3, "backend": "fork", "extra": 1}
        assert "worker_id" not in d


class TestFanmapError:
    """Test the base error."""

    def test_defaults(self):
        err = FanmapError("boom")
        assert err.message == "boom"
        assert str(err) == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.cause is None

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        err = FanmapError("outer", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "inner"

    def test_with_context_sets_known_fields_and_metadata(self):
        err = FanmapError("x").with_context(worker_id=2, attempt=1, shard="a")
        assert err.context.worker_id == 2
        assert err.context.attempt == 1
        assert err.context.metadata == {"shard": "a"}

    def test_to_dict(self):
        d = FanmapError("x", category=ErrorCategory.TASK, retryable=True).to_dict()
        assert d["error_type"] == "FanmapError"
        assert d["category"] == "TASK"
        assert d["retryable"] is True

    def test_repr(self):
        assert repr(FanmapError("x")) == "FanmapError('x', category=INTERNAL)"


class TestRunLevelErrors:
    def test_unsupported_backend(self):
        err = UnsupportedBackendError("fork")
        assert err.backend == "fork"
        assert err.category == ErrorCategory.PLATFORM
        assert err.context.backend == "fork"
        assert "fork" in str(err)

    def test_invalid_config(self):
        err = InvalidConfigError("worker_count", 0)
        assert err.key == "worker_count"
        assert err.value == 0
        assert err.category == ErrorCategory.CONFIG

    def test_unpicklable_task_names_the_task(self):
        err = UnpicklableTaskError(lambda x: x, TypeError("nope"))
        assert "<lambda>" in str(err)
        assert isinstance(err.cause, TypeError)

    def test_binding_export(self):
        err = BindingExportError("LOCK")
        assert err.name == "LOCK"

    def test_duplicate_result(self):
        err = DuplicateResultError(4)
        assert err.index == 4
        assert err.context.index == 4

    def test_run_aborted(self):
        err = RunAbortedError("all workers lost", [3, 4])
        assert err.unfinished == [3, 4]
        assert "all workers lost" in str(err)


class TestItemErrors:
    def test_item_error_records_index_in_context(self):
        err = ItemError(7, "x")
        assert err.index == 7
        assert err.context.index == 7

    def test_task_error_keeps_original_exception(self):
        cause = KeyError("k")
        err = TaskError(1, cause, traceback="tb")
        assert err.cause is cause
        assert err.traceback == "tb"
        assert err.category == ErrorCategory.TASK
        assert err.retryable is True

    def test_missing_binding_is_not_retryable(self):
        err = MissingBindingError(2, "FACTOR")
        assert err.name == "FACTOR"
        assert err.category == ErrorCategory.BINDING
        assert err.retryable is False
        assert "FACTOR" in str(err)

    def test_worker_crashed(self):
        err = WorkerCrashedError(0, worker_id=3, exitcode=-9)
        assert err.exitcode == -9
        assert err.context.worker_id == 3
        assert err.retryable is True

    def test_timed_out_message_includes_elapsed(self):
        err = TimedOutError(0, 0.5, elapsed=0.75)
        assert err.timeout == 0.5
        assert "0.75" in str(err)
        assert err.category == ErrorCategory.TIMEOUT

    def test_aborted_and_not_run(self):
        assert AbortedError(1, "cancelled").reason == "cancelled"
        assert NotRunError(2).category == ErrorCategory.CANCELLED


class TestRemoteException:
    def test_str(self):
        exc = RemoteException("LockError", "cannot pickle", "Traceback ...")
        assert str(exc) == "LockError: cannot pickle"

    def test_round_trips_through_pickle(self):
        exc = RemoteException("LockError", "cannot pickle", "tb")
        copy = pickle.loads(pickle.dumps(exc))
        assert copy.type_name == "LockError"
        assert copy.traceback == "tb"


class TestHelpers:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (TaskError(0, ValueError()), True),
            (TimedOutError(0, 1.0), True),
            (WorkerCrashedError(0, 0), True),
            (MissingBindingError(0, "X"), False),
            (ValueError("plain"), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_categorize_error(self):
        assert categorize_error(TimedOutError(0, 1.0)) == ErrorCategory.TIMEOUT
        assert categorize_error(TimeoutError()) == ErrorCategory.TIMEOUT
        assert categorize_error(ValueError()) == ErrorCategory.TASK
