"""Tests for progress reporters."""

import threading

import pytest

from fanmap.core.errors import TaskError
from fanmap.execution.collector import ResultSlot
from fanmap.execution.progress import (
    CallbackReporter,
    LoggingReporter,
    ProgressReporter,
    as_reporter,
    notify,
)


class TestAsReporter:
    def test_none_means_no_reporter(self):
        assert as_reporter(None) is None

    def test_callable_is_wrapped(self):
        seen = []
        reporter = as_reporter(lambda index, slot: seen.append(index))
        assert isinstance(reporter, CallbackReporter)
        reporter.on_item_completed(3, ResultSlot.success(3, "x"))
        assert seen == [3]

    def test_reporter_passes_through(self):
        reporter = LoggingReporter()
        assert as_reporter(reporter) is reporter
        assert isinstance(reporter, ProgressReporter)

    def test_rejects_non_callable(self):
        with pytest.raises(TypeError):
            as_reporter(42)  # type: ignore[arg-type]


class TestNotify:
    def test_noop_without_reporter(self):
        notify(None, ResultSlot.success(0, 1))

    def test_reporter_exception_is_contained(self):
        def broken(index, slot):
            raise RuntimeError("observer bug")

        notify(as_reporter(broken), ResultSlot.success(0, 1))


class TestLoggingReporter:
    def test_counts_completed_and_failed(self):
        reporter = LoggingReporter(total=3)
        reporter.on_item_completed(0, ResultSlot.success(0, 1))
        reporter.on_item_completed(1, ResultSlot.failure(1, TaskError(1, ValueError())))
        assert reporter.completed == 2
        assert reporter.failed == 1

    def test_thread_safe_counting(self):
        reporter = LoggingReporter(every=1000)
        slot = ResultSlot.success(0, 1)

        def hammer():
            for _ in range(500):
                reporter.on_item_completed(0, slot)

        threads = [threading.Thread(target=hammer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert reporter.completed == 2000

    def test_every_must_be_positive(self):
        with pytest.raises(ValueError):
            LoggingReporter(every=0)
