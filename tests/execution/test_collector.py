"""Tests for ResultCollector, ResultSlot and RunResult."""

import threading

import pytest

from fanmap.core.errors import (
    AbortedError,
    DuplicateResultError,
    NotRunError,
    RunAbortedError,
    TaskError,
)
from fanmap.execution.collector import ResultCollector, ResultSlot, RunResult


class TestResultSlot:
    def test_empty_slot(self):
        slot = ResultSlot(index=0)
        assert not slot.completed
        assert not slot.ok
        assert isinstance(slot.outcome, NotRunError)

    def test_success(self):
        slot = ResultSlot.success(2, "v", worker_id=1)
        assert slot.ok
        assert slot.outcome == "v"
        assert slot.attempts == 1

    def test_failure(self):
        err = TaskError(2, ValueError("bad"))
        slot = ResultSlot.failure(2, err)
        assert slot.completed
        assert not slot.ok
        assert slot.outcome is err
        assert slot.value is None


class TestResultCollector:
    def test_collect_out_of_order_finalizes_in_order(self):
        collector = ResultCollector(4)
        for index in (3, 1, 0, 2):
            collector.collect(ResultSlot.success(index, index * 10))
        result = collector.finalize(timeout=1)
        assert list(result) == [0, 10, 20, 30]
        assert result.ok

    def test_duplicate_write_rejected(self):
        collector = ResultCollector(2)
        collector.collect(ResultSlot.success(0, "a"))
        with pytest.raises(DuplicateResultError):
            collector.collect(ResultSlot.success(0, "b"))
        assert collector.filled == 1

    def test_index_out_of_range(self):
        collector = ResultCollector(1)
        with pytest.raises(IndexError):
            collector.collect(ResultSlot.success(1, "x"))

    def test_incomplete_slot_rejected(self):
        with pytest.raises(ValueError):
            ResultCollector(1).collect(ResultSlot(index=0))

    def test_pending_and_is_filled(self):
        collector = ResultCollector(3)
        collector.collect(ResultSlot.success(1, "x"))
        assert collector.pending() == [0, 2]
        assert collector.is_filled(1)
        assert not collector.is_filled(0)
        assert not collector.is_complete

    def test_empty_collector_is_complete(self):
        result = ResultCollector(0).finalize(timeout=0)
        assert len(result) == 0
        assert result.ok

    def test_finalize_times_out(self):
        with pytest.raises(TimeoutError):
            ResultCollector(1).finalize(timeout=0.01)

    def test_abort_wakes_finalize(self):
        collector = ResultCollector(3)
        collector.collect(ResultSlot.success(0, "done"))
        timer = threading.Timer(0.05, collector.abort, args=("all workers lost",))
        timer.start()
        result = collector.finalize(timeout=5)
        assert result.aborted
        assert result.abort_reason == "all workers lost"
        assert result.unfinished == [1, 2]
        assert result[0] == "done"
        assert isinstance(result[1], NotRunError)

    def test_abort_is_idempotent(self):
        collector = ResultCollector(1)
        collector.abort("first")
        collector.abort("second")
        assert collector.finalize(timeout=0).abort_reason == "first"

    def test_concurrent_collect(self):
        collector = ResultCollector(200)

        def fill(start):
            for index in range(start, 200, 4):
                collector.collect(ResultSlot.success(index, index))

        threads = [threading.Thread(target=fill, args=(s,)) for s in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert list(collector.finalize(timeout=1)) == list(range(200))


class TestRunResult:
    def _mixed(self) -> RunResult:
        slots = [
            ResultSlot.success(0, "a"),
            ResultSlot.failure(1, TaskError(1, KeyError("k"))),
            ResultSlot.failure(2, AbortedError(2, "cancelled")),
            ResultSlot(index=3),
        ]
        return RunResult(slots, aborted=True, abort_reason="cancelled", run_id="r")

    def test_sequence_protocol(self):
        result = self._mixed()
        assert len(result) == 4
        assert result[0] == "a"
        assert isinstance(result[1], TaskError)
        assert isinstance(result[-1], NotRunError)
        assert result[:1] == ["a"]

    def test_unfinished_includes_aborted_and_empty(self):
        assert self._mixed().unfinished == [2, 3]

    def test_values_and_errors(self):
        result = self._mixed()
        assert result.values() == ["a"]
        assert sorted(result.errors()) == [1, 2]

    def test_raise_on_error_for_aborted_run(self):
        with pytest.raises(RunAbortedError) as exc_info:
            self._mixed().raise_on_error()
        assert exc_info.value.unfinished == [2, 3]

    def test_raise_on_error_raises_first_item_error(self):
        result = RunResult([ResultSlot.success(0, 1), ResultSlot.failure(1, TaskError(1, ValueError()))])
        with pytest.raises(TaskError):
            result.raise_on_error()

    def test_raise_on_error_returns_values(self):
        result = RunResult([ResultSlot.success(0, 1), ResultSlot.success(1, 2)])
        assert result.raise_on_error() == [1, 2]

    def test_to_dict(self):
        d = self._mixed().to_dict()
        assert d["total"] == 4
        assert d["succeeded"] == 1
        assert d["failed"] == 2
        assert d["aborted"] is True
