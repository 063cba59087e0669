"""Tests for platform capability checks."""

import multiprocessing as mp
import os

from fanmap.core import capabilities


class TestAvailableParallelism:
    def test_at_least_one(self):
        assert capabilities.available_parallelism() >= 1

    def test_prefers_process_cpu_count(self, monkeypatch):
        monkeypatch.setattr(os, "process_cpu_count", lambda: 3, raising=False)
        assert capabilities.available_parallelism() == 3

    def test_falls_back_to_cpu_count(self, monkeypatch):
        monkeypatch.setattr(os, "process_cpu_count", lambda: None, raising=False)
        monkeypatch.delattr(os, "sched_getaffinity", raising=False)
        monkeypatch.setattr(os, "cpu_count", lambda: None)
        assert capabilities.available_parallelism() == 1


class TestForkSupported:
    def test_matches_start_methods(self):
        assert capabilities.fork_supported() == ("fork" in mp.get_all_start_methods())

    def test_false_without_fork(self, monkeypatch):
        monkeypatch.setattr(mp, "get_all_start_methods", lambda: ["spawn"])
        assert capabilities.fork_supported() is False
