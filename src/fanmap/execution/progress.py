"""Progress reporting - an opt-in observer notified once per completed item.

Reporters see completions in the order they physically happen, which is not
submission order.  They are a side channel: nothing they do changes the
ordered ``RunResult``.

Example::

    def on_progress(index, slot):
        print(f"item {index} done (ok={slot.ok})")

    run(items, fn, on_progress=on_progress)
    run(items, fn, on_progress=LoggingReporter(total=len(items)))
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from fanmap.core.logging import get_logger

if TYPE_CHECKING:
    from .collector import ResultSlot

logger = get_logger(__name__)

ProgressCallback = Callable[[int, "ResultSlot"], None]


@runtime_checkable
class ProgressReporter(Protocol):
    """Observer called after each item's slot is populated.

    Implementations that keep state must guard it themselves; the engine
    does not serialize calls on their behalf.
    """

    def on_item_completed(self, index: int, slot: ResultSlot) -> None: ...


class CallbackReporter:
    """Adapts a plain ``callback(index, slot)`` to :class:`ProgressReporter`."""

    def __init__(self, callback: ProgressCallback):
        self._callback = callback

    def on_item_completed(self, index: int, slot: ResultSlot) -> None:
        self._callback(index, slot)


class LoggingReporter:
    """Logs ``progress.item_completed`` with a running completed/total count."""

    def __init__(self, total: int | None = None, every: int = 1):
        if every < 1:
            raise ValueError("every must be at least 1")
        self.total = total
        self.every = every
        self._completed = 0
        self._failed = 0
        self._lock = threading.Lock()

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    def on_item_completed(self, index: int, slot: ResultSlot) -> None:
        with self._lock:
            self._completed += 1
            if not slot.ok:
                self._failed += 1
            completed = self._completed
            failed = self._failed
        if completed % self.every == 0 or completed == self.total:
            logger.info(
                "progress.item_completed",
                index=index,
                ok=slot.ok,
                completed=completed,
                failed=failed,
                total=self.total,
            )


def as_reporter(
    on_progress: ProgressReporter | ProgressCallback | None,
) -> ProgressReporter | None:
    """Normalise the ``on_progress`` option to a reporter (or None)."""
    if on_progress is None:
        return None
    if isinstance(on_progress, ProgressReporter):
        return on_progress
    if callable(on_progress):
        return CallbackReporter(on_progress)
    raise TypeError(f"on_progress must be callable or a ProgressReporter, got {type(on_progress).__name__}")


def notify(reporter: ProgressReporter | None, slot: ResultSlot) -> None:
    """Deliver one completion to the reporter.

    A failing reporter is logged and otherwise ignored so an observer bug
    cannot corrupt the run.
    """
    if reporter is None:
        return
    try:
        reporter.on_item_completed(slot.index, slot)
    except Exception:
        logger.exception("progress.reporter_failed", index=slot.index)


__all__ = [
    "ProgressCallback",
    "ProgressReporter",
    "CallbackReporter",
    "LoggingReporter",
    "as_reporter",
    "notify",
]
