"""
Task functions used across the test suite.

They live at module level in an importable package so that spawned
workers can unpickle them by reference.
"""

from __future__ import annotations

import math
import os
import time
from pathlib import Path
from typing import Any


class DomainError(Exception):
    """A task-level failure the caller cares about."""


class UnpicklableError(Exception):
    """An exception carrying a lock, so it cannot cross a pipe."""

    def __init__(self, message: str):
        import threading

        super().__init__(message)
        self.lock = threading.Lock()


def square(x: int) -> int:
    return x * x


def sqrt(x: float) -> float:
    return math.sqrt(x)


def identity(x: Any) -> Any:
    return x


def sleep_then_return(item: tuple[float, Any]) -> Any:
    """``(seconds, value)`` -> value after sleeping."""
    seconds, value = item
    time.sleep(seconds)
    return value


def sqrt_with_delay(x: float) -> float:
    """Later items finish first: item 0 is the slowest."""
    time.sleep(0.3 if x == 4 else 0.0)
    return math.sqrt(x)


def fail_on_odd(x: int) -> int:
    if x % 2:
        raise DomainError(f"odd input {x}")
    return x


def raise_unpicklable(x: Any) -> Any:
    raise UnpicklableError(f"cannot ship {x}")


def return_unpicklable(x: Any) -> Any:
    import threading

    return threading.Lock()


def slow_then_raise(x: Any) -> Any:
    """The "slow" item sleeps 50ms and raises; anything else returns at once."""
    if x == "slow":
        time.sleep(0.05)
        raise DomainError("too late to matter")
    return x


def hang_on(x: Any) -> Any:
    """The "hang" item sleeps for a long time; anything else returns at once."""
    if x == "hang":
        time.sleep(30)
    return x


def crash_on(x: Any) -> Any:
    """The "crash" item kills its worker process outright."""
    if x == "crash":
        os._exit(13)
    return x


def scale(x: int) -> int:
    """Multiply by FACTOR, a name this module never defines.

    Only resolvable inside an isolated worker after FACTOR is exported.
    """
    return x * FACTOR  # noqa: F821


def scale_when_large(x: int) -> int:
    """Needs FACTOR only for inputs above 10."""
    if x > 10:
        return x * FACTOR  # noqa: F821
    return x


def binding_value(name: str) -> Any:
    from fanmap import get_binding

    return get_binding(name)


def mutate_global(x: int) -> int:
    """Appends to module state; returns how many entries this worker has seen."""
    SEEN.append(x)
    return len(SEEN)


SEEN: list[int] = []


def touch(path: str) -> str:
    Path(path).write_text("ran", encoding="utf-8")
    return path


def flaky_once(item: tuple[str, int]) -> int:
    """Fails the first time it sees ``marker`` (tracked on disk), then succeeds."""
    marker, value = item
    flag = Path(marker)
    if not flag.exists():
        flag.write_text("1", encoding="utf-8")
        raise DomainError("first attempt fails")
    return value
