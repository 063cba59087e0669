"""Retry strategies for failed work items.

Retries are off by default (``retry_count=0``).  When enabled, the dispatcher
asks the strategy whether a failed item goes back on the queue and how long
to hold it before it becomes dispatchable again.

Only errors flagged ``retryable`` are retried: task failures, worker crashes
and timeouts.  A missing binding fails the same way on every attempt, so it
is never retried.

Example:
    >>> from fanmap.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_retries=3, base_delay=0.1)
    >>> [round(strategy.next_delay(a), 2) for a in range(3)]
    [0.1, 0.2, 0.4]
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass

from fanmap.core.errors import is_retryable


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_retries: int

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next retry.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds before the item may be dispatched again
        """
        ...

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Determine if another retry should be attempted.

        Args:
            attempt: Retries already made for this item
            error: The error the last attempt produced
        """
        if attempt >= self.max_retries:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    max_retries: int = 0

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        return False


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    max_retries: int = 3
    delay: float = 0.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter
    """

    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


def strategy_for(
    retry_count: int,
    retry_delay: float = 0.0,
    backoff: float = 1.0,
    jitter: bool = False,
) -> RetryStrategy:
    """Build the strategy implied by the ``retry_*`` options.

    ``backoff`` multiplies the delay after every retry; 1.0 keeps it
    constant.  ``jitter`` spreads each delay by up to 25% either way.
    """
    if retry_count <= 0:
        return NoRetry()
    if backoff == 1.0 and not jitter:
        return ConstantBackoff(max_retries=retry_count, delay=retry_delay)
    return ExponentialBackoff(
        max_retries=retry_count,
        base_delay=retry_delay,
        max_delay=max(retry_delay, ExponentialBackoff.max_delay),
        multiplier=backoff,
        jitter=jitter,
    )


__all__ = [
    "RetryStrategy",
    "NoRetry",
    "ConstantBackoff",
    "ExponentialBackoff",
    "strategy_for",
]
