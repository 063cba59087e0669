"""Tests for retry strategies."""

from fanmap.core.errors import MissingBindingError, TaskError, TimedOutError, WorkerCrashedError
from fanmap.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    strategy_for,
)


class TestNoRetry:
    def test_never_retries(self):
        strategy = NoRetry()
        assert not strategy.should_retry(0, TaskError(0, ValueError()))
        assert strategy.next_delay(0) == 0.0


class TestConstantBackoff:
    def test_retries_up_to_max(self):
        strategy = ConstantBackoff(max_retries=2, delay=0.5)
        error = WorkerCrashedError(0, 1)
        assert strategy.should_retry(0, error)
        assert strategy.should_retry(1, error)
        assert not strategy.should_retry(2, error)
        assert strategy.next_delay(1) == 0.5

    def test_missing_binding_never_retried(self):
        strategy = ConstantBackoff(max_retries=5)
        assert not strategy.should_retry(0, MissingBindingError(0, "X"))

    def test_timeouts_retried(self):
        assert ConstantBackoff(max_retries=1).should_retry(0, TimedOutError(0, 1.0))


class TestExponentialBackoff:
    def test_delays_grow(self):
        strategy = ExponentialBackoff(max_retries=4, base_delay=0.1)
        assert [round(strategy.next_delay(a), 3) for a in range(4)] == [0.1, 0.2, 0.4, 0.8]

    def test_capped_at_max_delay(self):
        strategy = ExponentialBackoff(base_delay=1.0, max_delay=3.0)
        assert strategy.next_delay(10) == 3.0

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=1.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 0.75 <= strategy.next_delay(0) <= 1.25


class TestStrategyFor:
    def test_zero_is_no_retry(self):
        assert isinstance(strategy_for(0), NoRetry)

    def test_positive_is_constant(self):
        strategy = strategy_for(3, 0.2)
        assert isinstance(strategy, ConstantBackoff)
        assert strategy.max_retries == 3
        assert strategy.delay == 0.2

    def test_backoff_is_exponential(self):
        strategy = strategy_for(3, 0.5, backoff=2.0)
        assert isinstance(strategy, ExponentialBackoff)
        assert strategy.max_retries == 3
        assert [strategy.next_delay(a) for a in range(3)] == [0.5, 1.0, 2.0]

    def test_jitter_alone_keeps_delay_centred(self):
        strategy = strategy_for(2, 1.0, jitter=True)
        assert isinstance(strategy, ExponentialBackoff)
        assert strategy.multiplier == 1.0
        for attempt in range(2):
            assert 0.75 <= strategy.next_delay(attempt) <= 1.25

    def test_long_base_delay_is_not_capped_below_itself(self):
        strategy = strategy_for(1, 30.0, backoff=2.0)
        assert strategy.next_delay(0) == 30.0
