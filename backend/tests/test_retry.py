"""
Tests for the retry executor.

Run with: pytest tests/test_retry.py
From the backend directory.
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from quotecache.errors import RateLimitError, UpstreamCallFailed
from quotecache.retry import RetryExecutor, RetryExhausted


class Flaky:
    """Callable that raises the queued errors, then returns a value."""

    def __init__(self, errors, result='ok'):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_returns_first_success_without_sleeping():
    sleeps = []
    executor = RetryExecutor(3, 1000, sleep=sleeps.append)
    op = Flaky([])

    assert executor.execute(op) == 'ok'
    assert op.calls == 1
    assert sleeps == []


def test_recovers_after_transient_failure():
    sleeps = []
    executor = RetryExecutor(3, 1000, sleep=sleeps.append)
    op = Flaky([UpstreamCallFailed("boom", status_code=500)])

    assert executor.execute(op) == 'ok'
    assert op.calls == 2
    assert sleeps == [1.0]


def test_persistent_rate_limit_stops_at_max_retries():
    sleeps = []
    executor = RetryExecutor(3, 1000, sleep=sleeps.append)
    op = Flaky([RateLimitError() for _ in range(10)])

    with pytest.raises(RetryExhausted) as exc_info:
        executor.execute(op)

    assert op.calls == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, RateLimitError)
    # Rate-limit delays are doubled and there is no sleep after the last attempt
    assert sleeps == [2.0, 4.0]


def test_generic_failures_use_plain_exponential_delay():
    sleeps = []
    executor = RetryExecutor(3, 1000, sleep=sleeps.append)
    op = Flaky([ValueError("bad") for _ in range(3)])

    with pytest.raises(RetryExhausted) as exc_info:
        executor.execute(op)

    assert isinstance(exc_info.value.last_error, ValueError)
    assert sleeps == [1.0, 2.0]


def test_per_call_overrides():
    sleeps = []
    executor = RetryExecutor(3, 1000, sleep=sleeps.append)
    op = Flaky([ValueError("bad") for _ in range(5)])

    with pytest.raises(RetryExhausted):
        executor.execute(op, max_retries=2, initial_delay_ms=10)

    assert op.calls == 2
    assert sleeps == [0.01]


def test_backoff_ms():
    executor = RetryExecutor(3, 500)
    assert executor.backoff_ms(0, rate_limited=False) == 500
    assert executor.backoff_ms(2, rate_limited=False) == 2000
    assert executor.backoff_ms(1, rate_limited=True) == 2000


def test_rejects_zero_retries():
    with pytest.raises(ValueError):
        RetryExecutor(0)
