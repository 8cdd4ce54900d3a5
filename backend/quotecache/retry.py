"""Retry with exponential backoff, steeper for rate-limit responses."""

from typing import Callable, Optional, TypeVar
import logging
import time

from .errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryExhausted(Exception):
    """Raised after every attempt of an operation failed."""

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class RetryExecutor:
    """
    Re-invokes a fallible operation with exponential delay.

    Delays for attempt n (0-based):
    - rate limited:  initial_delay_ms * 2**n * 2
    - other errors:  initial_delay_ms * 2**n

    Rate-limit retries count toward max_retries like any other failure.
    The executor knows nothing about what the operation does.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay_ms: int = 1000,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self._sleep = sleep

    def backoff_ms(self, attempt: int, rate_limited: bool, initial_delay_ms: Optional[int] = None) -> int:
        """Delay before the attempt following `attempt`."""
        base = self.initial_delay_ms if initial_delay_ms is None else initial_delay_ms
        delay = base * (2 ** attempt)
        if rate_limited:
            delay *= 2
        return delay

    def execute(
        self,
        operation: Callable[[], T],
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None
    ) -> T:
        """
        Run operation until it succeeds or attempts run out.

        Raises:
            RetryExhausted: wrapping the last observed error
        """
        attempts = self.max_retries if max_retries is None else max_retries
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return operation()
            except Exception as e:
                last_error = e
                if attempt >= attempts - 1:
                    break

                rate_limited = isinstance(e, RateLimitError)
                delay_ms = self.backoff_ms(attempt, rate_limited, initial_delay_ms)
                kind = 'Rate limited' if rate_limited else 'Attempt failed'
                logger.warning(
                    f"{kind} ({attempt + 1}/{attempts}): {e}; retrying in {delay_ms}ms"
                )
                self._sleep(delay_ms / 1000.0)

        logger.error(f"Giving up after {attempts} attempt(s): {last_error}")
        raise RetryExhausted(last_error, attempts) from last_error
