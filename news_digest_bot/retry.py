"""Exponential backoff retry policy."""

import random
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from .errors import RetryExhaustedError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff with bounded jitter and a wall-clock ceiling.

    Attributes:
        max_attempts: Total attempts, the first one included
        base_delay: Delay in seconds before the second attempt
        multiplier: Factor applied to the delay after each failure
        max_delay: Cap for a single delay
        jitter: Extra random delay as a fraction of the computed delay (0 disables)
        max_elapsed: Ceiling in seconds for the whole call, sleeps included
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter: float = 0.0
    max_elapsed: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays and jitter must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry, max_attempts - 1 values in total."""
        delay = self.base_delay
        for _ in range(self.max_attempts - 1):
            capped = min(delay, self.max_delay)
            if self.jitter:
                capped += random.uniform(0, self.jitter * capped)
            yield capped
            delay *= self.multiplier

    def call(
        self,
        operation: Callable[[], T],
        is_transient: Callable[[Exception], bool],
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> T:
        """Run operation, retrying transient failures.

        Non-transient exceptions propagate unchanged on the first occurrence.

        Raises:
            RetryExhaustedError: When attempts or the time budget run out
        """
        started = time.monotonic()
        delays = self.delays()
        attempt = 0

        while True:
            attempt += 1
            try:
                return operation()
            except Exception as e:
                if not is_transient(e):
                    raise
                delay = next(delays, None)
                if delay is None:
                    raise RetryExhaustedError(attempt, e) from e
                if time.monotonic() - started + delay > self.max_elapsed:
                    raise RetryExhaustedError(attempt, e) from e
                if on_retry:
                    on_retry(attempt, e, delay)
                time.sleep(delay)
