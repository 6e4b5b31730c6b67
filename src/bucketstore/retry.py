"""
Exponential backoff and retry of classified transient failures
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    stop_any,
    stop_never,
    wait_exponential_jitter,
)

from .error import RetriesExhaustedException

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Returned by ExponentialBackOff.next_backoff() once the policy gives up.
STOP = None


@dataclass(frozen=True)
class BackOffPolicy:
    """Backoff configuration shared by every retrying call site."""

    initial_interval: float = 0.5
    multiplier: float = 1.5
    randomization_factor: float = 0.5
    max_interval: float = 60.0
    max_elapsed_time: float = 900.0
    max_attempts: Optional[int] = None

    def validate(self) -> None:
        if self.initial_interval < 0:
            raise ValueError(f"initial_interval must be >= 0, got {self.initial_interval}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if not 0 <= self.randomization_factor < 1:
            raise ValueError(
                f"randomization_factor must be in [0, 1), got {self.randomization_factor}"
            )
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def new_backoff(self, clock: Callable[[], float] = time.monotonic) -> "ExponentialBackOff":
        return ExponentialBackOff(self, clock)

    def retrying(
        self,
        is_retryable: Callable[[BaseException], bool],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        reraise: bool = False,
    ) -> AsyncRetrying:
        stops = []
        if self.max_elapsed_time > 0:
            stops.append(stop_after_delay(self.max_elapsed_time))
        if self.max_attempts is not None:
            stops.append(stop_after_attempt(self.max_attempts))
        stop = stop_any(*stops) if stops else stop_never
        return AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            wait=wait_exponential_jitter(
                initial=self.initial_interval,
                exp_base=self.multiplier,
                max=self.max_interval,
                jitter=self.initial_interval * self.randomization_factor,
            ),
            stop=stop,
            sleep=sleep,
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=reraise,
        )


class ExponentialBackOff:
    """
    Stateful backoff schedule for a single logical operation.

    next_backoff() returns the number of seconds to wait before the next
    attempt, or STOP once the attempt or elapsed-time budget is spent.
    """

    def __init__(self, policy: BackOffPolicy, clock: Callable[[], float] = time.monotonic):
        self._policy = policy
        self._clock = clock
        self._current_interval = policy.initial_interval
        self._start = clock()
        self._attempts = 0

    def reset(self) -> None:
        self._current_interval = self._policy.initial_interval
        self._start = self._clock()
        self._attempts = 0

    def next_backoff(self) -> Optional[float]:
        policy = self._policy
        self._attempts += 1
        if policy.max_attempts is not None and self._attempts >= policy.max_attempts:
            return STOP
        if self._clock() - self._start > policy.max_elapsed_time:
            return STOP

        delta = policy.randomization_factor * self._current_interval
        interval = random.uniform(self._current_interval - delta, self._current_interval + delta)
        self._current_interval = min(self._current_interval * policy.multiplier, policy.max_interval)
        return interval


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool],
    policy: Optional[BackOffPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run operation, retrying it under backoff while is_retryable classifies the failure.

    Unclassified failures propagate immediately. Running out of backoff budget
    raises RetriesExhaustedException chained to the last failure.
    """
    if policy is None:
        policy = BackOffPolicy()

    try:
        async for attempt in policy.retrying(is_retryable, sleep):
            with attempt:
                return await operation()
    except RetryError as ex:
        last = ex.last_attempt.exception()
        raise RetriesExhaustedException(
            f"Retries exhausted for {description} after {ex.last_attempt.attempt_number} attempts: {last}"
        ) from last
