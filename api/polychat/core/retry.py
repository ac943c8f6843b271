"""Reusable exponential-backoff retry policy built on tenacity.

One policy object describes how an operation is retried: how many attempts,
the backoff curve, which failures are worth another attempt, and an optional
per-failure minimum delay (for example a rate limit's Retry-After).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)


def _always(_: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter, parameterized per call site.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Cap applied to the exponential curve.
        is_retryable: Predicate deciding whether a failure gets another attempt.
        min_delay_for: Optional hint returning a floor delay for a failure.
        max_hint_delay: Upper bound applied to that floor.
        sleep: Awaitable sleep function (swapped out in tests).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    is_retryable: Callable[[BaseException], bool] = _always
    min_delay_for: Optional[Callable[[BaseException], Optional[float]]] = None
    max_hint_delay: Optional[float] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def _wait(self, retry_state: RetryCallState) -> float:
        backoff = wait_exponential_jitter(
            initial=self.base_delay,
            max=self.max_delay,
            jitter=self.base_delay * 0.1,
        )
        delay = backoff(retry_state)
        if self.min_delay_for is None or retry_state.outcome is None:
            return delay
        error = retry_state.outcome.exception()
        floor = self.min_delay_for(error) if error is not None else None
        if floor:
            if self.max_hint_delay is not None:
                floor = min(floor, self.max_hint_delay)
            delay = max(delay, floor)
        return delay

    def retrying(self) -> AsyncRetrying:
        """Build a fresh tenacity controller for one logical operation."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )

    async def call(
        self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Run ``fn`` under this policy, re-raising the last failure."""
        return await self.retrying()(fn, *args, **kwargs)
