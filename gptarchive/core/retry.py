"""Retry policy shared by every network call.

Delays grow exponentially from ``base_delay`` with up to 30% jitter and are
capped at ``max_delay``. Authentication failures, validation failures and
"resource gone" statuses are raised on first occurrence.

Example:
    >>> policy = BackoffPolicy(max_retries=5, base_delay=1.0, max_delay=60.0)
    >>> detail = await policy.execute(lambda: client.get(url))
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from gptarchive.errors import RateLimitError, is_retryable

T = TypeVar("T")

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0
JITTER_FRACTION = 0.3

RetryObserver = Callable[[BaseException, int, float], None]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    honor_retry_after: bool = True

    def compute_delay(self, attempt: int, *, jitter: float | None = None) -> float:
        """Delay before retrying after the 0-based ``attempt`` failed.

        ``jitter`` overrides the random component (useful for deterministic
        callers); it is added to the exponential delay before capping.
        """
        exponential = self.base_delay * (2**attempt)
        if jitter is None:
            jitter = random.random() * JITTER_FRACTION * exponential
        return min(exponential + jitter, self.max_delay)

    def delay_for(self, attempt: int, error: BaseException | None) -> float:
        if self.honor_retry_after and isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(max(0.0, error.retry_after), self.max_delay)
        return self.compute_delay(attempt)

    def with_retries(self, max_retries: int) -> BackoffPolicy:
        return replace(self, max_retries=max(0, max_retries))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryObserver | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self.max_retries, 0) + 1),
            wait=_BackoffWait(self),
            retry=retry_if_exception(is_retryable),
            before_sleep=_notify(on_retry),
            sleep=sleep,
            reraise=True,
        )
        return await retrying(operation)


class _BackoffWait(wait_base):
    """tenacity wait strategy delegating to a BackoffPolicy."""

    def __init__(self, policy: BackoffPolicy) -> None:
        self._policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        # tenacity counts attempts from 1
        return self._policy.delay_for(retry_state.attempt_number - 1, error)


def _notify(observer: RetryObserver | None) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.debug(
            "retrying_request",
            attempt=retry_state.attempt_number,
            delay=round(delay, 3),
            error=str(error),
        )
        if observer is not None and error is not None:
            observer(error, retry_state.attempt_number, delay)

    return before_sleep


__all__ = [
    "BackoffPolicy",
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_DELAY",
    "DEFAULT_MAX_RETRIES",
    "RetryObserver",
]
