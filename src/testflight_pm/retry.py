"""Reusable exponential backoff policy built on tenacity.

The request executor, the duplicate detector, the label resolver and the
screenshot downloader all retry the same way: a bounded number of attempts,
``base_delay * 2 ** (attempt - 1)`` seconds between them, optional relative
jitter, and a predicate deciding which exceptions are worth another attempt.

Usage::

    policy = BackoffPolicy(max_attempts=3, base_delay=2.0, name="duplicate-search")
    try:
        async for attempt in policy.retrying(sleep=self._sleep):
            with attempt:
                return await do_work()
    except RetryError as exc:
        raise SomeError(str(last_exception(exc))) from last_exception(exc)
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .common.logging import get_logger

LOGGER = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


@dataclass(frozen=True)
class BackoffPolicy:
    """Attempt budget, delay curve and retry predicate for one kind of call."""

    max_attempts: int = 3
    base_delay: float = 1.0
    jitter_ratio: float = 0.0
    retryable: Callable[[BaseException], bool] = _always
    name: str = "operation"

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter_ratio > 0:
            delay += random.uniform(0, self.jitter_ratio * delay)
        return delay

    def retrying(self, sleep: Optional[SleepFn] = None, **context: Any) -> AsyncRetrying:
        """Build a fresh ``AsyncRetrying`` controller for one logical call.

        Exhaustion raises ``tenacity.RetryError``; a non-retryable exception
        propagates unchanged on the attempt that raised it.
        """
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=_PolicyWait(self),
            retry=retry_if_exception(self.retryable),
            sleep=sleep or asyncio.sleep,
            before_sleep=self._before_sleep(context),
            reraise=False,
        )

    def _before_sleep(self, context: dict) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            LOGGER.warning(
                "Attempt failed, backing off",
                operation=self.name,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                delay_seconds=round(delay, 3),
                error=str(exc),
                **context,
            )

        return log_retry


class _PolicyWait(wait_base):
    def __init__(self, policy: BackoffPolicy) -> None:
        self._policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        return self._policy.delay_for(retry_state.attempt_number)


def last_exception(error: RetryError) -> BaseException:
    """Return the exception raised by the final attempt of an exhausted retry."""
    exc = error.last_attempt.exception()
    return exc if exc is not None else error


SEARCH_POLICY = BackoffPolicy(max_attempts=3, base_delay=2.0, name="duplicate-search")
LABEL_POLICY = BackoffPolicy(max_attempts=3, base_delay=2.0, name="label-resolution")


__all__ = [
    "LABEL_POLICY",
    "SEARCH_POLICY",
    "BackoffPolicy",
    "RetryError",
    "SleepFn",
    "last_exception",
]
