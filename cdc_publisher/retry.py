"""Tenacity retry wrapper driven by RetryConfig."""

from __future__ import annotations

import time
from collections.abc import Callable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base

from .config import RetryConfig


class stop_at_deadline(stop_base):
    """Stop once the ``time.monotonic()`` *deadline* has passed."""

    def __init__(self, deadline: float) -> None:
        self.deadline = deadline

    def __call__(self, retry_state) -> bool:
        return time.monotonic() >= self.deadline


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    deadline: float | None = None,
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Usage::

        @with_retry(config.retry, retryable_exceptions=(UnpublishedEventsError,))
        async def attempt() -> None: ...
    """
    stop = stop_after_attempt(config.max_attempts)
    if deadline is not None:
        stop = stop | stop_at_deadline(deadline)
    return retry(
        stop=stop,
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        reraise=True,
    )
