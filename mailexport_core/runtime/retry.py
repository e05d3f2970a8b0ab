"""
Bounded retries for remote calls that are safe to repeat.

Status queries, listings and allow-list mutations are wrapped with
``with_retry``. Export creation never is: a repeated creation call could
start a second job.

Retry pauses go through an injectable sleep and stop early when the caller's
cancel event is set, so a cancelled poll never issues another request.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from .errors import RetryableError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]
OnRetry = Callable[[int, RetryableError, float], None]


class RetryPolicy(BaseModel):
    """
    Transport retry budget.

    The pause before retry ``n`` (0 for the first retry) is
    ``min(base_delay * exponential_base ** n, max_delay)``, plus up to 25%
    random jitter when ``jitter`` is on.
    """

    max_attempts: int = Field(default=3, ge=1, description="Attempts including the first")
    base_delay: float = Field(default=0.5, ge=0.0, description="Seconds before the first retry")
    max_delay: float = Field(default=10.0, ge=0.0)
    exponential_base: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    transient_statuses: tuple[int, ...] = (429, 502, 503, 504)

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        from mailexport_core.config import settings

        return cls(
            max_attempts=settings.TRANSPORT_MAX_ATTEMPTS,
            base_delay=settings.TRANSPORT_BASE_DELAY_SECONDS,
            max_delay=settings.TRANSPORT_MAX_DELAY_SECONDS,
        )

    def delay_for(self, retry_index: int) -> float:
        """Seconds to pause before retry number ``retry_index``."""
        delay = min(self.base_delay * self.exponential_base**retry_index, self.max_delay)
        if self.jitter:
            delay += delay * 0.25 * random.random()
        return delay

    def is_transient_status(self, status_code: int) -> bool:
        """True for HTTP statuses worth asking again later."""
        return status_code in self.transient_statuses


def _consume_outcome(task: asyncio.Future) -> None:
    # Nobody awaits an abandoned task; mark its exception retrieved
    if not task.cancelled():
        task.exception()


async def wait_or_cancel(
    awaitable: Awaitable[T], cancel_event: asyncio.Event | None
) -> tuple[bool, T | None]:
    """
    Await ``awaitable`` unless ``cancel_event`` is set first.

    Returns:
        (cancelled, result). When cancelled the awaitable is abandoned and
        any result or error it produces is discarded.
    """
    if cancel_event is None:
        return False, await awaitable

    work = asyncio.ensure_future(awaitable)
    stopper = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, stopper):
            if not task.done():
                task.cancel()

    if cancel_event.is_set():
        work.add_done_callback(_consume_outcome)
        return True, None
    return False, work.result()


def with_retry(
    policy: RetryPolicy | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
    cancel_event: asyncio.Event | None = None,
    on_retry: OnRetry | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry an async callable on RetryableError.

    Terminal errors propagate at once. After the last attempt, or when
    ``cancel_event`` is set before or during a pause, the most recent
    retryable error is raised.

    Args:
        policy: Attempt budget and pauses; defaults to settings.
        sleep: Suspends between attempts.
        cancel_event: Stops retrying as soon as it is set.
        on_retry: Called as ``(retry_index, error, delay)`` before each pause.

    Example:
        fetch = with_retry(policy, cancel_event=stop)(poller.query_once)
        job = await fetch(key)
    """
    retry_policy = policy or RetryPolicy.from_settings()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = getattr(func, "__name__", repr(func))

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    if attempt >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] {name} failed after {attempt} attempts: {e.message_safe}"
                        )
                        raise
                    if cancel_event is not None and cancel_event.is_set():
                        raise

                    delay = retry_policy.delay_for(attempt - 1)
                    logger.info(
                        f"[{e.debug_id}] {name} attempt {attempt}/{retry_policy.max_attempts} "
                        f"failed, retrying in {delay:.2f}s: {e.message_safe}"
                    )
                    if on_retry:
                        on_retry(attempt - 1, e, delay)

                    cancelled, _ = await wait_or_cancel(sleep(delay), cancel_event)
                    if cancelled:
                        logger.debug(f"[{e.debug_id}] {name} retry abandoned on cancel")
                        raise

        return wrapper

    return decorator
