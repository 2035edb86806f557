"""Bounded async retry used by the gateways.

The engines never retry on their own: a failed gateway call is fatal to the
current turn. Gateways wrap their SDK calls with :func:`retry_async` so a
transient failure can be absorbed below that boundary.

Two classifiers cover the gateway operations:

- :func:`should_retry_read` for chat turns and batch polling, which are safe
  to repeat.
- :func:`should_retry_side_effect` for batch creation, where an ambiguous
  failure may already have created a job.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from formcast.errors import APIError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)

#: Statuses worth another attempt: timeouts, conflicts, throttling, server faults.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a gateway call is repeated.

    ``max_attempts`` counts the first call, so ``1`` disables retries.
    Delays grow geometrically from ``initial_delay_s`` and are capped by
    ``max_delay_s``; with ``jitter`` each sleep is drawn uniformly from
    ``[0, delay]``. A server-sent Retry-After always wins over a shorter
    computed delay. ``max_elapsed_s`` bounds total time spent sleeping.
    """

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        """Reject values that would make the schedule meaningless."""
        checks = (
            (self.max_attempts >= 1, "max_attempts must be >= 1"),
            (self.initial_delay_s >= 0, "initial_delay_s must be >= 0"),
            (self.backoff_multiplier > 0, "backoff_multiplier must be > 0"),
            (self.max_delay_s >= 0, "max_delay_s must be >= 0"),
            (
                self.max_elapsed_s is None or self.max_elapsed_s >= 0,
                "max_elapsed_s must be >= 0 or None",
            ),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(f"RetryPolicy.{message}")

    def delay_before(self, retry: int, *, retry_after_s: float | None = None) -> float:
        """Seconds to sleep before retry number *retry* (1-based)."""
        delay = min(
            self.max_delay_s,
            self.initial_delay_s * self.backoff_multiplier ** (retry - 1),
        )
        if self.jitter and delay > 0:
            delay = random.uniform(0, delay)  # noqa: S311
        if retry_after_s is not None:
            delay = max(delay, retry_after_s)
        return delay


def _status_is_retryable(exc: APIError) -> bool:
    return isinstance(exc.status_code, int) and exc.status_code in RETRYABLE_STATUS_CODES


def _is_transport_failure(exc: BaseException) -> bool:
    return any(
        isinstance(e, (TimeoutError, httpx.TimeoutException, httpx.RequestError))
        for e in _walk_exception_chain(exc)
    )


def should_retry_read(exc: BaseException) -> bool:
    """Return True when a repeatable gateway call should be tried again.

    Cancellation is never retried. An APIError is retried when the gateway
    marked it retryable or its status code is transient. Unwrapped timeouts
    and transport errors are retried too.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, APIError):
        return exc.retryable is True or _status_is_retryable(exc)
    return _is_transport_failure(exc)


def should_retry_side_effect(exc: BaseException) -> bool:
    """Return True when batch creation should be tried again.

    Only explicit server signals count (a transient status code or a
    Retry-After); a dropped connection may have created the job already.
    """
    if not isinstance(exc, APIError):
        return False
    return exc.retry_after_s is not None or _status_is_retryable(exc)


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_read,
) -> T:
    """Await ``factory()`` until it succeeds or *policy* gives up."""
    deadline = (
        None if policy.max_elapsed_s is None else time.monotonic() + policy.max_elapsed_s
    )
    attempt = 1
    while True:
        try:
            return await factory()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise

            retry_after = exc.retry_after_s if isinstance(exc, APIError) else None
            delay = policy.delay_before(attempt, retry_after_s=retry_after)
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug(
                "Retrying gateway call after %s (attempt %d/%d, sleeping %.2fs)",
                type(exc).__name__,
                attempt + 1,
                policy.max_attempts,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
