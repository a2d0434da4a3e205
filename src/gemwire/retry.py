"""Bounded async retry with explicit error contracts.

Design goals:
- Constant delay by default; growth is opt-in
- Last error wins: earlier failures are discarded, not aggregated
- Retry decisions come from exception types, never message text
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, TypeVar

from gemwire.errors import APIError, ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay between attempts."""

    #: Total attempts including the first. 1 means no retry.
    max_attempts: int = 1
    delay_s: float = 1.0
    #: 1.0 keeps the delay constant across attempts.
    backoff_multiplier: float = 1.0
    #: Cap on grown delays. None means no cap; ignored while the delay is constant.
    max_delay_s: float | None = None

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ConfigurationError("RetryPolicy.max_attempts must be >= 1")
        if self.delay_s < 0:
            raise ConfigurationError("RetryPolicy.delay_s must be >= 0")
        if self.backoff_multiplier < 1:
            raise ConfigurationError("RetryPolicy.backoff_multiplier must be >= 1")
        if self.max_delay_s is not None and self.max_delay_s < 0:
            raise ConfigurationError("RetryPolicy.max_delay_s must be >= 0")

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number *retry_index* (1-based)."""
        base = self.delay_s * (self.backoff_multiplier ** max(0, retry_index - 1))
        if self.backoff_multiplier > 1 and self.max_delay_s is not None:
            return min(self.max_delay_s, base)
        return base


NO_RETRY = RetryPolicy(max_attempts=1)


def should_retry_request(exc: BaseException) -> bool:
    """Return True when a request failure should be retried.

    Contract:
    - Cancellation is never retried.
    - APIError (non-2xx status or transport failure) is retried unless it was
      explicitly marked non-retryable.
    - Everything else, protocol violations included, is terminal.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    return isinstance(exc, APIError) and exc.retryable


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_request,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async factory with bounded retries."""
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = policy.delay_for(attempt)
            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                type(exc).__name__,
                delay,
            )
            await sleep(delay)

    # The loop always returns or raises.
    raise RuntimeError("retry_async exhausted without an exception")  # pragma: no cover
