"""
Bounded exponential backoff with jitter for async calls.

Delay for attempt n (0-indexed) is ``base_delay * 2**n`` capped at
``max_delay``, then spread by +/- ``jitter_ratio`` of itself. Only the
exception types in ``retry_on`` are retried; anything else propagates
on the first occurrence.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from pedimento.document_extractor.errors import RetryExhausted, TranscriptionRateLimited

logger = logging.getLogger("pedimento.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_ratio: float = 0.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError(f"jitter_ratio must be within [0, 1], got {self.jitter_ratio}")

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Sleep before retry number ``attempt`` (0-indexed)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter_ratio:
            spread = delay * self.jitter_ratio
            delay += spread * (2 * rng() - 1)
        return max(0.0, delay)


async def call_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (TranscriptionRateLimited,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    label: str = "call",
) -> tuple[T, int]:
    """Await ``func()`` until it succeeds or the attempt budget runs out.

    Args:
        func: Zero-argument coroutine factory, called once per attempt.
        policy: Attempt bound and delay shape.
        retry_on: Exception types that trigger another attempt.
        sleep: Awaitable sleep, injectable for tests.
        rng: Source of jitter in [0, 1).
        label: Name used in log lines.

    Returns:
        (result, attempts used).

    Raises:
        RetryExhausted: every attempt failed with a retryable error.
    """
    for attempt in range(policy.max_attempts):
        try:
            return await func(), attempt + 1
        except retry_on as e:
            if attempt + 1 >= policy.max_attempts:
                raise RetryExhausted(policy.max_attempts, f"{label}: gave up after {policy.max_attempts} attempts") from e
            delay = policy.delay_for(attempt, rng)
            retry_after = getattr(e, "retry_after", None)
            if retry_after:
                delay = max(delay, min(float(retry_after), policy.max_delay))
            logger.info(
                "%s rate limited (attempt %d/%d), retrying in %.2fs",
                label,
                attempt + 1,
                policy.max_attempts,
                delay,
            )
            await sleep(delay)

    raise RetryExhausted(policy.max_attempts)  # pragma: no cover
