"""Exponential backoff with jitter for handler runs."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from rewards_engine.config import RetryPolicyConfig, parse_duration_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", True))


class RetryPolicy:

    def __init__(
        self,
        config: Optional[RetryPolicyConfig] = None,
        rng: Optional[random.Random] = None,
        sleep=asyncio.sleep,
    ):
        config = config or RetryPolicyConfig()
        self.max_attempts = max(1, int(config.max_attempts))
        self.base_delay_ms = parse_duration_ms(config.base_delay)
        self.max_delay_ms = parse_duration_ms(config.max_delay)
        self.multiplier = float(config.multiplier)
        self.jitter = float(config.jitter)
        self.rng = rng or random.Random()
        self._sleep = sleep

    def delay_ms(self, attempt: int) -> int:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(self.base_delay_ms * self.multiplier ** (attempt - 1), self.max_delay_ms)
        if self.jitter:
            delay *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return max(int(delay), 0)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        should_retry: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        """Await ``fn()`` until it succeeds, the error is not retryable, or attempts run out."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except Exception as e:
                if attempt >= self.max_attempts or not should_retry(e):
                    raise
                delay = self.delay_ms(attempt)
                logger.info(
                    "Attempt %d/%d failed (%s), retrying in %dms",
                    attempt, self.max_attempts, e, delay,
                )
                await self._sleep(delay / 1000)
        raise RuntimeError("unreachable")
