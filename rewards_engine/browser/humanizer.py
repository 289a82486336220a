"""Pacing and micro-gestures that make the session look less scripted."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Optional

from playwright.async_api import Page

from rewards_engine.config import HumanizationConfig, parse_duration_ms

logger = logging.getLogger(__name__)


class Humanizer:
    """Owns every sleep the engine performs.

    Tests swap ``sleep`` for a no-op so nothing actually waits; the retry
    policy reuses the same ``sleep``.
    """

    def __init__(
        self,
        config: Optional[HumanizationConfig] = None,
        rng: Optional[random.Random] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or HumanizationConfig()
        self.rng = rng or random.Random()
        self.sleep = sleep

    async def wait(self, ms: float) -> None:
        if ms > 0:
            await self.sleep(ms / 1000)

    def random_number(self, min_value: float, max_value: float) -> int:
        low, high = sorted((int(min_value), int(max_value)))
        return self.rng.randint(low, high)

    async def wait_random(self, min_ms: float, max_ms: float) -> None:
        await self.wait(self.random_number(min_ms, max_ms))

    async def action_pause(self, multiplier: float = 1.0) -> None:
        """Pause between user-visible actions (skipped when humanization is off).

        ``multiplier`` stretches the configured window, e.g. by the throttle.
        """
        if not self.config.enabled:
            return
        await self.wait_random(
            parse_duration_ms(self.config.action_delay_min) * multiplier,
            parse_duration_ms(self.config.action_delay_max) * multiplier,
        )

    async def micro_gestures(self, page: Page) -> None:
        """Occasional mouse drift and wheel scroll. Errors are ignored."""
        if not self.config.enabled:
            return
        try:
            if self.rng.random() < self.config.gesture_move_prob:
                x = self.random_number(20, 600)
                y = self.random_number(20, 400)
                await page.mouse.move(x, y, steps=self.random_number(2, 6))
            if self.rng.random() < self.config.gesture_scroll_prob:
                delta = self.random_number(50, 200) * self.rng.choice((-1, 1))
                await page.mouse.wheel(0, delta)
            await self.wait_random(150, 450)
        except Exception as e:
            logger.debug("Micro-gesture failed: %s", e)

    async def scroll_warmup(self, page: Page) -> None:
        """A couple of small scrolls before touching the page."""
        try:
            for _ in range(self.random_number(1, 2)):
                await page.mouse.wheel(0, self.random_number(60, 240))
                await self.wait_random(120, 380)
        except Exception as e:
            logger.debug("Scroll warm-up failed: %s", e)
