"""Robust click protocol.

Each attempt walks ENSURE_ATTACHED -> ENSURE_VISIBLE -> HOVER -> CLICK_ATTEMPT
-> RESULT.  A popup or navigation caused by the click is detected with
short-lived listeners armed before clicking.  Attempts are bounded and every
failure is reported as a ``ClickAttemptResult`` instead of raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from playwright.async_api import Page

from rewards_engine.browser.humanizer import Humanizer
from rewards_engine.config import InteractionConfig, parse_duration_ms
from rewards_engine.log import get_logger
from rewards_engine.models import RETRYABLE_REASONS, ClickAttemptResult, ClickReason
from rewards_engine.solver.overlay_manager import OverlayManager

_DOM_CLICK_JS = """\
(sel) => {
    const el = document.querySelector(sel);
    if (!el) return false;
    el.click();
    return true;
}"""


@dataclass
class CandidateClick:
    """Result of driving a candidate list through the click protocol."""
    result: ClickAttemptResult
    selector: Optional[str] = None
    tried: int = 0


class InteractionProtocol:

    def __init__(
        self,
        overlays: Optional[OverlayManager] = None,
        humanizer: Optional[Humanizer] = None,
        *,
        max_attempts: int = 3,
        per_attempt_timeout_ms: int = 10000,
        attach_timeout_ms: int = 2500,
        event_timeout_ms: int = 1500,
        is_mobile: bool = False,
    ):
        self.overlays = overlays or OverlayManager()
        self.humanizer = humanizer or Humanizer()
        self.max_attempts = max_attempts
        self.per_attempt_timeout_ms = per_attempt_timeout_ms
        self.attach_timeout_ms = attach_timeout_ms
        self.event_timeout_ms = event_timeout_ms
        self.log = get_logger("CLICK", is_mobile)

    @classmethod
    def from_config(
        cls,
        config: InteractionConfig,
        overlays: Optional[OverlayManager] = None,
        humanizer: Optional[Humanizer] = None,
        is_mobile: bool = False,
    ) -> "InteractionProtocol":
        return cls(
            overlays,
            humanizer,
            max_attempts=config.max_click_attempts,
            per_attempt_timeout_ms=parse_duration_ms(config.per_attempt_timeout),
            event_timeout_ms=parse_duration_ms(config.event_timeout),
            is_mobile=is_mobile,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def click(
        self,
        page: Page,
        selector: str,
        max_attempts: Optional[int] = None,
        per_attempt_timeout_ms: Optional[int] = None,
    ) -> ClickAttemptResult:
        """Click ``selector`` with bounded retries. Never raises."""
        attempts = max_attempts or self.max_attempts
        timeout = per_attempt_timeout_ms or self.per_attempt_timeout_ms

        for attempt in range(1, attempts + 1):
            try:
                result = await self._attempt(page, selector, timeout)
            finally:
                await self.overlays.restore_hidden(page)

            if result.success:
                return result

            self.log.debug(
                "Attempt %d/%d on %s failed: %s",
                attempt, attempts, selector, result.reason.value if result.reason else "?",
            )
            if result.reason not in RETRYABLE_REASONS:
                return result
            if attempt < attempts:
                await self.humanizer.wait_random(300 * attempt, 900 * attempt)

        self.log.warning("Exhausted %d attempts for %s", attempts, selector)
        return ClickAttemptResult(False, ClickReason.MAX_RETRIES)

    async def click_first(
        self,
        page: Page,
        selectors: Sequence[str],
        max_candidates: int = 5,
    ) -> CandidateClick:
        """Try candidates in order and stop at the first successful click."""
        outcome = CandidateClick(ClickAttemptResult(False, ClickReason.NOT_FOUND))
        for selector in list(selectors)[:max_candidates]:
            outcome.tried += 1
            result = await self.click(page, selector)
            if result.success:
                outcome.result = result
                outcome.selector = selector
                return outcome
            self.log.warning(
                'Could not click selector "%s" | reason: %s',
                selector, result.reason.value if result.reason else "unknown",
            )
            outcome.result = result
        return outcome

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    async def _attempt(self, page: Page, selector: str, timeout: int) -> ClickAttemptResult:
        try:
            # ENSURE_ATTACHED
            try:
                await page.wait_for_selector(
                    selector, state="attached", timeout=min(self.attach_timeout_ms, timeout)
                )
            except Exception:
                self.log.debug("Selector not attached yet: %s", selector)

            # ENSURE_VISIBLE
            check = await self.overlays.is_interactable(page, selector)
            if not check.interactable:
                if check.reason != ClickReason.CSS_HIDDEN:
                    return ClickAttemptResult(False, check.reason)
                if await self.overlays.hide_overlapping(page, selector) == 0:
                    return ClickAttemptResult(False, ClickReason.CSS_HIDDEN)

            # HOVER
            box = await self._hover(page, selector)

            # CLICK_ATTEMPT
            popup_task = asyncio.ensure_future(self._wait_for_popup(page))
            nav_task = asyncio.ensure_future(self._wait_for_navigation(page))
            clicked = await self._click(page, selector, box, timeout)
            if not clicked:
                popup_task.cancel()
                nav_task.cancel()
                await asyncio.gather(popup_task, nav_task, return_exceptions=True)
                return ClickAttemptResult(False, ClickReason.CLICK_FAILED)

            # RESULT
            popup, navigated = await asyncio.gather(popup_task, nav_task)
        except Exception as e:
            self.log.debug("Unexpected click error on %s: %s", selector, e)
            return ClickAttemptResult(False, ClickReason.CLICK_FAILED)

        if popup is not None:
            try:
                await popup.wait_for_load_state("domcontentloaded", timeout=30000)
            except Exception as e:
                self.log.debug("Popup load wait failed: %s", e)
            self.log.info("Click on %s opened a popup", selector)
            return ClickAttemptResult(True, popup=popup)
        return ClickAttemptResult(True, navigated=navigated)

    async def _hover(self, page: Page, selector: str) -> Optional[dict]:
        try:
            box = await page.locator(selector).first.bounding_box()
        except Exception:
            return None
        if not box:
            return None
        x = box["x"] + box["width"] / 2 + self.humanizer.random_number(-3, 3)
        y = box["y"] + box["height"] / 2 + self.humanizer.random_number(-3, 3)
        try:
            await page.mouse.move(x, y, steps=self.humanizer.random_number(4, 12))
        except Exception as e:
            self.log.debug("Hover failed on %s: %s", selector, e)
        await self.humanizer.wait_random(60, 180)
        return box

    async def _click(self, page: Page, selector: str, box: Optional[dict], timeout: int) -> bool:
        locator = page.locator(selector).first
        try:
            await locator.click(timeout=timeout)
            return True
        except Exception as e:
            self.log.debug("Locator click failed on %s: %s", selector, e)

        try:
            if await page.evaluate(_DOM_CLICK_JS, selector):
                return True
        except Exception as e:
            self.log.debug("DOM click failed on %s: %s", selector, e)

        if box:
            try:
                await page.mouse.click(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
                return True
            except Exception as e:
                self.log.debug("Mouse click failed on %s: %s", selector, e)

        try:
            await locator.click(timeout=min(timeout, 3000), force=True)
            return True
        except Exception as e:
            self.log.debug("Forced click failed on %s: %s", selector, e)
        return False

    async def _wait_for_popup(self, page: Page):
        try:
            return await page.context.wait_for_event("page", timeout=self.event_timeout_ms)
        except Exception:
            return None

    async def _wait_for_navigation(self, page: Page) -> bool:
        try:
            await page.wait_for_event(
                "framenavigated",
                predicate=lambda frame: frame == page.main_frame,
                timeout=self.event_timeout_ms,
            )
            return True
        except Exception:
            return False
