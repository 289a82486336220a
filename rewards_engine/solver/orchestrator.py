"""Drives a batch of activities: open each one, dispatch it, pace the session.

Activities are processed one at a time.  Nothing raised while handling one
activity escapes to the next: failures become a throttle failure, a
diagnostics capture and a log line.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Iterable, Optional, TypeVar

from playwright.async_api import Page

from rewards_engine.browser.diagnostics import DiagnosticsRecorder
from rewards_engine.browser.tabs import close_excess_tabs, get_latest_tab, try_dismiss_all_messages
from rewards_engine.config import EngineConfig
from rewards_engine.errors import ActivityTimeoutError, HandlerError
from rewards_engine.log import get_logger
from rewards_engine.models import Activity, PunchCard
from rewards_engine.solver.activity_classifier import classify_activity
from rewards_engine.solver.activity_handlers import ActivityHandlers, close_page
from rewards_engine.solver.retry import RetryPolicy
from rewards_engine.solver.selector_resolver import SelectorResolver
from rewards_engine.solver.throttle import AdaptiveThrottler

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned handler finished with: %s", task.exception())


async def race_with_timeout(coro: Awaitable[T], timeout_ms: int, label: str) -> T:
    """Await ``coro`` for at most ``timeout_ms``.

    On timeout the task is left running (its result is discarded) and
    ``ActivityTimeoutError`` is raised.
    """
    task = asyncio.ensure_future(coro)
    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    if task in done:
        return task.result()
    task.add_done_callback(_discard_result)
    raise ActivityTimeoutError(label, timeout_ms)


class ActivityOrchestrator:

    def __init__(
        self,
        config: EngineConfig,
        handlers: ActivityHandlers,
        resolver: Optional[SelectorResolver] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
        retry: Optional[RetryPolicy] = None,
        is_mobile: bool = False,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.handlers = handlers
        self.clicker = handlers.clicker
        self.humanizer = handlers.humanizer
        self.resolver = resolver or SelectorResolver()
        self.diagnostics = diagnostics or DiagnosticsRecorder(config.diagnostics)
        self.retry = retry or RetryPolicy(config.retry_policy, sleep=self.humanizer.sleep)
        self.rng = rng or self.humanizer.rng
        self.log = get_logger("ACTIVITY", is_mobile)
        # State of the current (or last) batch
        self.throttle = AdaptiveThrottler()
        self.untracked_completed = 0

    async def solve_activities(
        self,
        page: Page,
        activities: Iterable[Activity],
        punch_card: Optional[PunchCard] = None,
    ) -> set[str]:
        """Attempt every activity once; return the offer ids that completed."""
        throttle = self.throttle = AdaptiveThrottler()
        self.untracked_completed = 0
        completed: set[str] = set()
        initial_url = page.url

        order = list(activities)
        self.rng.shuffle(order)

        for activity in order:
            try:
                page = await self._solve_one(page, activity, punch_card, initial_url, throttle, completed)
            except Exception as e:
                self.log.error('Activity "%s" aborted: %s', activity.title, e)
                throttle.record(False)

            lo, hi = throttle.scale(1200, 2600)
            await self.humanizer.wait_random(lo, hi)

        self.log.info("Completed %d of %d activities", len(completed), len(order))
        return completed

    async def _solve_one(
        self,
        page: Page,
        activity: Activity,
        punch_card: Optional[PunchCard],
        initial_url: str,
        throttle: AdaptiveThrottler,
        completed: set[str],
    ) -> Page:
        page = await close_excess_tabs(page, self.config.interaction.max_open_tabs)

        if not self.handlers.supports(activity):
            self.log.warning(
                'Skipped activity "%s" | Reason: Unsupported type: "%s"!',
                activity.title, activity.promotion_type,
            )
            return page

        await self.humanizer.micro_gestures(page)
        lo, hi = throttle.scale(800, 1400)
        await self.humanizer.wait_random(lo, hi)

        if initial_url and page.url != initial_url:
            try:
                await page.goto(initial_url)
            except Exception as e:
                self.log.warning("Could not return to %s: %s", initial_url, e)

        await self.humanizer.scroll_warmup(page)
        await try_dismiss_all_messages(page)
        try:
            await page.wait_for_load_state("networkidle", timeout=5000)
        except Exception:
            self.log.debug("Network not idle, continuing")

        selectors = await self.resolver.resolve(page, activity, punch_card)
        outcome = await self.clicker.click_first(page, selectors, self.config.interaction.max_candidates)
        if not outcome.result.success:
            self.log.warning(
                'Could not open activity "%s" after %d candidate(s)', activity.title, outcome.tried,
            )
            throttle.record(False)
            return page

        activity_page = outcome.result.popup or get_latest_tab(page)
        kind = classify_activity(activity)
        timeout_ms = self.config.global_timeout_ms * 2
        self.log.info('Started "%s" (%s) via %s', activity.title, kind.label, outcome.selector)
        await self.humanizer.action_pause(throttle.get_delay_multiplier())

        async def attempt():
            nonlocal activity_page
            activity_page = await self._live_page(activity_page, activity)
            return await race_with_timeout(
                self.handlers.handle(activity_page, activity, kind), timeout_ms, activity.title,
            )

        try:
            await self.retry.run(attempt)
        except Exception as e:
            prefix = "activity_timeout" if isinstance(e, ActivityTimeoutError) else "activity_failed"
            self.log.warning('%s activity "%s" failed: %s', kind.label, activity.title, e)
            await self.diagnostics.capture(activity_page, f"{prefix}_{activity.title}")
            if activity_page is not page:
                await close_page(activity_page)
            throttle.record(False)
            return page

        throttle.record(True)
        if activity.offer_id:
            completed.add(activity.offer_id)
        else:
            self.untracked_completed += 1
        self.log.info('Completed "%s"', activity.title)
        return page

    async def _live_page(self, activity_page: Page, activity: Activity) -> Page:
        """``activity_page``, or a fresh tab on the activity's url if it was closed."""
        if not activity_page.is_closed():
            return activity_page
        if not activity.destination_url:
            raise HandlerError(f'Page for "{activity.title}" closed and cannot be reopened', retryable=False)
        self.log.info('Reopening "%s" at %s', activity.title, activity.destination_url)
        fresh = await activity_page.context.new_page()
        await fresh.goto(activity.destination_url)
        return fresh
