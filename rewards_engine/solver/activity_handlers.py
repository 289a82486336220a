"""Type-specific activity handlers + shared page utilities.

Every handler either completes its activity or raises ``HandlerError``;
the orchestrator turns that into a throttle failure and diagnostics.
Handlers close the activity page when they are done with it; a retryable
failure leaves it open for the next attempt.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup
from playwright.async_api import Page

from rewards_engine.browser.humanizer import Humanizer
from rewards_engine.browser.tabs import get_latest_tab, try_dismiss_all_messages
from rewards_engine.errors import HandlerError, QuizFailedError
from rewards_engine.log import get_logger
from rewards_engine.models import Activity
from rewards_engine.solver.activity_classifier import ActivityKind, classify_activity
from rewards_engine.solver.interaction import InteractionProtocol
from rewards_engine.solver.quiz_solver import QuizSolver
from rewards_engine.solver.selector_resolver import escape_css_string

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

POLL_OPTION_SELECTORS = [
    "#btoption0",
    "#btoption1",
    'button[id^="btoption"]',
    'input[type="radio"]',
    ".wk_OptionClickClass",
    ".pollOptions button",
    ".poll-choice, .pollChoice, .pollItem, .option",
]
POLL_RESULT_SELECTOR = ".result, .poll-result, .thankyou, .wk_OptionResult"
POLL_MAX_ROUNDS = 3

OVERLAY_CLOSE_SELECTORS = [
    'button[aria-label="Close"]',
    'button[title="Close"]',
    ".modal .close",
    ".ms-Callout-beakCurtain",
    ".more_btn_popup .close",
    ".close-button",
    ".dialog .close",
    ".overlay .close",
    ".callout .close",
]

ABC_OPTION = ".wk_OptionClickClass"
ABC_NEXT_BUTTON = "div.wk_button"
ABC_DONE_MARKER = "span.rw_icon"
ABC_MAX_ITERATIONS = 15

DAILY_SET_TILE = '[data-bi-id^="Gamification_DailySet_"] .pointLink:not(.contentContainer .pointLink)'

SEARCH_BOX = "#sb_form_q"
SEARCH_URL = "https://www.bing.com/search?q="


# ---------------------------------------------------------------------------
# Shared utilities
# ---------------------------------------------------------------------------

async def close_page(page: Page) -> None:
    try:
        await page.close()
    except Exception as e:
        logger.debug("Page close failed: %s", e)


async def try_close_overlays(page: Page) -> int:
    """Click visible close buttons of known popovers. Returns how many were clicked."""
    closed = 0
    for selector in OVERLAY_CLOSE_SELECTORS:
        try:
            button = page.locator(selector).first
            if await button.count() and await button.is_visible():
                await button.click(timeout=1200)
                closed += 1
        except Exception as e:
            logger.debug("Overlay close %s failed: %s", selector, e)
    try:
        # Corner click dismisses small callouts
        await page.mouse.click(6, 6)
    except Exception as e:
        logger.debug("Corner click failed: %s", e)
    return closed


async def load_soup(page: Page) -> BeautifulSoup:
    return BeautifulSoup(await page.content(), "html.parser")


def load_search_queries(path: str | Path | None) -> dict[str, list[str]]:
    """Read ``[{"title": ..., "queries": [...]}, ...]`` into a lowercase-title map."""
    if not path or not Path(path).exists():
        return {}
    try:
        with open(path) as f:
            entries = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not read search queries from %s: %s", path, e)
        return {}
    queries: dict[str, list[str]] = {}
    for entry in entries if isinstance(entries, list) else []:
        if isinstance(entry, dict) and entry.get("title") and entry.get("queries"):
            queries[str(entry["title"]).strip().lower()] = [str(q) for q in entry["queries"]]
    return queries


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class ActivityHandlers:
    """Dispatches an activity to the handler for its kind.

    Extra handlers registered with ``register_handler`` are consulted first;
    they need ``can_handle(activity) -> bool`` and ``async run(page, activity)``.
    """

    def __init__(
        self,
        clicker: InteractionProtocol,
        quiz_solver: Optional[QuizSolver] = None,
        humanizer: Optional[Humanizer] = None,
        is_mobile: bool = False,
        queries_path: str | Path | None = None,
    ):
        self.clicker = clicker
        self.humanizer = humanizer or clicker.humanizer
        self.quiz_solver = quiz_solver or QuizSolver(clicker, self.humanizer, is_mobile)
        self.is_mobile = is_mobile
        self.queries = load_search_queries(queries_path)
        self._custom: list = []

    def register_handler(self, handler) -> None:
        self._custom.append(handler)

    def supports(self, activity: Activity) -> bool:
        if any(custom.can_handle(activity) for custom in self._custom):
            return True
        return classify_activity(activity) is not ActivityKind.UNSUPPORTED

    async def handle(self, page: Page, activity: Activity, kind: Optional[ActivityKind] = None) -> ActivityKind:
        for custom in self._custom:
            if custom.can_handle(activity):
                await custom.run(page, activity)
                return kind or classify_activity(activity)

        kind = kind or classify_activity(activity)
        dispatch = {
            ActivityKind.POLL: lambda: self.handle_poll(page),
            ActivityKind.ABC: lambda: self.handle_abc(page),
            ActivityKind.THIS_OR_THAT: lambda: self.handle_this_or_that(page),
            ActivityKind.QUIZ: lambda: self.handle_quiz(page),
            ActivityKind.URL_REWARD: lambda: self.handle_url_reward(page),
            ActivityKind.SEARCH_ON_BING: lambda: self.handle_search_on_bing(page, activity),
        }
        handler = dispatch.get(kind)
        if handler is None:
            raise HandlerError(f"Unsupported activity type: {activity.promotion_type!r}", retryable=False)
        await handler()
        return kind

    # ------------------------------------------------------------------

    async def handle_quiz(self, page: Page) -> None:
        log = get_logger("QUIZ", self.is_mobile)
        log.info("Trying to complete quiz")
        result = await self.quiz_solver.solve(page)
        await close_page(page)
        if not result.success:
            raise QuizFailedError(result.reason.value)
        log.info("Completed the quiz (%s, %d click(s))", result.strategy, result.clicks)

    async def handle_poll(self, page: Page) -> None:
        log = get_logger("POLL", self.is_mobile)
        log.info("Trying to complete poll")
        await self.humanizer.wait_random(300, 900)

        for attempt in range(1, POLL_MAX_ROUNDS + 1):
            for selector in POLL_OPTION_SELECTORS:
                try:
                    present = await page.locator(selector).count()
                except Exception:
                    present = 0
                if not present:
                    continue
                result = await self.clicker.click(page, selector, max_attempts=2)
                if not result.success:
                    log.debug("Poll option %s not clickable: %s", selector, result.reason)
                    continue

                await self.humanizer.wait_random(800, 2200)
                try:
                    await page.wait_for_selector(POLL_RESULT_SELECTOR, state="attached", timeout=1000)
                    log.info("Poll result detected")
                except Exception:
                    log.info("Clicked poll option, no explicit result shown")
                await close_page(page)
                log.info("Completed the poll")
                return

            log.debug("No poll option clickable in round %d/%d", attempt, POLL_MAX_ROUNDS)
            await try_close_overlays(page)
            await self.humanizer.wait_random(300, 900)

        raise HandlerError(f"No poll option clickable after {POLL_MAX_ROUNDS} rounds")

    async def handle_abc(self, page: Page) -> None:
        log = get_logger("ABC", self.is_mobile)
        log.info("Trying to complete ABC")

        for iteration in range(ABC_MAX_ITERATIONS):
            soup = await load_soup(page)
            if soup.select_one(ABC_DONE_MARKER):
                await self.humanizer.wait(2000)
                await close_page(page)
                log.info("Completed the ABC after %d question(s)", iteration)
                return

            ids = [el.get("id") for el in soup.select(ABC_OPTION) if el.get("id")]
            if not ids:
                log.warning("No answers found on question, retrying")
                await self.humanizer.wait(1000)
                page = get_latest_tab(page)
                continue

            answer = self.humanizer.rng.choice(ids[:3])
            result = await self.clicker.click(page, f'[id="{escape_css_string(answer)}"]')
            if not result.success:
                log.warning("Answer %s could not be clicked: %s", answer, result.reason)
            await self.humanizer.wait_random(1500, 5000)

            result = await self.clicker.click(page, ABC_NEXT_BUTTON)
            if not result.success:
                log.warning("Next button could not be clicked: %s", result.reason)
            page = get_latest_tab(page)
            await self.humanizer.wait_random(1500, 5000)

        raise HandlerError(f"ABC not finished after {ABC_MAX_ITERATIONS} iterations")

    async def handle_this_or_that(self, page: Page) -> None:
        log = get_logger("THIS-OR-THAT", self.is_mobile)
        log.info("Trying to complete ThisOrThat")
        await self.humanizer.wait_random(1000, 3000)
        await self.quiz_solver.start(page)
        await self.humanizer.wait_random(2000, 4000)

        state = await self.quiz_solver.fetch_state(page)
        if state is None or state.max_questions is None:
            raise HandlerError("ThisOrThat quiz state unavailable")

        remaining = max(state.max_questions - ((state.current_question_number or 1) - 1), 0)
        for _ in range(remaining):
            await self.humanizer.wait_random(1000, 3000)
            option = f"#rqAnswerOption{self.humanizer.random_number(0, 1)}"
            await self.clicker.click(page, option)
            if not await self.quiz_solver.wait_for_refresh(page):
                await close_page(page)
                raise QuizFailedError("refresh-failed")

        await self.humanizer.wait_random(2000, 4000)
        await close_page(page)
        log.info("Completed the ThisOrThat (%d question(s))", remaining)

    async def handle_url_reward(self, page: Page) -> None:
        log = get_logger("URL-REWARD", self.is_mobile)
        log.info("Trying to complete UrlReward")
        await self.humanizer.wait(2000)

        try:
            await page.wait_for_selector(DAILY_SET_TILE, state="visible", timeout=5000)
            tile_shown = True
        except Exception:
            tile_shown = False

        if tile_shown:
            result = await self.clicker.click(page, DAILY_SET_TILE)
            if result.popup is not None:
                page = result.popup
            elif not result.success:
                log.warning("Could not click daily set tile: %s", result.reason)
            await self.humanizer.wait_random(1000, 2500)

        await self.humanizer.wait(2000)
        await close_page(page)
        log.info("Completed the UrlReward")

    async def handle_search_on_bing(self, page: Page, activity: Activity) -> None:
        log = get_logger("SEARCH-ON-BING", self.is_mobile)
        log.info("Trying to complete SearchOnBing")
        await self.humanizer.wait_random(2000, 5000)
        await try_dismiss_all_messages(page)

        query = self.search_query(activity)
        try:
            box = page.locator(SEARCH_BOX)
            await box.wait_for(state="attached", timeout=15000)
            await box.fill("")
            await page.keyboard.type(query, delay=20)
            await self.humanizer.wait_random(200, 800)
            await page.keyboard.press("Enter")
        except Exception as e:
            log.info("Search box unusable (%s), navigating directly", e)
            await page.goto(SEARCH_URL + quote_plus(query))

        await self.humanizer.wait_random(3000, 5000)
        await close_page(page)
        log.info("Completed the SearchOnBing with query %r", query)

    def search_query(self, activity: Activity) -> str:
        candidates = self.queries.get(activity.title.strip().lower())
        if candidates:
            return self.humanizer.rng.choice(candidates)
        return activity.title.strip() or activity.description.strip()
