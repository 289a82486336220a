"""Tab bookkeeping and dashboard housekeeping helpers."""

from __future__ import annotations

import logging

from playwright.async_api import Page

from rewards_engine.errors import TabError

logger = logging.getLogger(__name__)

DISMISS_BUTTONS = [
    "#acceptButton",
    ".ext-secondary.ext-button",
    "#iLandingViewAction",
    "#iShowSkip",
    "#iNext",
    "#iLooksGood",
    "#idSIButton9",
    ".ms-Button.ms-Button--primary",
    "#bnp_btn_accept",
    "#reward_pivot_earn",
    "button[aria-label='Close']",
]


def get_latest_tab(page: Page) -> Page:
    """Return the most recently opened tab in ``page``'s context."""
    pages = page.context.pages
    if not pages:
        raise TabError("Browsing context has no open tabs")
    return pages[-1]


async def ensure_tab(page: Page) -> Page:
    """Latest tab of the context, opening a fresh one if every tab was closed."""
    if page.context.pages:
        return get_latest_tab(page)
    logger.info("All tabs closed, opening a new one")
    return await page.context.new_page()


async def close_excess_tabs(page: Page, max_tabs: int = 3) -> Page:
    """Close the oldest tabs until at most ``max_tabs`` remain; return the latest tab."""
    page = await ensure_tab(page)
    pages = list(page.context.pages)
    latest = pages[-1]
    excess = len(pages) - max_tabs
    for old in pages[:max(excess, 0)]:
        if old is latest:
            continue
        try:
            await old.close()
            logger.debug("Closed stale tab %s", old.url)
        except Exception as e:
            logger.warning("Could not close stale tab: %s", e)
    return get_latest_tab(latest)


async def try_dismiss_all_messages(page: Page) -> int:
    """Click any visible consent/promo banner buttons. Returns how many were clicked."""
    dismissed = 0
    for selector in DISMISS_BUTTONS:
        try:
            button = page.locator(selector).first
            if await button.count() and await button.is_visible():
                await button.click(timeout=1500)
                dismissed += 1
        except Exception as e:
            logger.debug("Dismiss %s failed: %s", selector, e)
    if dismissed:
        logger.info("Dismissed %d message(s)", dismissed)
    return dismissed


async def go_home(page: Page, base_url: str) -> None:
    """Navigate back to the dashboard, tolerating slow loads."""
    try:
        await page.goto(base_url, timeout=60000)
        await page.wait_for_load_state("domcontentloaded", timeout=15000)
    except Exception as e:
        logger.warning("Could not return to dashboard: %s", e)
