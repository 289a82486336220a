"""Interactability checks and reversible hiding of obstructing overlays.

Hidden overlays are tagged with ``data-qa-hidden-temp`` so that
``restore_hidden`` can undo every hide in one sweep, no matter which caller
performed it.
"""

from __future__ import annotations

import logging

from playwright.async_api import Page

from rewards_engine.models import ClickReason, Interactability

logger = logging.getLogger(__name__)

HIDDEN_MARKER = "data-qa-hidden-temp"
OPACITY_EPSILON = 0.01

# ---------------------------------------------------------------------------
# JavaScript snippets
# ---------------------------------------------------------------------------

_STYLE_CHECK_JS = """\
(sel) => {
    const el = document.querySelector(sel);
    if (!el) return null;
    const cs = window.getComputedStyle(el);
    return {
        display: cs.display,
        visibility: cs.visibility,
        opacity: cs.opacity,
        hidden: el.hasAttribute('hidden'),
    };
}"""

_SCROLL_INTO_VIEW_JS = """\
(sel) => {
    const el = document.querySelector(sel);
    if (el) el.scrollIntoView({block: 'center', inline: 'center'});
}"""

_HIDE_OVERLAPPING_JS = """\
([sel, marker, includeStacked]) => {
    const target = document.querySelector(sel);
    if (!target) return 0;
    const t = target.getBoundingClientRect();
    let hidden = 0;
    for (const el of document.querySelectorAll('body *')) {
        if (el === target || el.contains(target) || target.contains(el)) continue;
        if (el.hasAttribute(marker)) continue;
        const cs = window.getComputedStyle(el);
        const positioned = ['fixed', 'absolute', 'sticky'].includes(cs.position);
        const z = parseInt(cs.zIndex, 10);
        const stacked = includeStacked && !isNaN(z) && z > 0;
        if (!positioned && !stacked) continue;
        if (cs.display === 'none' || cs.visibility === 'hidden') continue;
        const r = el.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        const overlaps = !(r.right <= t.left || r.left >= t.right ||
                           r.bottom <= t.top || r.top >= t.bottom);
        if (!overlaps) continue;
        el.setAttribute(marker, '1');
        el.style.setProperty('display', 'none', 'important');
        hidden++;
    }
    return hidden;
}"""

_RESTORE_HIDDEN_JS = """\
(marker) => {
    const els = document.querySelectorAll('[' + marker + ']');
    for (const el of els) {
        el.removeAttribute(marker);
        el.style.removeProperty('display');
    }
    return els.length;
}"""


class OverlayManager:
    """Visibility checks plus reversible overlay hiding for one engine session."""

    def __init__(self, include_stacked: bool = False):
        self.include_stacked = include_stacked

    async def is_interactable(self, page: Page, selector: str) -> Interactability:
        """Check presence, box size and computed style of the first match."""
        try:
            handle = await page.query_selector(selector)
            if handle is None:
                return Interactability(False, ClickReason.NOT_FOUND)

            try:
                await handle.scroll_into_view_if_needed(timeout=1500)
            except Exception:
                await page.evaluate(_SCROLL_INTO_VIEW_JS, selector)

            box = await handle.bounding_box()
            style = await page.evaluate(_STYLE_CHECK_JS, selector)
        except Exception as e:
            # The check itself failed; let the click have a go anyway.
            logger.debug("Visibility check error for %s: %s", selector, e)
            return Interactability(True)

        if not box or box["width"] == 0 or box["height"] == 0:
            return Interactability(False, ClickReason.ZERO_BOUNDING_BOX)
        if style is None:
            return Interactability(False, ClickReason.NOT_FOUND)
        if _is_css_hidden(style):
            return Interactability(False, ClickReason.CSS_HIDDEN)
        return Interactability(True)

    async def hide_overlapping(self, page: Page, selector: str) -> int:
        """Hide positioned elements whose box overlaps ``selector``. Returns the count."""
        try:
            count = await page.evaluate(
                _HIDE_OVERLAPPING_JS, [selector, HIDDEN_MARKER, self.include_stacked]
            )
        except Exception as e:
            logger.debug("Overlay hide failed for %s: %s", selector, e)
            return 0
        count = int(count or 0)
        if count:
            logger.info("Hid %d overlay(s) covering %s", count, selector)
        return count

    async def restore_hidden(self, page: Page) -> int:
        """Undo every hide on the page."""
        try:
            return int(await page.evaluate(_RESTORE_HIDDEN_JS, HIDDEN_MARKER) or 0)
        except Exception as e:
            logger.debug("Overlay restore failed: %s", e)
            return 0


def _is_css_hidden(style: dict) -> bool:
    if style.get("hidden"):
        return True
    if style.get("display") == "none" or style.get("visibility") == "hidden":
        return True
    raw = style.get("opacity")
    try:
        opacity = float(raw) if raw not in (None, "") else 1.0
    except (TypeError, ValueError):
        opacity = 1.0
    return opacity <= OPACITY_EPSILON
