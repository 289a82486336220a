"""Activity descriptor -> ordered list of CSS selectors.

Candidates run from most specific to most generic and always end with the
generic point-link fallbacks, so the list is never empty.  DOM lookups are
best effort: any error in a scan just drops that stage.
"""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Page

from rewards_engine.models import Activity, PunchCard

logger = logging.getLogger(__name__)

ID_ATTR = "data-bi-id"
POINT_LINK = ".pointLink"
TOP_LEVEL_POINT_LINK = ".pointLink:not(.contentContainer .pointLink)"

GENERIC_FALLBACKS: tuple[str, ...] = (
    TOP_LEVEL_POINT_LINK,
    POINT_LINK,
    "a.pointLink[href]",
    f"[{ID_ATTR}] {POINT_LINK}",
    f"[{ID_ATTR}]",
)

DAILY_ID_PATTERN = "dailyset|daily|global_daily|gamification_daily|dailyglobal"

_WHITESPACE = re.compile(r"\s+")

PunchCardHook = Callable[[Page, Activity, PunchCard], Awaitable[Optional[str]]]

# ---------------------------------------------------------------------------
# JavaScript snippets
# ---------------------------------------------------------------------------

_DAILY_ANCESTOR_IDS_JS = """\
([attr, pattern]) => {
    const re = new RegExp(pattern, 'i');
    const ids = [];
    for (const link of document.querySelectorAll('.pointLink')) {
        const holder = link.closest('[' + attr + ']');
        if (!holder) continue;
        const id = holder.getAttribute(attr) || '';
        if (re.test(id) && !ids.includes(id)) ids.push(id);
    }
    return ids;
}"""

_TEXT_MATCHES_JS = """\
([attr, title]) => {
    const needle = title.toLowerCase();
    const out = [];
    const nodes = document.querySelectorAll('a, button, .pointLink, [' + attr + ']');
    for (const el of nodes) {
        const text = (el.innerText || el.textContent || '').trim().toLowerCase();
        if (!text || !text.includes(needle)) continue;
        const holder = el.closest('[' + attr + ']');
        const link = el.closest('a[href]');
        out.push({
            id: holder ? holder.getAttribute(attr) : null,
            href: link ? link.getAttribute('href') : null,
        });
        if (out.length >= 5) break;
    }
    return out;
}"""


def escape_css_string(value: str) -> str:
    """Escape text for use inside a double-quoted CSS attribute value."""
    value = _WHITESPACE.sub(" ", value).strip()
    return value.replace("\\", "\\\\").replace('"', '\\"')


def normalize_selector(selector: str) -> str:
    return _WHITESPACE.sub(" ", selector or "").strip()


def scoped_point_link(id_value: str, op: str = "=") -> str:
    return f'[{ID_ATTR}{op}"{escape_css_string(id_value)}"] {TOP_LEVEL_POINT_LINK}'


def static_candidates(activity: Activity) -> list[str]:
    """Candidates derivable from the activity alone, without touching the DOM."""
    out: list[str] = []
    for key in (activity.offer_id, activity.name):
        if key:
            out.append(scoped_point_link(key, "^="))
            out.append(scoped_point_link(key, "*="))
    return out


def destination_candidates(url: Optional[str]) -> list[str]:
    if not url:
        return []
    out = [f'a[href="{escape_css_string(url)}"]']
    host = urlparse(url).hostname
    if host:
        out.append(f'a[href*="{escape_css_string(host)}"]')
    return out


def compose_candidates(*stages: Iterable[str]) -> list[str]:
    """Normalize, drop empties, dedupe (first wins) and append the fallbacks last."""
    seen: set[str] = set(GENERIC_FALLBACKS)
    out: list[str] = []
    for stage in stages:
        for raw in stage:
            selector = normalize_selector(raw)
            if selector and selector not in seen:
                seen.add(selector)
                out.append(selector)
    return out + list(GENERIC_FALLBACKS)


async def find_punch_card_selector(page: Page, activity: Activity, punch_card: PunchCard) -> Optional[str]:
    """Locate the punch-card CTA for ``activity`` in the page HTML."""
    if not activity.offer_id:
        return None
    soup = BeautifulSoup(await page.content(), "html.parser")
    for anchor in soup.select(".offer-cta"):
        href = anchor.get("href") or ""
        if activity.offer_id in href:
            return f'a[href*="{escape_css_string(href)}"]'
    return None


class SelectorResolver:

    def __init__(self, punch_card_hook: Optional[PunchCardHook] = find_punch_card_selector):
        self.punch_card_hook = punch_card_hook

    async def resolve(
        self,
        page: Page,
        activity: Activity,
        punch_card: Optional[PunchCard] = None,
    ) -> list[str]:
        """Ordered, deduplicated candidates for ``activity``. Never raises."""
        hook_stage: list[str] = []
        if punch_card is not None and self.punch_card_hook is not None:
            try:
                found = await self.punch_card_hook(page, activity, punch_card)
                if found:
                    hook_stage.append(found)
            except Exception as e:
                logger.debug("Punch card lookup failed for %s: %s", activity.title, e)

        daily_stage: list[str] = []
        try:
            ids = await page.evaluate(_DAILY_ANCESTOR_IDS_JS, [ID_ATTR, DAILY_ID_PATTERN])
            daily_stage = [scoped_point_link(i) for i in ids or [] if i]
        except Exception as e:
            logger.debug("Daily-set scan failed: %s", e)

        text_stage: list[str] = []
        if activity.title.strip():
            try:
                matches = await page.evaluate(_TEXT_MATCHES_JS, [ID_ATTR, activity.title.strip()])
                for match in matches or []:
                    if match.get("id"):
                        text_stage.append(scoped_point_link(match["id"]))
                    if match.get("href"):
                        text_stage.append(f'a[href="{escape_css_string(match["href"])}"]')
            except Exception as e:
                logger.debug("Text scan failed for %s: %s", activity.title, e)

        candidates = compose_candidates(
            hook_stage,
            static_candidates(activity),
            daily_stage,
            destination_candidates(activity.destination_url),
            text_stage,
        )
        logger.debug("Resolved %d selector(s) for %s", len(candidates), activity.title)
        return candidates
