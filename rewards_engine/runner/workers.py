"""Daily set, punch card and more-promotions flows on top of the orchestrator."""

from __future__ import annotations

import time
from datetime import date
from typing import Iterable, Optional

from playwright.async_api import Page

from rewards_engine.browser.tabs import ensure_tab, go_home
from rewards_engine.config import EngineConfig
from rewards_engine.log import get_logger, log as log_event
from rewards_engine.models import Activity, DashboardData, PunchCard
from rewards_engine.runner.metrics import FlowMetrics, RunMetrics
from rewards_engine.solver.orchestrator import ActivityOrchestrator
from rewards_engine.state.ledger import CompletionLedger


def dashboard_day(day: Optional[date] = None) -> str:
    """Day key used by the dashboard payload (``MM/DD/YYYY``)."""
    return (day or date.today()).strftime("%m/%d/%Y")


class Workers:

    def __init__(
        self,
        config: EngineConfig,
        orchestrator: ActivityOrchestrator,
        ledger: CompletionLedger,
        account_email: str,
        is_mobile: bool = False,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.account_email = account_email
        self.is_mobile = is_mobile

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def do_daily_set(self, page: Page, data: DashboardData, day: Optional[str] = None) -> FlowMetrics:
        log = get_logger("DAILY-SET", self.is_mobile)
        day = day or dashboard_day()
        todays = data.daily_set_promotions.get(day) or []
        candidates = [a for a in todays if not a.complete and a.is_rewarded]
        metrics = FlowMetrics("daily_set")

        if not candidates:
            log.info("All Daily Set items have already been completed")
            return metrics

        log.info("Started solving %d Daily Set item(s)", len(candidates))
        await self._run_flow(page, candidates, day, metrics)
        await go_home(await ensure_tab(page), self.config.base_url)
        log.info("Daily Set: %d completed, %d remaining", metrics.completed, metrics.remaining)
        return metrics

    async def do_punch_cards(self, page: Page, data: DashboardData, day: Optional[str] = None) -> list[FlowMetrics]:
        log = get_logger("PUNCH-CARD", self.is_mobile)
        day = day or dashboard_day()
        results: list[FlowMetrics] = []
        cards = [c for c in data.punch_cards if c.is_uncompleted]

        if not cards:
            log.info("All Punch Cards have already been completed")
            return results

        for card in cards:
            parent = card.parent_promotion
            if not parent.title:
                log.warning('Skipped punchcard "%s" | Reason: Parent promotion is missing!', card.name)
                continue
            metrics = FlowMetrics(f"punch_card:{parent.title}")
            children = [c for c in card.child_promotions if not c.complete]
            if not children:
                results.append(metrics)
                continue

            if parent.destination_url:
                try:
                    page = await ensure_tab(page)
                    await page.goto(parent.destination_url, referer=self.config.base_url, timeout=120000)
                    await page.wait_for_load_state("domcontentloaded", timeout=15000)
                except Exception as e:
                    log.warning('Could not open punchcard "%s": %s', parent.title, e)
                    metrics.error = str(e)
                    metrics.remaining = len(children)
                    results.append(metrics)
                    continue

            log.info('Started solving "Punch Card" items for punchcard: "%s"', parent.title)
            await self._run_flow(page, children, day, metrics, punch_card=card)
            await go_home(await ensure_tab(page), self.config.base_url)
            log.info('Punchcard "%s": %d completed, %d remaining', parent.title, metrics.completed, metrics.remaining)
            results.append(metrics)
        return results

    async def do_more_promotions(self, page: Page, data: DashboardData, day: Optional[str] = None) -> FlowMetrics:
        log = get_logger("MORE-PROMOTIONS", self.is_mobile)
        day = day or dashboard_day()
        items = list(data.more_promotions)
        if data.promotional_item is not None:
            items.append(data.promotional_item)
        candidates = [a for a in items if not a.complete and a.is_rewarded and not a.is_locked]
        metrics = FlowMetrics("more_promotions")

        if not candidates:
            log.info('All "More Promotion" items have already been completed')
            return metrics

        log.info('Started solving %d "More Promotions" item(s)', len(candidates))
        await self._run_flow(page, candidates, day, metrics)
        await go_home(await ensure_tab(page), self.config.base_url)
        log.info("More Promotions: %d completed, %d remaining", metrics.completed, metrics.remaining)
        return metrics

    async def run_all(self, page: Page, data: DashboardData, day: Optional[str] = None) -> RunMetrics:
        run = RunMetrics(account=self.account_email)
        run.start()
        flags = self.config.workers
        if flags.do_daily_set:
            run.add_flow(await self.do_daily_set(page, data, day))
        if flags.do_punch_cards:
            for metrics in await self.do_punch_cards(page, data, day):
                run.add_flow(metrics)
        if flags.do_more_promotions:
            run.add_flow(await self.do_more_promotions(page, data, day))
        run.finish()
        log_event(
            self.is_mobile, "MAIN",
            f"Run finished: {run.total_completed} completed, {run.total_remaining} remaining",
        )
        return run

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def filter_done(self, activities: Iterable[Activity], day: str) -> tuple[list[Activity], int]:
        """Drop activities already recorded in the ledger for ``day``."""
        pending, skipped = [], 0
        for activity in activities:
            if self.ledger.is_done(self.account_email, day, activity.offer_id):
                skipped += 1
            else:
                pending.append(activity)
        return pending, skipped

    async def _run_flow(
        self,
        page: Page,
        activities: list[Activity],
        day: str,
        metrics: FlowMetrics,
        punch_card: Optional[PunchCard] = None,
    ) -> set[str]:
        started = time.time()
        pending, metrics.skipped_by_ledger = self.filter_done(activities, day)
        metrics.attempted = len(pending)
        completed: set[str] = set()
        untracked = sum(1 for a in pending if not a.offer_id)
        untracked_done = 0

        for _ in range(max(1, self.config.passes_per_run)):
            if not pending:
                break
            metrics.passes += 1
            page = await ensure_tab(page)
            done = await self.orchestrator.solve_activities(page, pending, punch_card)
            for offer_id in done:
                self.ledger.mark_done(self.account_email, day, offer_id)
            completed |= done
            if untracked and metrics.passes == 1:
                untracked_done = min(self.orchestrator.untracked_completed, untracked)
            # Activities without an offer id cannot be tracked across passes
            pending = [a for a in pending if a.offer_id and a.offer_id not in completed]

        metrics.completed = len(completed) + untracked_done
        metrics.remaining = len(pending) + untracked - untracked_done
        metrics.elapsed_seconds = time.time() - started
        return completed
