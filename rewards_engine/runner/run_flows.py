#!/usr/bin/env python3
"""Run the activity flows for one account against an already-fetched dashboard.

Usage:
    python -m rewards_engine.runner.run_flows --dashboard dashboard.json --email me@example.com
    python -m rewards_engine.runner.run_flows --dashboard dashboard.json --email me@example.com --mobile
    python -m rewards_engine.runner.run_flows --dashboard dashboard.json --email me@example.com --no-job-state
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from playwright.async_api import async_playwright

from rewards_engine.browser.diagnostics import DiagnosticsRecorder
from rewards_engine.browser.humanizer import Humanizer
from rewards_engine.config import PROJECT_ROOT, EngineConfig, load_config
from rewards_engine.errors import ConfigError
from rewards_engine.log import setup_logging
from rewards_engine.models import DashboardData
from rewards_engine.runner.metrics import RunMetrics
from rewards_engine.runner.workers import Workers
from rewards_engine.solver.activity_handlers import ActivityHandlers
from rewards_engine.solver.interaction import InteractionProtocol
from rewards_engine.solver.orchestrator import ActivityOrchestrator
from rewards_engine.solver.overlay_manager import OverlayManager
from rewards_engine.state.ledger import CompletionLedger

logger = logging.getLogger(__name__)


def build_workers(config: EngineConfig, email: str, is_mobile: bool = False) -> Workers:
    humanizer = Humanizer(config.humanization)
    clicker = InteractionProtocol.from_config(config.interaction, OverlayManager(), humanizer, is_mobile)
    handlers = ActivityHandlers(
        clicker,
        humanizer=humanizer,
        is_mobile=is_mobile,
        queries_path=PROJECT_ROOT / "config" / "queries.json",
    )
    orchestrator = ActivityOrchestrator(
        config,
        handlers,
        diagnostics=DiagnosticsRecorder(config.diagnostics),
        is_mobile=is_mobile,
    )
    ledger = CompletionLedger(config.job_state_dir, enabled=config.job_state.enabled)
    return Workers(config, orchestrator, ledger, email, is_mobile)


async def run(config: EngineConfig, data: DashboardData, email: str, is_mobile: bool) -> RunMetrics:
    workers = build_workers(config, email, is_mobile)
    profile = Path(config.session_path) / email / ("mobile" if is_mobile else "desktop")

    async with async_playwright() as p:
        context = await p.chromium.launch_persistent_context(str(profile), headless=config.headless)
        try:
            page = context.pages[0] if context.pages else await context.new_page()
            await page.goto(config.base_url)
            return await workers.run_all(page, data)
        finally:
            await context.close()


def main():
    parser = argparse.ArgumentParser(description="Complete dashboard activities for one account")
    parser.add_argument("--dashboard", required=True, help="Path to dashboard JSON")
    parser.add_argument("--email", required=True, help="Account email (ledger key)")
    parser.add_argument("--config", default=None, help="Config YAML (default: config/engine_config.yaml)")
    parser.add_argument("--mobile", action="store_true", help="Run as the mobile platform")
    parser.add_argument("--no-job-state", action="store_true", help="Disable the completion ledger")
    parser.add_argument("--metrics-out", default=None, help="Write run metrics JSON here")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(2)
    if args.no_job_state:
        config.job_state.enabled = False

    with open(args.dashboard) as f:
        data = DashboardData.from_dict(json.load(f))

    metrics = asyncio.run(run(config, data, args.email, args.mobile))
    metrics.print_summary()
    if args.metrics_out:
        metrics.save(args.metrics_out)
        logger.info("Metrics saved to %s", args.metrics_out)


if __name__ == "__main__":
    main()
