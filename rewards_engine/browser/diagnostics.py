"""Screenshot + HTML capture for failed activities."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from playwright.async_api import Page

from rewards_engine.config import DiagnosticsConfig

logger = logging.getLogger(__name__)

_UNSAFE_LABEL = re.compile(r"[^a-z0-9-_]")


def safe_label(label: str) -> str:
    return _UNSAFE_LABEL.sub("_", label.lower())[:64]


class DiagnosticsRecorder:
    """Writes ``<dir>/<YYYY-MM-DD>/<HHMMSS>_<label>.{png,html}``, capped per run."""

    def __init__(self, config: Optional[DiagnosticsConfig] = None):
        self.config = config or DiagnosticsConfig()
        self.captured = 0

    async def capture(self, page: Page, label: str) -> Optional[Path]:
        """Best-effort capture; returns the base path written, if any."""
        if not self.config.enabled or self.captured >= self.config.max_per_run:
            return None
        self.captured += 1

        now = datetime.now()
        out_dir = Path(self.config.dir) / now.strftime("%Y-%m-%d")
        base = out_dir / f"{now.strftime('%H%M%S')}_{safe_label(label)}"
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            if self.config.save_screenshot:
                await page.screenshot(path=str(base.with_suffix(".png")), full_page=True)
            if self.config.save_html:
                base.with_suffix(".html").write_text(await page.content(), encoding="utf-8")
        except Exception as e:
            logger.warning("Diagnostics capture failed for %s: %s", label, e)
            return None
        logger.info("Saved diagnostics to %s", base)
        return base
