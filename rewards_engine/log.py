"""Logging helpers.

Every engine message is tagged with the platform (``MAIN`` or ``MOBILE``) and
a short category such as ``QUIZ`` or ``ACTIVITY``.  The tagging is done with a
``LoggerAdapter`` so components keep using plain ``logging`` calls.
"""

from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"

LEVELS = {
    "log": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "debug": logging.DEBUG,
}


class CategoryAdapter(logging.LoggerAdapter):
    """Prefix messages with ``[MAIN] [CATEGORY]``."""

    def process(self, msg, kwargs):
        platform = "MOBILE" if self.extra.get("is_mobile") else "MAIN"
        return f"[{platform}] [{self.extra['category']}] {msg}", kwargs


def get_logger(category: str, is_mobile: bool = False) -> CategoryAdapter:
    base = logging.getLogger(f"rewards_engine.{category.lower()}")
    return CategoryAdapter(base, {"category": category.upper(), "is_mobile": is_mobile})


def log(is_mobile: bool, category: str, message: str, level: str = "log") -> None:
    """Emit one message using the ``(is_mobile, category, message, level)`` contract."""
    get_logger(category, is_mobile).log(LEVELS.get(level, logging.INFO), "%s", message)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
