"""Per-account, per-day record of completed offers.

One JSON document per account per day::

    <dir>/<account>/<day>.json  ->  {"offers": {"<offerId>": true, ...}}

Storage problems never interrupt a run: reads fall back to "not done" and
writes become no-ops, both with a warning.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_UNSAFE_PATH = re.compile(r"[^A-Za-z0-9@._-]")


def _safe(part: str) -> str:
    return _UNSAFE_PATH.sub("_", part) or "_"


class CompletionLedger:

    def __init__(self, directory: str | Path, enabled: bool = True):
        self.directory = Path(directory)
        self.enabled = enabled
        self._cache: dict[Path, dict[str, bool]] = {}

    def _path(self, email: str, day: str) -> Path:
        return self.directory / _safe(email) / f"{_safe(day)}.json"

    def _load(self, path: Path) -> dict[str, bool]:
        if path in self._cache:
            return self._cache[path]
        offers: dict[str, bool] = {}
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            offers = {str(k): bool(v) for k, v in (data.get("offers") or {}).items()}
        self._cache[path] = offers
        return offers

    def is_done(self, email: str, day: str, offer_id: Optional[str]) -> bool:
        if not self.enabled or not offer_id:
            return False
        try:
            return self._load(self._path(email, day)).get(offer_id, False)
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ledger read failed for %s/%s: %s", email, day, e)
            return False

    def mark_done(self, email: str, day: str, offer_id: Optional[str]) -> None:
        if not self.enabled or not offer_id:
            return
        path = self._path(email, day)
        try:
            offers = dict(self._load(path))
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ledger read failed for %s/%s, starting fresh: %s", email, day, e)
            offers = {}
        offers[offer_id] = True
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump({"offers": offers}, f, indent=2)
            os.replace(tmp, path)
        except OSError as e:
            logger.warning("Ledger write failed for %s/%s: %s", email, day, e)
            return
        self._cache[path] = offers

    def completed(self, email: str, day: str) -> set[str]:
        if not self.enabled:
            return set()
        try:
            return {k for k, v in self._load(self._path(email, day)).items() if v}
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ledger read failed for %s/%s: %s", email, day, e)
            return set()
