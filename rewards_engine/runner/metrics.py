"""Metrics tracking for activity flows."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class FlowMetrics:
    """Counts for one flow (daily set, a punch card, more promotions)."""
    flow: str
    attempted: int = 0
    completed: int = 0
    remaining: int = 0
    skipped_by_ledger: int = 0
    passes: int = 0
    elapsed_seconds: float = 0.0
    error: Optional[str] = None


@dataclass
class RunMetrics:
    """Aggregate metrics for one account run."""
    account: str = ""
    flows: list[FlowMetrics] = field(default_factory=list)
    total_elapsed_seconds: float = 0.0
    start_time: float = 0.0

    def start(self):
        self.start_time = time.time()

    def finish(self):
        self.total_elapsed_seconds = time.time() - self.start_time

    def add_flow(self, metrics: FlowMetrics):
        self.flows.append(metrics)

    @property
    def total_completed(self) -> int:
        return sum(f.completed for f in self.flows)

    @property
    def total_remaining(self) -> int:
        return sum(f.remaining for f in self.flows)

    def to_dict(self) -> dict:
        return {
            "summary": {
                "account": self.account,
                "flows": len(self.flows),
                "completed": self.total_completed,
                "remaining": self.total_remaining,
                "skipped_by_ledger": sum(f.skipped_by_ledger for f in self.flows),
                "total_elapsed_seconds": round(self.total_elapsed_seconds, 1),
            },
            "flows": [
                {
                    "flow": f.flow,
                    "attempted": f.attempted,
                    "completed": f.completed,
                    "remaining": f.remaining,
                    "skipped_by_ledger": f.skipped_by_ledger,
                    "passes": f.passes,
                    "elapsed_seconds": round(f.elapsed_seconds, 2),
                    "error": f.error,
                }
                for f in self.flows
            ],
        }

    def save(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def print_summary(self):
        rule = "=" * 50
        summary = self.to_dict()["summary"]
        print(f"\n{rule}\nRun Summary ({summary['account'] or 'unknown account'})\n{rule}")
        for key in ("completed", "remaining", "skipped_by_ledger", "total_elapsed_seconds"):
            print(f"  {key}: {summary[key]}")
        for f in self.flows:
            status = f"error: {f.error}" if f.error else f"{f.completed}/{f.attempted} done"
            print(f"  - {f.flow}: {status}, {f.passes} pass(es)")
        print(rule)
