"""Adaptive pacing driven by recent success/failure outcomes."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ThrottleState:
    multiplier: float
    consecutive_failures: int
    consecutive_successes: int


class AdaptiveThrottler:
    """Delay multiplier that grows on failure and decays on success.

    The multiplier stays within ``[min_multiplier, max_multiplier]``; a
    failure never lowers it and a success never raises it.
    """

    def __init__(
        self,
        min_multiplier: float = 1.0,
        max_multiplier: float = 4.0,
        growth: float = 1.5,
        decay: float = 0.8,
    ):
        if growth < 1.0 or not 0.0 < decay <= 1.0:
            raise ValueError("growth must be >= 1 and decay in (0, 1]")
        self.min_multiplier = min_multiplier
        self.max_multiplier = max_multiplier
        self.growth = growth
        self.decay = decay
        self._multiplier = min_multiplier
        self._failures = 0
        self._successes = 0

    def record(self, success: bool) -> None:
        if success:
            self._successes += 1
            self._failures = 0
            self._multiplier = max(self.min_multiplier, self._multiplier * self.decay)
        else:
            self._failures += 1
            self._successes = 0
            self._multiplier = min(self.max_multiplier, self._multiplier * self.growth)

    def get_delay_multiplier(self) -> float:
        return self._multiplier

    def scale(self, min_ms: float, max_ms: float) -> tuple[int, int]:
        m = self._multiplier
        return int(min_ms * m), int(max_ms * m)

    @property
    def state(self) -> ThrottleState:
        return ThrottleState(self._multiplier, self._failures, self._successes)
