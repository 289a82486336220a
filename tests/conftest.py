from __future__ import annotations

import random

import pytest

from rewards_engine.browser.humanizer import Humanizer
from rewards_engine.config import HumanizationConfig
from rewards_engine.solver.interaction import InteractionProtocol
from rewards_engine.solver.overlay_manager import OverlayManager
from tests.fakes import FakePage


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def humanizer() -> Humanizer:
    return Humanizer(HumanizationConfig(enabled=False), rng=random.Random(7), sleep=no_sleep)


@pytest.fixture
def clicker(humanizer) -> InteractionProtocol:
    return InteractionProtocol(OverlayManager(), humanizer, event_timeout_ms=10)


@pytest.fixture
def page() -> FakePage:
    return FakePage()
