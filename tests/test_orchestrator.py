import asyncio
import random

import pytest

from rewards_engine.browser.humanizer import Humanizer
from rewards_engine.config import DiagnosticsConfig, EngineConfig, HumanizationConfig, RetryPolicyConfig
from rewards_engine.errors import ActivityTimeoutError, HandlerError, QuizFailedError
from rewards_engine.models import Activity
from rewards_engine.solver.activity_handlers import ActivityHandlers
from rewards_engine.solver.interaction import InteractionProtocol
from rewards_engine.solver.overlay_manager import OverlayManager
from rewards_engine.solver.orchestrator import ActivityOrchestrator, race_with_timeout
from rewards_engine.solver.retry import RetryPolicy
from tests.conftest import no_sleep
from tests.fakes import FakeElement, FakePage

POLL_URL = "https://www.bing.com/search?q=poll&pollscenarioid=7"


def _tile(offer_id):
    return f'[data-bi-id^="{offer_id}"] .pointLink:not(.contentContainer .pointLink)'


def _orchestrator(handlers, diagnostics=None, attempts=1, **config):
    config = EngineConfig(
        base_url="https://rewards.example.test",
        diagnostics=diagnostics or DiagnosticsConfig(enabled=False),
        **config,
    )
    retry = RetryPolicy(RetryPolicyConfig(max_attempts=attempts, base_delay=0), sleep=no_sleep)
    return ActivityOrchestrator(config, handlers, retry=retry)


def _popup_on_click(page, url):
    popup = FakePage(url, context=page.context)
    page.context.pages.remove(popup)

    def open_popup():
        page.context.pages.append(popup)
        page.context.next_popup = popup

    return popup, open_popup


class RecordingHandlers(ActivityHandlers):
    def __init__(self, clicker):
        super().__init__(clicker)
        self.handled = []

    async def handle_quiz(self, page):
        self.handled.append("quiz")
        raise QuizFailedError("exhausted")

    async def handle_url_reward(self, page):
        self.handled.append("url")


class FlakyHandlers(ActivityHandlers):
    """UrlReward fails on its first run, optionally closing its page first."""

    def __init__(self, clicker, close_first=False):
        super().__init__(clicker)
        self.close_first = close_first
        self.entries = []

    async def handle_url_reward(self, page):
        self.entries.append((page, page.is_closed()))
        if len(self.entries) == 1:
            if self.close_first:
                await page.close()
            raise HandlerError("tile not ready")


class HangingHandlers(ActivityHandlers):
    def __init__(self, clicker):
        super().__init__(clicker)
        self.release = asyncio.Event()
        self.handled = []

    async def handle_url_reward(self, page):
        self.handled.append("url")
        await self.release.wait()

    async def handle_poll(self, page):
        self.handled.append("poll")


class TestSolveActivities:
    @pytest.mark.asyncio
    async def test_poll_through_popup(self, page, clicker):
        activity = Activity(
            title="Daily poll",
            offer_id="X",
            promotion_type="quiz",
            point_progress_max=10,
            destination_url=POLL_URL,
        )
        popup, open_popup = _popup_on_click(page, POLL_URL)
        popup.add("#btoption0")
        page.add(_tile("X"), FakeElement(on_click=open_popup))

        completed = await _orchestrator(ActivityHandlers(clicker)).solve_activities(page, [activity])

        assert completed == {"X"}
        assert page.clicked == [_tile("X")]
        assert popup.clicked == ["#btoption0"]
        assert popup.closed

    @pytest.mark.asyncio
    async def test_unsupported_activity_is_not_clicked(self, page, clicker):
        page.add(_tile("W"))
        activity = Activity(title="Welcome tour", offer_id="W", promotion_type="welcometour")

        completed = await _orchestrator(ActivityHandlers(clicker)).solve_activities(page, [activity])

        assert completed == set()
        assert page.clicked == []

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_batch(self, page, clicker):
        handlers = RecordingHandlers(clicker)
        page.add(_tile("Q"))
        page.add(_tile("U"))
        activities = [
            Activity(title="Quiz", offer_id="Q", promotion_type="quiz", point_progress_max=30),
            Activity(title="Visit", offer_id="U", promotion_type="urlreward", point_progress_max=10),
        ]

        completed = await _orchestrator(handlers).solve_activities(page, activities)

        assert completed == {"U"}
        assert sorted(handlers.handled) == ["quiz", "url"]

    @pytest.mark.asyncio
    async def test_unclickable_activity_is_skipped(self, page, clicker):
        handlers = RecordingHandlers(clicker)
        activity = Activity(title="Visit", offer_id="U", promotion_type="urlreward", point_progress_max=10)

        completed = await _orchestrator(handlers).solve_activities(page, [activity])

        assert completed == set()
        assert handlers.handled == []

    @pytest.mark.asyncio
    async def test_failure_writes_diagnostics(self, page, clicker, tmp_path):
        page.add(_tile("Q"))
        activity = Activity(title="Big Quiz", offer_id="Q", promotion_type="quiz", point_progress_max=30)
        orchestrator = _orchestrator(
            RecordingHandlers(clicker), DiagnosticsConfig(dir=str(tmp_path))
        )

        await orchestrator.solve_activities(page, [activity])

        written = [p.name for p in tmp_path.rglob("*") if p.is_file()]
        assert any(name.endswith("_activity_failed_big_quiz.png") for name in written)
        assert any(name.endswith("_activity_failed_big_quiz.html") for name in written)

    @pytest.mark.asyncio
    async def test_returns_to_dashboard_between_activities(self, page, clicker):
        handlers = RecordingHandlers(clicker)

        def wander():
            page.url = "https://www.bing.com/elsewhere"

        page.add(_tile("A"), FakeElement(on_click=wander))
        page.add(_tile("B"), FakeElement(on_click=wander))
        activities = [
            Activity(title="a", offer_id="A", promotion_type="urlreward"),
            Activity(title="b", offer_id="B", promotion_type="urlreward"),
        ]

        completed = await _orchestrator(handlers).solve_activities(page, activities)

        assert completed == {"A", "B"}
        assert page.visited == ["https://rewards.example.test/"]

    @pytest.mark.asyncio
    async def test_custom_handler_extends_supported_types(self, page, clicker):
        class WelcomeTour:
            def __init__(self):
                self.ran = []

            def can_handle(self, activity):
                return activity.promotion_type == "welcometour"

            async def run(self, page, activity):
                self.ran.append(activity.offer_id)

        custom = WelcomeTour()
        handlers = ActivityHandlers(clicker)
        handlers.register_handler(custom)
        page.add(_tile("W"))

        completed = await _orchestrator(handlers).solve_activities(
            page, [Activity(title="Tour", offer_id="W", promotion_type="welcometour")]
        )

        assert completed == {"W"}
        assert custom.ran == ["W"]

class TestHandlerRetry:
    @pytest.mark.asyncio
    async def test_retry_reuses_open_page(self, page, clicker):
        handlers = FlakyHandlers(clicker)
        popup, open_popup = _popup_on_click(page, "https://www.bing.com/offer")
        page.add(_tile("U"), FakeElement(on_click=open_popup))
        activity = Activity(title="Visit", offer_id="U", promotion_type="urlreward", point_progress_max=10)

        completed = await _orchestrator(handlers, attempts=2).solve_activities(page, [activity])

        assert completed == {"U"}
        assert handlers.entries == [(popup, False), (popup, False)]

    @pytest.mark.asyncio
    async def test_closed_page_is_reopened_for_retry(self, page, clicker):
        handlers = FlakyHandlers(clicker, close_first=True)
        popup, open_popup = _popup_on_click(page, "https://www.bing.com/offer")
        page.add(_tile("U"), FakeElement(on_click=open_popup))
        activity = Activity(
            title="Visit",
            offer_id="U",
            promotion_type="urlreward",
            point_progress_max=10,
            destination_url="https://www.bing.com/offer",
        )

        completed = await _orchestrator(handlers, attempts=2).solve_activities(page, [activity])

        assert completed == {"U"}
        (first, _), (second, second_closed) = handlers.entries
        assert first is popup
        assert second is not popup
        assert not second_closed
        assert second.visited == ["https://www.bing.com/offer"]

    @pytest.mark.asyncio
    async def test_closed_page_without_url_is_not_retried(self, page, clicker):
        handlers = FlakyHandlers(clicker, close_first=True)
        popup, open_popup = _popup_on_click(page, "https://www.bing.com/offer")
        page.add(_tile("U"), FakeElement(on_click=open_popup))
        activity = Activity(title="Visit", offer_id="U", promotion_type="urlreward", point_progress_max=10)

        completed = await _orchestrator(handlers, attempts=3).solve_activities(page, [activity])

        assert completed == set()
        assert len(handlers.entries) == 1

    @pytest.mark.asyncio
    async def test_failed_popup_is_closed(self, page, clicker):
        handlers = FlakyHandlers(clicker)
        popup, open_popup = _popup_on_click(page, "https://www.bing.com/offer")
        page.add(_tile("U"), FakeElement(on_click=open_popup))
        activity = Activity(title="Visit", offer_id="U", promotion_type="urlreward", point_progress_max=10)

        completed = await _orchestrator(handlers, attempts=1).solve_activities(page, [activity])

        assert completed == set()
        assert popup.closed
        assert not page.closed


class TestActivityTimeout:
    @pytest.mark.asyncio
    async def test_timeout_is_recorded_and_batch_continues(self, page, clicker, tmp_path):
        handlers = HangingHandlers(clicker)
        page.add(_tile("T"))
        page.add(_tile("P"))
        activities = [
            Activity(title="Slow visit", offer_id="T", promotion_type="urlreward", point_progress_max=10),
            Activity(
                title="Daily poll",
                offer_id="P",
                promotion_type="quiz",
                point_progress_max=10,
                destination_url=POLL_URL,
            ),
        ]
        orchestrator = _orchestrator(
            handlers, DiagnosticsConfig(dir=str(tmp_path)), attempts=3, global_timeout="10ms",
        )

        completed = await orchestrator.solve_activities(page, activities)

        assert completed == {"P"}
        # Timeouts are not retried
        assert sorted(handlers.handled) == ["poll", "url"]
        written = [p.name for p in tmp_path.rglob("*") if p.is_file()]
        assert any(name.endswith("_activity_timeout_slow_visit.png") for name in written)
        assert orchestrator.throttle.get_delay_multiplier() > 1.0

        handlers.release.set()
        for _ in range(3):
            await asyncio.sleep(0)


class TestActionPause:
    @pytest.mark.asyncio
    async def test_pause_before_handler_uses_configured_window(self, page):
        slept = []

        async def record(seconds):
            slept.append(seconds)

        humanizer = Humanizer(
            HumanizationConfig(action_delay_min=7000, action_delay_max=7000),
            rng=random.Random(3),
            sleep=record,
        )
        handlers = RecordingHandlers(InteractionProtocol(OverlayManager(), humanizer, event_timeout_ms=10))
        page.add(_tile("U"))
        activity = Activity(title="Visit", offer_id="U", promotion_type="urlreward", point_progress_max=10)

        completed = await _orchestrator(handlers).solve_activities(page, [activity])

        assert completed == {"U"}
        assert slept.count(7.0) == 1

    @pytest.mark.asyncio
    async def test_multiplier_stretches_window_unless_disabled(self):
        slept = []

        async def record(seconds):
            slept.append(seconds)

        config = HumanizationConfig(action_delay_min=1000, action_delay_max=1000)
        await Humanizer(config, sleep=record).action_pause(1.5)
        await Humanizer(HumanizationConfig(enabled=False), sleep=record).action_pause(1.5)

        assert slept == [1.5]


class TestRaceWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result_in_time(self):
        async def quick():
            return 42

        assert await race_with_timeout(quick(), 1000, "quick") == 42

    @pytest.mark.asyncio
    async def test_slow_handler_is_abandoned_not_cancelled(self):
        release = asyncio.Event()
        finished = []

        async def slow():
            await release.wait()
            finished.append(True)

        with pytest.raises(ActivityTimeoutError) as exc:
            await race_with_timeout(slow(), 10, "Slow quiz")
        assert exc.value.timeout_ms == 10
        assert not exc.value.retryable

        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_handler_errors_propagate(self):
        async def broken():
            raise QuizFailedError("no-candidates")

        with pytest.raises(QuizFailedError):
            await race_with_timeout(broken(), 1000, "broken")
