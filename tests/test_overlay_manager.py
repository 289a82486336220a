import pytest

from rewards_engine.models import ClickReason
from rewards_engine.solver import overlay_manager
from rewards_engine.solver.overlay_manager import OverlayManager
from tests.fakes import FakeElement


class TestIsInteractable:
    @pytest.mark.asyncio
    async def test_visible_element(self, page):
        page.add("#ok")
        check = await OverlayManager().is_interactable(page, "#ok")
        assert check.interactable and check.reason is None

    @pytest.mark.asyncio
    async def test_missing(self, page):
        check = await OverlayManager().is_interactable(page, "#missing")
        assert check.reason is ClickReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_zero_box(self, page):
        page.add("#flat", FakeElement(box={"x": 0, "y": 0, "width": 0, "height": 20}))
        check = await OverlayManager().is_interactable(page, "#flat")
        assert check.reason is ClickReason.ZERO_BOUNDING_BOX

    @pytest.mark.asyncio
    @pytest.mark.parametrize("element", [
        FakeElement(display="none"),
        FakeElement(visibility="hidden"),
        FakeElement(opacity="0"),
        FakeElement(opacity="0.005"),
        FakeElement(hidden=True),
    ])
    async def test_css_hidden(self, page, element):
        page.add("#h", element)
        check = await OverlayManager().is_interactable(page, "#h")
        assert check.reason is ClickReason.CSS_HIDDEN

    @pytest.mark.asyncio
    async def test_style_check_error_still_allows_click(self, page):
        page.add("#x")

        def boom(_):
            raise RuntimeError("context destroyed")

        page.scripts[overlay_manager._STYLE_CHECK_JS] = boom
        check = await OverlayManager().is_interactable(page, "#x")
        assert check.interactable


class TestHideRestore:
    @pytest.mark.asyncio
    async def test_hide_then_restore(self, page):
        page.add("#target", FakeElement(overlays=2))
        manager = OverlayManager()

        assert await manager.hide_overlapping(page, "#target") == 2
        # Already-hidden overlays are not counted twice
        assert await manager.hide_overlapping(page, "#target") == 0
        assert await manager.restore_hidden(page) == 2
        assert await manager.restore_hidden(page) == 0

    @pytest.mark.asyncio
    async def test_failures_return_zero(self, page):
        def boom(_):
            raise RuntimeError("detached")

        page.scripts[overlay_manager._HIDE_OVERLAPPING_JS] = boom
        page.scripts[overlay_manager._RESTORE_HIDDEN_JS] = boom
        manager = OverlayManager()
        assert await manager.hide_overlapping(page, "#target") == 0
        assert await manager.restore_hidden(page) == 0

    @pytest.mark.asyncio
    async def test_stacked_flag_is_passed_to_page(self, page):
        seen = []
        page.scripts[overlay_manager._HIDE_OVERLAPPING_JS] = lambda arg: seen.append(arg) or 0
        await OverlayManager(include_stacked=True).hide_overlapping(page, "#t")
        assert seen == [["#t", overlay_manager.HIDDEN_MARKER, True]]
