"""Tests for overlay geometry: drag, resize, minimize, persistence."""

import asyncio
import random

import pytest

from overlay import (
    OVERLAY_STATE_KEY,
    RESIZE_DIRECTIONS,
    OverlayGeometryManager,
    OverlayPanel,
    OverlayVisibility,
    Viewport,
)

VW, VH = 1280, 720


def _manager(store=None):
    return OverlayGeometryManager(store, Viewport(VW, VH))


async def _shown(store=None):
    manager = _manager(store)
    await manager.show()
    return manager


def _assert_inside(manager):
    box = manager.box()
    assert box.left >= 0
    assert box.top >= 0
    assert box.left + box.width <= VW + 1e-9
    assert box.top + box.height <= VH + 1e-9


def test_defaults_on_first_show():
    async def scenario():
        manager = await _shown()
        assert manager.visibility == OverlayVisibility.NORMAL
        assert manager.state.position.right == 32 and manager.state.position.left is None
        assert manager.box().as_dict() == {"top": 32, "left": VW - 32 - 340, "width": 340, "height": 220}

    asyncio.run(scenario())


# ── Drag ──────────────────────────────────────────────────────
def test_drag_moves_by_pointer_offset_and_switches_anchor():
    async def scenario():
        manager = await _shown()
        manager.header_down(1000, 40)      # offset (92, 8)
        await manager.pointer_move(500, 300)
        assert manager.state.position.left == 408
        assert manager.state.position.top == 292
        assert manager.state.position.right is None
        manager.pointer_up()
        await manager.pointer_move(10, 10)
        assert manager.state.position.left == 408

    asyncio.run(scenario())


def test_drag_is_clamped_to_viewport():
    async def scenario():
        manager = await _shown()
        manager.header_down(1000, 40)
        await manager.pointer_move(-500, -500)
        assert (manager.state.position.left, manager.state.position.top) == (0, 0)
        await manager.pointer_move(5000, 5000)
        assert manager.state.position.left == VW - 340
        assert manager.state.position.top == VH - 220
        _assert_inside(manager)

    asyncio.run(scenario())


def test_drag_from_header_controls_is_ignored():
    async def scenario():
        manager = await _shown()
        for target in ("minimize", "close"):
            manager.header_down(1000, 40, target)
            await manager.pointer_move(100, 100)
        assert manager.state.position.right == 32

    asyncio.run(scenario())


def test_minimized_panel_drags_down_to_header_sliver():
    async def scenario():
        manager = await _shown()
        await manager.toggle_minimize()
        manager.header_down(1000, 40)
        await manager.pointer_move(1000, 5000)
        assert manager.state.position.top == VH - 44
        _assert_inside(manager)

    asyncio.run(scenario())


# ── Resize ────────────────────────────────────────────────────
def test_bottom_right_resize_respects_minimum_width():
    async def scenario():
        manager = await _shown()
        manager.handle_down("bottom-right", 1248, 252)
        await manager.pointer_move(1048, 352)
        assert manager.state.size.width == 240
        assert manager.state.size.height == 320
        assert manager.state.position.left == 908
        assert manager.state.position.top == 32

    asyncio.run(scenario())


def test_top_left_resize_moves_the_top_left_corner():
    async def scenario():
        manager = await _shown()
        manager.handle_down("top-left", 908, 32)
        await manager.pointer_move(958, 62)
        assert (manager.state.size.width, manager.state.size.height) == (290, 190)
        assert (manager.state.position.left, manager.state.position.top) == (958, 62)

    asyncio.run(scenario())


def test_top_resize_stops_at_minimum_height():
    async def scenario():
        manager = await _shown()
        manager.handle_down("top", 1000, 32)
        await manager.pointer_move(1000, 532)
        assert manager.state.size.height == 80
        assert manager.state.position.top == 32 + 220 - 80

    asyncio.run(scenario())


def test_resize_past_viewport_edges_is_clamped():
    async def scenario():
        manager = await _shown()
        manager.handle_down("right", 1248, 100)
        await manager.pointer_move(4000, 100)
        assert manager.box().left + manager.box().width <= VW
        manager.pointer_up()

        manager.handle_down("left", manager.box().left, 100)
        await manager.pointer_move(-3000, 100)
        assert manager.state.position.left == 0
        assert manager.state.size.width <= VW
        _assert_inside(manager)

    asyncio.run(scenario())


def test_resize_ignored_while_minimized():
    async def scenario():
        manager = await _shown()
        await manager.toggle_minimize()
        manager.handle_down("bottom", 1000, 76)
        await manager.pointer_move(1000, 400)
        assert manager.state.size.height is None

    asyncio.run(scenario())


def test_geometry_stays_inside_viewport_after_any_interaction():
    async def scenario():
        rng = random.Random(7)
        manager = await _shown()
        for _ in range(300):
            box = manager.box()
            if rng.random() < 0.4:
                manager.header_down(box.left + rng.uniform(0, box.width), box.top + 5)
            else:
                manager.handle_down(rng.choice(RESIZE_DIRECTIONS), box.left, box.top)
            for _ in range(rng.randint(1, 4)):
                await manager.pointer_move(rng.uniform(-800, VW + 800), rng.uniform(-800, VH + 800))
                _assert_inside(manager)
            manager.pointer_up()

    asyncio.run(scenario())


# ── Minimize / Maximize ───────────────────────────────────────
def test_minimize_then_maximize_restores_exact_geometry():
    async def scenario():
        manager = await _shown()
        manager.handle_down("bottom-right", 1248, 252)
        await manager.pointer_move(1308, 332)
        manager.pointer_up()
        manager.header_down(1000, 40)
        await manager.pointer_move(300, 150)
        manager.pointer_up()
        before = manager.box().as_dict()

        await manager.toggle_minimize()
        assert manager.visibility == OverlayVisibility.MINIMIZED
        assert manager.box().height == 44

        await manager.toggle_minimize()
        assert manager.visibility == OverlayVisibility.NORMAL
        assert manager.box().as_dict() == before

    asyncio.run(scenario())


def test_maximize_from_default_auto_height():
    async def scenario():
        manager = await _shown()
        before = manager.box().as_dict()
        await manager.toggle_minimize()
        await manager.toggle_minimize()
        assert manager.box().as_dict() == before
        assert manager.state.position.right is None

    asyncio.run(scenario())


def test_toggle_while_hidden_shows_normal_panel():
    async def scenario():
        manager = _manager()
        await manager.toggle_minimize()
        assert manager.visibility == OverlayVisibility.NORMAL

    asyncio.run(scenario())


# ── Visibility ────────────────────────────────────────────────
def test_fullscreen_entry_withdraws_panel():
    async def scenario():
        manager = await _shown()
        await manager.on_fullscreen(False)
        assert manager.visible
        manager.header_down(1000, 40)
        await manager.on_fullscreen(True)
        assert manager.visibility == OverlayVisibility.HIDDEN
        assert not manager.interacting

    asyncio.run(scenario())


def test_hidden_panel_ignores_pointer():
    async def scenario():
        manager = _manager()
        manager.header_down(1000, 40)
        await manager.pointer_move(10, 10)
        assert manager.state.position.right == 32

    asyncio.run(scenario())


def test_viewport_shrink_pulls_panel_inside():
    async def scenario():
        manager = await _shown()
        manager.header_down(1000, 40)
        await manager.pointer_move(1200, 600)
        manager.pointer_up()
        await manager.set_viewport(Viewport(800, 400))
        box = manager.box()
        assert box.left + box.width <= 800
        assert box.top + box.height <= 400

    asyncio.run(scenario())


def test_maximize_after_shrink_while_minimized_stays_inside():
    async def scenario():
        manager = await _shown()
        manager.header_down(1000, 40)
        await manager.pointer_move(1200, 600)
        manager.pointer_up()
        await manager.toggle_minimize()
        await manager.set_viewport(Viewport(800, 400))
        await manager.toggle_minimize()

        box = manager.box()
        assert not manager.minimized
        assert (box.width, box.height) == (340, 220)
        assert box.left >= 0 and box.top >= 0
        assert box.left + box.width <= 800
        assert box.top + box.height <= 400

    asyncio.run(scenario())


# ── Persistence ───────────────────────────────────────────────
def test_geometry_survives_panel_recreation(make_store):
    async def scenario():
        store = make_store()
        manager = await _shown(store)
        manager.header_down(1000, 40)
        await manager.pointer_move(400, 200)
        manager.pointer_up()
        saved = (await store.get([OVERLAY_STATE_KEY]))[OVERLAY_STATE_KEY]
        assert saved["position"] == {"top": 192, "left": 308, "right": None}

        recreated = await _shown(store)
        assert recreated.state == manager.state

    asyncio.run(scenario())


def test_minimized_state_survives_and_restores(make_store):
    async def scenario():
        store = make_store()
        manager = await _shown(store)
        manager.handle_down("bottom", 1000, 252)
        await manager.pointer_move(1000, 352)
        manager.pointer_up()
        expected = manager.box().as_dict()
        await manager.toggle_minimize()

        recreated = await _shown(store)
        assert recreated.visibility == OverlayVisibility.MINIMIZED
        await recreated.toggle_minimize()
        assert recreated.box().as_dict() == expected

    asyncio.run(scenario())


@pytest.mark.parametrize("blob", [
    {"size": {"width": "wide"}},
    {"position": [1, 2, 3]},
    "not a dict",
])
def test_malformed_saved_geometry_uses_defaults(make_store, blob):
    async def scenario():
        store = make_store()
        await store.set({OVERLAY_STATE_KEY: blob})
        manager = await _shown(store)
        assert manager.state.size.width == 340
        assert manager.state.position.right == 32

    asyncio.run(scenario())


# ── Panel content ─────────────────────────────────────────────
def test_panel_content_and_subscribers():
    async def scenario():
        panel = OverlayPanel(viewport=Viewport(VW, VH))
        panel.show_answer("ignored while hidden")
        assert panel.body == ""

        await panel.open()
        queue = panel.subscribe()
        first = queue.get_nowait()
        assert first.visible and first.paused_info.startswith("Welcome")

        panel.show_paused(7, None)
        view = queue.get_nowait()
        assert view.paused_info == "⏸️ Paused at 7.00s"
        assert "No transcript" in view.body

        panel.show_thinking("sorting")
        assert queue.get_nowait().body_kind == "thinking"
        panel.show_error("")
        assert queue.get_nowait().body == "❌ Error: AI output unavailable."

        await panel.geometry.toggle_minimize()
        view = queue.get_nowait()
        assert view.minimized and not view.handles_visible
        assert (view.header_icon, view.minimize_glyph, view.minimize_title) == ("📘", "+", "Maximize")

        panel.close()
        view = queue.get_nowait()
        assert not view.visible and view.body == "" and view.chat == []
        panel.unsubscribe(queue)

    asyncio.run(scenario())
