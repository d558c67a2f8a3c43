# ============================================================
# overlay.py — Floating Assistant Panel: Geometry & Content
# ============================================================
# OverlayGeometryManager owns drag, 8-way resize, minimize and
# fullscreen withdrawal for the single panel, clamping the box
# to the viewport and persisting geometry after every change.
# OverlayPanel hosts it and holds the content region that the
# session repaints; subscribers get a fresh view on each change.
# ============================================================

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from pydantic import ValidationError

from config import (
    OVERLAY_AUTO_HEIGHT,
    OVERLAY_HEADER_HEIGHT,
    OVERLAY_MIN_WIDTH,
    OVERLAY_MIN_HEIGHT,
    OVERLAY_HEADER_SLIVER,
    OVERLAY_RESIZE_MARGIN,
    DEFAULT_VIEWPORT,
)
from models import (
    ChatMessage,
    OverlayPosition,
    OverlaySize,
    OverlayState,
    PanelView,
)
from store import KeyValueStore

OVERLAY_STATE_KEY = "overlay_state"
# Geometry outlives any one session: a page reload opens a new session id
OVERLAY_NAMESPACE = "overlay"
PANEL_TITLE = "YouTube Learning Assistant"

RESIZE_DIRECTIONS = (
    "top", "bottom", "left", "right",
    "top-left", "top-right", "bottom-left", "bottom-right",
)


@dataclass
class Viewport:
    width: float
    height: float


@dataclass
class Box:
    top: float
    left: float
    width: float
    height: float

    def as_dict(self) -> dict[str, float]:
        return {"top": self.top, "left": self.left, "width": self.width, "height": self.height}


class OverlayVisibility(str, Enum):
    HIDDEN = "hidden"
    NORMAL = "visible_normal"
    MINIMIZED = "visible_minimized"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class OverlayGeometryManager:
    """
    Placement, sizing and minimization of the one assistant panel.

    Geometry is read from the store when the panel is (re)created and written
    back after every drag frame, resize frame and minimize toggle. It is kept
    under its own key so navigation never clears it.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        viewport: Viewport | None = None,
        on_change: Callable[[], None] | None = None,
    ):
        self.store = store
        self.viewport = viewport or Viewport(*DEFAULT_VIEWPORT)
        self.on_change = on_change or (lambda: None)
        self.state = OverlayState()
        self.visibility = OverlayVisibility.HIDDEN
        self.pre_minimize: Box | None = None
        self._drag_offset: tuple[float, float] | None = None
        self._resize: dict | None = None

    # ── Derived Geometry ──────────────────────────────────────
    @property
    def visible(self) -> bool:
        return self.visibility != OverlayVisibility.HIDDEN

    @property
    def minimized(self) -> bool:
        return self.state.minimized

    @property
    def interacting(self) -> bool:
        return self._drag_offset is not None or self._resize is not None

    def _expanded_box(self) -> Box:
        """Box as laid out when not minimized."""
        pos, size = self.state.position, self.state.size
        height = size.height if size.height is not None else min(OVERLAY_AUTO_HEIGHT, self.viewport.height)
        if pos.left is not None:
            left = pos.left
        else:
            left = self.viewport.width - (pos.right or 0) - size.width
        return Box(top=pos.top, left=left, width=size.width, height=height)

    def box(self) -> Box:
        """Rendered bounding box; header-only while minimized."""
        box = self._expanded_box()
        if self.state.minimized:
            box.height = OVERLAY_HEADER_HEIGHT
        return box

    # ── Persistence ───────────────────────────────────────────
    async def load(self) -> None:
        """Read saved geometry; missing or malformed state means defaults."""
        if self.store is not None:
            self.state = OverlayState()
            saved = (await self.store.get([OVERLAY_STATE_KEY])).get(OVERLAY_STATE_KEY)
            if saved is not None:
                try:
                    self.state = OverlayState.model_validate(saved)
                except ValidationError:
                    print("[OVERLAY] ⚠️ Malformed overlay state in store, using defaults")
        self._normalize_anchor()
        self._fit_to_viewport()
        self.pre_minimize = self._expanded_box() if self.state.minimized else None

    async def save(self) -> None:
        if self.store is None:
            return
        await self.store.set({OVERLAY_STATE_KEY: self.state.model_dump()})

    def _normalize_anchor(self) -> None:
        pos = self.state.position
        if pos.left is not None:
            pos.right = None
        elif pos.right is None:
            pos.right = 0

    def _fit_to_viewport(self) -> None:
        """Shrink/move the stored box so it lies inside the current viewport."""
        vw, vh = self.viewport.width, self.viewport.height
        size, pos = self.state.size, self.state.position
        size.width = min(size.width, vw)
        if size.height is not None:
            size.height = min(size.height, vh)
        height = self._expanded_box().height
        pos.top = _clamp(pos.top, 0, max(0, vh - height))
        if pos.left is not None:
            pos.left = _clamp(pos.left, 0, max(0, vw - size.width))
        else:
            pos.right = _clamp(pos.right, 0, max(0, vw - size.width))

    async def set_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport
        self._fit_to_viewport()
        if self.visible:
            await self.save()
        self.on_change()

    # ── Visibility ────────────────────────────────────────────
    async def show(self) -> None:
        """Create the panel if hidden, re-applying persisted geometry."""
        if self.visible:
            return
        await self.load()
        self.visibility = OverlayVisibility.MINIMIZED if self.state.minimized else OverlayVisibility.NORMAL
        print(f"[OVERLAY] Shown ({self.visibility.value})")
        self.on_change()

    def hide(self) -> None:
        if not self.visible:
            return
        self.visibility = OverlayVisibility.HIDDEN
        self._drag_offset = None
        self._resize = None
        print("[OVERLAY] Hidden")
        self.on_change()

    async def on_fullscreen(self, active: bool) -> None:
        # Withdraw instead of restyling for fullscreen
        if active:
            self.hide()

    # ── Drag ──────────────────────────────────────────────────
    def header_down(self, x: float, y: float, target: str = "header") -> None:
        if not self.visible or target != "header":
            return
        box = self.box()
        self._resize = None
        self._drag_offset = (x - box.left, y - box.top)

    async def _drag_to(self, x: float, y: float) -> None:
        off_x, off_y = self._drag_offset
        box = self.box()
        vw, vh = self.viewport.width, self.viewport.height
        left = _clamp(x - off_x, 0, max(0, vw - box.width))
        # Header sliver rule, tightened so the whole box stays on screen
        top = _clamp(y - off_y, 0, max(0, min(vh - OVERLAY_HEADER_SLIVER, vh - box.height)))
        self.state.position = OverlayPosition(top=top, left=left, right=None)
        await self.save()

    # ── Resize ────────────────────────────────────────────────
    def handle_down(self, direction: str, x: float, y: float) -> None:
        if self.visibility != OverlayVisibility.NORMAL or direction not in RESIZE_DIRECTIONS:
            return
        box = self.box()
        self._drag_offset = None
        self._resize = {
            "dir": direction,
            "x": x,
            "y": y,
            "width": box.width,
            "height": box.height,
            "top": box.top,
            "left": box.left,
        }

    async def _resize_to(self, x: float, y: float) -> None:
        start = self._resize
        direction = start["dir"]
        dx, dy = x - start["x"], y - start["y"]
        width, height = start["width"], start["height"]
        top, left = start["top"], start["left"]

        if "right" in direction:
            width = max(OVERLAY_MIN_WIDTH, start["width"] + dx)
        if "left" in direction:
            width = max(OVERLAY_MIN_WIDTH, start["width"] - dx)
            left = start["left"] + start["width"] - width
        if "bottom" in direction:
            height = max(OVERLAY_MIN_HEIGHT, start["height"] + dy)
        if "top" in direction:
            height = max(OVERLAY_MIN_HEIGHT, start["height"] - dy)
            top = start["top"] + start["height"] - height

        vw, vh = self.viewport.width, self.viewport.height
        left = max(0, left)
        top = max(0, top)
        width = max(0, min(width, vw - left - OVERLAY_RESIZE_MARGIN))
        height = max(0, min(height, vh - top - OVERLAY_RESIZE_MARGIN))
        left = _clamp(left, 0, max(0, vw - width))
        top = _clamp(top, 0, max(0, vh - height))

        self.state.size = OverlaySize(width=width, height=height)
        self.state.position = OverlayPosition(top=top, left=left, right=None)
        await self.save()

    # ── Pointer Routing ───────────────────────────────────────
    async def pointer_move(self, x: float, y: float) -> None:
        if self._drag_offset is not None:
            await self._drag_to(x, y)
        elif self._resize is not None and not self.state.minimized:
            await self._resize_to(x, y)
        else:
            return
        self.on_change()

    def pointer_up(self) -> None:
        self._drag_offset = None
        self._resize = None

    # ── Minimize / Maximize ───────────────────────────────────
    def set_minimized(self, minimized: bool) -> None:
        if minimized:
            self.pre_minimize = self._expanded_box()
            self.state.minimized = True
            self.visibility = OverlayVisibility.MINIMIZED
            self._resize = None
        else:
            restore = self.pre_minimize or self._expanded_box()
            self.state.minimized = False
            self.state.size = OverlaySize(width=restore.width, height=restore.height)
            self.state.position = OverlayPosition(top=restore.top, left=restore.left, right=None)
            self.visibility = OverlayVisibility.NORMAL
            self.pre_minimize = None
            # The viewport may have shrunk while minimized
            self._fit_to_viewport()

    async def toggle_minimize(self) -> None:
        if not self.visible:
            # Maximize with no panel on screen just shows it
            await self.show()
            if self.state.minimized:
                self.set_minimized(False)
                await self.save()
            self.on_change()
            return
        self.set_minimized(not self.state.minimized)
        await self.save()
        self.on_change()


class OverlayPanel:
    """
    The assistant panel as a whole: hosted geometry plus the content region.

    `view()` is what the content script paints; `subscribe()` hands out a
    queue that receives a new view after every change.
    """

    def __init__(self, store: KeyValueStore | None = None, viewport: Viewport | None = None):
        self.geometry = OverlayGeometryManager(store, viewport, on_change=self._publish)
        self.paused_info = ""
        self.body = ""
        self.body_kind = "idle"
        self.chat: list[ChatMessage] = []
        self._subscribers: list[asyncio.Queue] = []

    @property
    def visible(self) -> bool:
        return self.geometry.visible

    # ── Subscribers ───────────────────────────────────────────
    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        queue.put_nowait(self.view())
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self) -> None:
        if not self._subscribers:
            return
        view = self.view()
        for queue in self._subscribers:
            queue.put_nowait(view)

    # ── Lifecycle ─────────────────────────────────────────────
    async def open(self) -> None:
        if not self.visible:
            self.paused_info = "Welcome! The assistant is now active."
        await self.geometry.show()

    def close(self) -> None:
        self._clear_content()
        self.geometry.hide()

    def _clear_content(self) -> None:
        self.paused_info = ""
        self.body = ""
        self.body_kind = "idle"
        self.chat = []

    # ── Content Region ────────────────────────────────────────
    def show_paused(self, timestamp: float, topic: str | None) -> None:
        if not self.visible:
            return
        self.paused_info = f"⏸️ Paused at {timestamp:.2f}s"
        if not topic:
            self.body = "🧠 Topic: (No transcript found)"
            self.body_kind = "idle"
        self._publish()

    def show_thinking(self, topic: str) -> None:
        if not self.visible:
            return
        self.body = f"💬 Thinking…\nGenerating explanation and quiz for: {topic}"
        self.body_kind = "thinking"
        self._publish()

    def show_answer(self, text: str) -> None:
        if not self.visible:
            return
        self.body = text
        self.body_kind = "answer"
        self._publish()

    def show_error(self, message: str) -> None:
        if not self.visible:
            return
        self.body = f"❌ Error: {message or 'AI output unavailable.'}"
        self.body_kind = "error"
        self._publish()

    def append_chat(self, role: str, text: str) -> None:
        if not self.visible:
            return
        self.chat.append(ChatMessage(role=role, text=text))
        self._publish()

    def view(self) -> PanelView:
        minimized = self.geometry.minimized
        return PanelView(
            visible=self.visible,
            minimized=minimized,
            state=self.geometry.state.model_copy(deep=True),
            box=self.geometry.box().as_dict(),
            handles_visible=self.visible and not minimized,
            header_icon="📘" if minimized else "🧠",
            header_title=PANEL_TITLE,
            minimize_glyph="+" if minimized else "−",
            minimize_title="Maximize" if minimized else "Minimize",
            paused_info=self.paused_info,
            body=self.body,
            body_kind=self.body_kind,
            chat=list(self.chat),
        )
