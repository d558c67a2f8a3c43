# ============================================================
# models.py — Pydantic Schemas for Tracking, Overlay & API
# ============================================================
# Every message family (playback signals, change-feed events,
# overlay pointer actions, AI results) is a tagged union keyed
# on its "type" field.
# ============================================================

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from config import OVERLAY_DEFAULT_TOP, OVERLAY_DEFAULT_RIGHT, OVERLAY_DEFAULT_WIDTH


# ── Transcript ────────────────────────────────────────────────
def parse_timestamp(value) -> float:
    """
    Convert a scraped transcript timestamp to seconds.

    Accepts numbers, "SS", "M:SS" and "H:MM:SS". Anything unparsable is 0.
    """
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    if not isinstance(value, str) or not value.strip():
        return 0.0
    try:
        parts = [float(p) for p in value.strip().split(":")]
    except ValueError:
        return 0.0
    if len(parts) == 1:
        seconds = parts[0]
    elif len(parts) == 2:
        seconds = parts[0] * 60 + parts[1]
    elif len(parts) == 3:
        seconds = parts[0] * 3600 + parts[1] * 60 + parts[2]
    else:
        return 0.0
    return max(0.0, seconds)


class TranscriptSegment(BaseModel):
    """One transcript entry. `time` accepts seconds or a scraped "1:23" string."""
    time: float = Field(0.0, ge=0, description="Segment start in seconds")
    text: str = Field("", description="Segment text, also used as its topic key")

    @field_validator("time", mode="before")
    @classmethod
    def _coerce_time(cls, value):
        return parse_timestamp(value)

    @field_validator("text", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return (value or "").strip()


# ── Playback ──────────────────────────────────────────────────
class PlaybackSnapshot(BaseModel):
    current_time: float = 0.0
    paused: bool = True
    ended: bool = False


class _SignalBase(BaseModel):
    current_time: float = 0.0
    paused: bool = True
    ended: bool = False

    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            current_time=self.current_time,
            paused=self.paused,
            ended=self.ended,
        )


class PlaySignal(_SignalBase):
    type: Literal["play"] = "play"
    paused: bool = False


class PauseSignal(_SignalBase):
    type: Literal["pause"] = "pause"


class SeekedSignal(_SignalBase):
    type: Literal["seeked"] = "seeked"


class TimeUpdateSignal(_SignalBase):
    """Periodic position report; keeps the server-side element current."""
    type: Literal["timeupdate"] = "timeupdate"


PlaybackSignal = Annotated[
    Union[PlaySignal, PauseSignal, SeekedSignal, TimeUpdateSignal],
    Field(discriminator="type"),
]


# ── Tracking Aggregates ───────────────────────────────────────
class TopicAggregate(BaseModel):
    watch_seconds: float = 0.0
    replay_count: int = Field(0, ge=0)

    @property
    def relevance_score(self) -> float:
        return 2 * self.replay_count + self.watch_seconds / 10


class WatchEvent(BaseModel):
    """Append-only behaviour log entry. Only seeks are recorded today."""
    model_config = {"populate_by_name": True, "frozen": True}

    type: Literal["seek"] = "seek"
    from_time: float = Field(..., alias="from")
    to_time: float = Field(..., alias="to")


class RenderRequest(BaseModel):
    """Emitted by the tracker on every pause."""
    timestamp: float
    topic: str | None = None


class TopTopic(BaseModel):
    topic: str
    watch_seconds: float
    replay_count: int
    relevance_score: float


class TrackingStats(BaseModel):
    state: str
    topics: dict[str, TopicAggregate] = Field(default_factory=dict)
    top_topics: list[TopTopic] = Field(default_factory=list)
    watch_events: list[WatchEvent] = Field(default_factory=list)
    last_topic: str | None = None


# ── Overlay Geometry ──────────────────────────────────────────
class OverlayPosition(BaseModel):
    top: float = OVERLAY_DEFAULT_TOP
    left: float | None = None
    right: float | None = OVERLAY_DEFAULT_RIGHT


class OverlaySize(BaseModel):
    width: float = OVERLAY_DEFAULT_WIDTH
    height: float | None = None  # None means "auto"


class OverlayState(BaseModel):
    position: OverlayPosition = Field(default_factory=OverlayPosition)
    size: OverlaySize = Field(default_factory=OverlaySize)
    minimized: bool = False


class HeaderDown(BaseModel):
    type: Literal["header_down"] = "header_down"
    x: float
    y: float
    target: Literal["header", "minimize", "close"] = "header"


class HandleDown(BaseModel):
    type: Literal["handle_down"] = "handle_down"
    direction: Literal[
        "top", "bottom", "left", "right",
        "top-left", "top-right", "bottom-left", "bottom-right",
    ]
    x: float
    y: float


class PointerMove(BaseModel):
    type: Literal["move"] = "move"
    x: float
    y: float


class PointerUp(BaseModel):
    type: Literal["up"] = "up"


class MinimizeToggle(BaseModel):
    type: Literal["minimize"] = "minimize"


class CloseClick(BaseModel):
    type: Literal["close"] = "close"


OverlayAction = Annotated[
    Union[HeaderDown, HandleDown, PointerMove, PointerUp, MinimizeToggle, CloseClick],
    Field(discriminator="type"),
]


# ── Change Feed (what the content script observes) ────────────
class AssistantStarted(BaseModel):
    type: Literal["assistant_started"] = "assistant_started"


class AssistantStopped(BaseModel):
    type: Literal["assistant_stopped"] = "assistant_stopped"


class PlayerAttached(BaseModel):
    """A playback element appeared in the page."""
    type: Literal["player_attached"] = "player_attached"
    current_time: float = 0.0
    paused: bool = True
    ended: bool = False


class NavigationChanged(BaseModel):
    type: Literal["navigation"] = "navigation"
    url: str


class FullscreenChanged(BaseModel):
    type: Literal["fullscreen"] = "fullscreen"
    active: bool


class TranscriptLoaded(BaseModel):
    """Segments scraped from the page's transcript widget."""
    type: Literal["transcript_loaded"] = "transcript_loaded"
    segments: list[TranscriptSegment] = Field(default_factory=list)


class ViewportChanged(BaseModel):
    type: Literal["viewport"] = "viewport"
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


ChangeEvent = Annotated[
    Union[
        AssistantStarted, AssistantStopped, PlayerAttached, NavigationChanged,
        FullscreenChanged, TranscriptLoaded, ViewportChanged,
    ],
    Field(discriminator="type"),
]


# ── AI Results ────────────────────────────────────────────────
class AiResponse(BaseModel):
    kind: Literal["response"] = "response"
    text: str
    usage: dict | None = None


class AiFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    message: str


AiResult = Annotated[Union[AiResponse, AiFailure], Field(discriminator="kind")]


# ── Panel View ────────────────────────────────────────────────
class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class PanelView(BaseModel):
    """Everything the content script needs to paint the overlay."""
    visible: bool
    minimized: bool
    state: OverlayState
    box: dict[str, float]
    handles_visible: bool
    header_icon: str
    header_title: str
    minimize_glyph: str
    minimize_title: str
    paused_info: str
    body: str
    body_kind: Literal["idle", "thinking", "answer", "error"]
    chat: list[ChatMessage] = Field(default_factory=list)


# ── API Payloads ──────────────────────────────────────────────
class ChatPayload(BaseModel):
    question: str = Field(..., min_length=1)
    current_time: float | None = None


class MetricsSnapshot(BaseModel):
    total: int
    success: int
    failures: int
    success_rate: str
    average_time: int
