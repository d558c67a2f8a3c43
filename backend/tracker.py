# ============================================================
# tracker.py — Behavior Tracking State Machine
# ============================================================
# Turns raw playback signals (play, pause, seeked, ticks) into
# per-topic watch time, replay counts and a seek log. One
# tracker per session; nothing here is module-global.
# ============================================================

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable

from pydantic import ValidationError

from config import (
    WATCH_INTERVAL_SECONDS,
    SEEK_THRESHOLD_SECONDS,
    SIGNAL_STALE_SECONDS,
    PAUSE_SNIPPET_WINDOW,
    WATCH_EVENT_LIMIT,
    TOP_TOPICS_LIMIT,
)
from models import (
    PlaybackSnapshot,
    RenderRequest,
    TopicAggregate,
    TopTopic,
    TrackingStats,
    WatchEvent,
)
from store import KeyValueStore
from transcript import TimeIndex

TOPICS_KEY = "topic_stats"
EVENTS_KEY = "watch_events"


class TrackerState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


class SamplingTimer:
    """Fixed-interval asyncio ticker. Only one tick loop runs at a time."""

    def __init__(self, interval: float = WATCH_INTERVAL_SECONDS):
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: Callable[[], Awaitable[None]]) -> None:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(callback))

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, callback):
        while True:
            await asyncio.sleep(self.interval)
            await callback()


class BehaviorTracker:
    """
    Per-session playback state machine: Idle → Playing ⇄ Paused.

    Topic text is the aggregation key, so two segments with identical text
    share one aggregate.
    """

    def __init__(
        self,
        index: TimeIndex,
        store: KeyValueStore | None = None,
        timer: SamplingTimer | None = None,
        interval: float = WATCH_INTERVAL_SECONDS,
        seek_threshold: float = SEEK_THRESHOLD_SECONDS,
        stale_after: float = SIGNAL_STALE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.index = index
        self.store = store
        self.interval = interval
        self.seek_threshold = seek_threshold
        self.stale_after = stale_after
        self.clock = clock
        self.timer = timer or SamplingTimer(interval)

        self.state = TrackerState.IDLE
        self.attached = False
        self.element = PlaybackSnapshot()
        self.last_time = 0.0
        self.last_topic: str | None = None
        self.last_signal_at = clock()
        self.topics: dict[str, TopicAggregate] = {}
        self.watch_events: list[WatchEvent] = []

    # ── Persistence ───────────────────────────────────────────
    async def load(self) -> None:
        """Restore aggregates persisted by an earlier process; bad blobs are ignored."""
        if self.store is None:
            return
        saved = await self.store.get([TOPICS_KEY, EVENTS_KEY])
        try:
            self.topics = {
                topic: TopicAggregate.model_validate(agg)
                for topic, agg in (saved.get(TOPICS_KEY) or {}).items()
            }
        except (ValidationError, AttributeError):
            print("[TRACKER] ⚠️ Malformed topic stats in store, starting fresh")
            self.topics = {}
        try:
            self.watch_events = [WatchEvent.model_validate(e) for e in saved.get(EVENTS_KEY) or []]
        except (ValidationError, TypeError):
            print("[TRACKER] ⚠️ Malformed watch events in store, starting fresh")
            self.watch_events = []

    async def save(self) -> None:
        if self.store is None:
            return
        await self.store.set({
            TOPICS_KEY: {topic: agg.model_dump() for topic, agg in self.topics.items()},
            EVENTS_KEY: [e.model_dump(by_alias=True) for e in self.watch_events],
        })

    # ── Lifecycle ─────────────────────────────────────────────
    async def attach(self, snapshot: PlaybackSnapshot) -> None:
        """Start following a newly discovered playback element."""
        if self.attached:
            return
        self.attached = True
        self._observe(snapshot)
        self.last_time = snapshot.current_time
        self.last_topic = self.index.nearest_before(self.last_time)
        print(f"[TRACKER] Attached at {snapshot.current_time:.1f}s")
        if not snapshot.paused and not snapshot.ended:
            self._enter_playing()

    async def reset(self) -> None:
        """Forget everything about the previous video, in memory and in the store."""
        self.timer.stop()
        self.state = TrackerState.IDLE
        self.attached = False
        self.element = PlaybackSnapshot()
        self.last_time = 0.0
        self.last_topic = None
        self.topics = {}
        self.watch_events = []
        self.index.clear()
        if self.store is not None:
            await self.store.delete([TOPICS_KEY, EVENTS_KEY])
        print("[TRACKER] Reset")

    def _observe(self, snapshot: PlaybackSnapshot) -> None:
        self.element = snapshot
        self.last_signal_at = self.clock()

    def _enter_playing(self) -> None:
        self.state = TrackerState.PLAYING
        self.timer.start(self.sample)

    # ── Signal Handlers ───────────────────────────────────────
    async def on_play(self, snapshot: PlaybackSnapshot) -> None:
        self._observe(snapshot)
        if self.state == TrackerState.PLAYING and self.timer.running:
            return
        self._enter_playing()

    async def on_pause(self, snapshot: PlaybackSnapshot) -> RenderRequest:
        """
        Stop sampling and count a replay for the snippet around the pause.

        The render request is returned even without a topic so the panel can
        still show the timestamp.
        """
        self._observe(snapshot)
        self.state = TrackerState.PAUSED
        self.timer.stop()
        topic = self.index.window_snippet(snapshot.current_time, PAUSE_SNIPPET_WINDOW)
        if topic and topic.strip():
            aggregate = self.topics.setdefault(topic, TopicAggregate())
            aggregate.replay_count += 1
        else:
            topic = None
        print(f"[TRACKER] Paused at {snapshot.current_time:.1f}s topic={(topic or '')[:50]!r}")
        await self.save()
        return RenderRequest(timestamp=snapshot.current_time, topic=topic)

    async def on_seeked(self, snapshot: PlaybackSnapshot) -> WatchEvent | None:
        self._observe(snapshot)
        new_time = snapshot.current_time
        event = None
        if abs(new_time - self.last_time) > self.seek_threshold:
            event = WatchEvent(from_time=self.last_time, to_time=new_time)
            self.watch_events.append(event)
            del self.watch_events[:-WATCH_EVENT_LIMIT]
            print(f"[TRACKER] Seek {self.last_time:.1f}s → {new_time:.1f}s")
        self.last_time = new_time
        self.last_topic = self.index.nearest_before(new_time)
        if event is not None:
            await self.save()
        return event

    async def on_timeupdate(self, snapshot: PlaybackSnapshot) -> None:
        self._observe(snapshot)
        # Signals are back after a stale spell: resume sampling
        if self.state == TrackerState.PLAYING and not self.timer.running and not snapshot.paused:
            self._enter_playing()

    async def sample(self) -> None:
        """One sampling tick: credit the interval to the topic now playing."""
        snapshot = self.element
        if self.state != TrackerState.PLAYING or snapshot.paused or snapshot.ended:
            return
        if self.clock() - self.last_signal_at > self.stale_after:
            # Nobody is reporting playback any more; stop crediting the last position
            print(f"[TRACKER] ⚠️ No playback signal for {self.stale_after:.0f}s, sampling stopped")
            self.timer.stop()
            return
        topic = self.index.nearest_before(snapshot.current_time)
        if topic is not None:
            aggregate = self.topics.setdefault(topic, TopicAggregate())
            aggregate.watch_seconds += self.interval
        self.last_time = snapshot.current_time
        self.last_topic = topic
        await self.save()

    # ── Read Side ─────────────────────────────────────────────
    def top_topics(self, limit: int = TOP_TOPICS_LIMIT) -> list[TopTopic]:
        ranked = sorted(self.topics.items(), key=lambda item: item[1].relevance_score, reverse=True)
        return [
            TopTopic(
                topic=topic,
                watch_seconds=agg.watch_seconds,
                replay_count=agg.replay_count,
                relevance_score=agg.relevance_score,
            )
            for topic, agg in ranked[:limit]
        ]

    def stats(self) -> TrackingStats:
        return TrackingStats(
            state=self.state.value,
            topics={topic: agg.model_copy() for topic, agg in self.topics.items()},
            top_topics=self.top_topics(),
            watch_events=list(self.watch_events),
            last_topic=self.last_topic,
        )
