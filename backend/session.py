# ============================================================
# session.py — Session Controller & Registry
# ============================================================
# One SessionController per browser tab. It owns that tab's
# TimeIndex, BehaviorTracker and OverlayPanel, reacts to the
# content script's change feed, and routes pause/chat help
# through the agent graph back into the panel.
# ============================================================

import asyncio

import redis.asyncio as aioredis

from agent.graph import build_graph, initial_state
from ai_client import AiClient
from config import (
    NAVIGATION_SETTLE_SECONDS,
    EXTRACTION_RETRY_SECONDS,
    CHAT_FULL_TRANSCRIPT_LIMIT,
    CHAT_CONTEXT_RADIUS,
)
from models import (
    AssistantStarted,
    AssistantStopped,
    CloseClick,
    FullscreenChanged,
    HandleDown,
    HeaderDown,
    MinimizeToggle,
    NavigationChanged,
    PauseSignal,
    PlaybackSnapshot,
    PlayerAttached,
    PlaySignal,
    PointerMove,
    PointerUp,
    SeekedSignal,
    TimeUpdateSignal,
    TranscriptLoaded,
    TranscriptSegment,
    ViewportChanged,
)
from overlay import OVERLAY_NAMESPACE, OverlayPanel, Viewport
from store import KeyValueStore, get_redis
from tracker import BehaviorTracker
from transcript import TimeIndex, TranscriptSource

ASSISTANT_STARTED_KEY = "assistant_started"


class SessionController:
    """
    Glue between the content script's feeds and the core components.

    Every handler finishes its in-memory changes before its first await, so
    a navigation reset and the index replacement land in one turn.
    """

    def __init__(
        self,
        session_id: str,
        store: KeyValueStore,
        ai_client: AiClient,
        transcript_source: TranscriptSource | None = None,
        viewport: Viewport | None = None,
        overlay_store: KeyValueStore | None = None,
        settle_delay: float = NAVIGATION_SETTLE_SECONDS,
        retry_delay: float = EXTRACTION_RETRY_SECONDS,
    ):
        self.session_id = session_id
        self.store = store
        self.transcript_source = transcript_source
        self.settle_delay = settle_delay
        self.retry_delay = retry_delay

        self.index = TimeIndex()
        self.tracker = BehaviorTracker(self.index, store)
        self.panel = OverlayPanel(overlay_store or store, viewport)
        self.graph = build_graph(ai_client)

        self.assistant_started = False
        self.current_url: str | None = None
        self._player: PlaybackSnapshot | None = None
        self._extraction: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = store.subscribe(self._on_store_change)

    # ── Lifecycle ─────────────────────────────────────────────
    async def start(self) -> None:
        await self.tracker.load()
        # A reload always starts with the assistant switched off
        await self.store.set({ASSISTANT_STARTED_KEY: False})
        print(f"[SESSION] {self.session_id} ready")

    async def close(self) -> None:
        self._unsubscribe()
        self.tracker.timer.stop()
        if self._extraction is not None:
            self._extraction.cancel()
        for task in list(self._tasks):
            task.cancel()
        self.panel.close()
        print(f"[SESSION] {self.session_id} closed")

    async def drain(self) -> None:
        """Wait for outstanding help requests and extraction."""
        pending = set(self._tasks)
        if self._extraction is not None:
            pending.add(self._extraction)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Change Feed ───────────────────────────────────────────
    async def handle_event(self, event) -> None:
        if isinstance(event, AssistantStarted):
            await self.store.set({ASSISTANT_STARTED_KEY: True})
        elif isinstance(event, AssistantStopped):
            await self.store.set({ASSISTANT_STARTED_KEY: False})
        elif isinstance(event, PlayerAttached):
            self._player = PlaybackSnapshot(
                current_time=event.current_time, paused=event.paused, ended=event.ended,
            )
            if self.assistant_started:
                await self.tracker.attach(self._player)
        elif isinstance(event, NavigationChanged):
            await self._on_navigation(event.url)
        elif isinstance(event, FullscreenChanged):
            if event.active:
                self.panel.close()
        elif isinstance(event, TranscriptLoaded):
            self._load_transcript(event.segments)
        elif isinstance(event, ViewportChanged):
            await self.panel.geometry.set_viewport(Viewport(event.width, event.height))
        else:
            raise TypeError(f"Unhandled change event: {type(event).__name__}")

    async def _on_store_change(self, changes: dict) -> None:
        if ASSISTANT_STARTED_KEY not in changes:
            return
        started = bool(changes[ASSISTANT_STARTED_KEY])
        if started == self.assistant_started:
            return
        self.assistant_started = started
        if not started:
            print("[SESSION] Assistant stopped")
            self.panel.close()
            return
        print("[SESSION] Assistant started")
        await self.panel.open()
        if self._player is not None:
            await self.tracker.attach(self._player)
        if not len(self.index) and self.current_url:
            self._request_extraction(self.current_url, delay=self.settle_delay / 2)

    async def _on_navigation(self, url: str) -> None:
        if url == self.current_url:
            return
        previous, self.current_url = self.current_url, url
        if previous is None:
            return
        print(f"[SESSION] Navigation {previous} → {url}, resetting tracker")
        self._player = None
        await self.tracker.reset()
        await self.store.set({ASSISTANT_STARTED_KEY: False})
        self._request_extraction(url, delay=self.settle_delay)

    # ── Transcript ────────────────────────────────────────────
    def _load_transcript(self, segments: list[TranscriptSegment]) -> None:
        if self._extraction is not None:
            self._extraction.cancel()
            self._extraction = None
        self.index.replace(segments)
        print(f"[SESSION] Transcript loaded: {len(self.index)} segments")

    def _request_extraction(self, url: str, delay: float) -> None:
        if self.transcript_source is None:
            print("[SESSION] No transcript source configured, waiting for the page to send one")
            return
        if self._extraction is not None:
            self._extraction.cancel()
        self._extraction = asyncio.get_running_loop().create_task(self._extract_after(url, delay))

    async def _extract_after(self, url: str, delay: float) -> None:
        await asyncio.sleep(delay)
        segments = await asyncio.to_thread(self.transcript_source.extract, url)
        if not segments:
            await asyncio.sleep(self.retry_delay)
            segments = await asyncio.to_thread(self.transcript_source.extract, url)
        if url != self.current_url:
            return
        self.index.replace(segments)
        self._extraction = None
        print(f"[SESSION] Extracted {len(segments)} segments for {url}")

    # ── Playback Signals ──────────────────────────────────────
    async def handle_signal(self, signal) -> None:
        snapshot = signal.snapshot()
        if not self.tracker.attached:
            if not self.assistant_started:
                return
            self._player = snapshot
            await self.tracker.attach(snapshot)

        if isinstance(signal, PlaySignal):
            await self.tracker.on_play(snapshot)
        elif isinstance(signal, PauseSignal):
            render = await self.tracker.on_pause(snapshot)
            self.panel.show_paused(render.timestamp, render.topic)
            if render.topic and self.panel.visible:
                self.panel.show_thinking(render.topic)
                aggregate = self.tracker.topics.get(render.topic)
                self._spawn(self._run_help(initial_state(
                    "pause",
                    topic=render.topic,
                    current_time=render.timestamp,
                    watch_seconds=aggregate.watch_seconds if aggregate else 0.0,
                    replay_count=aggregate.replay_count if aggregate else 0,
                )))
        elif isinstance(signal, SeekedSignal):
            await self.tracker.on_seeked(snapshot)
        elif isinstance(signal, TimeUpdateSignal):
            await self.tracker.on_timeupdate(snapshot)
        else:
            raise TypeError(f"Unhandled playback signal: {type(signal).__name__}")

    # ── Overlay Interaction ───────────────────────────────────
    async def handle_overlay(self, action) -> None:
        geometry = self.panel.geometry
        if isinstance(action, HeaderDown):
            geometry.header_down(action.x, action.y, action.target)
        elif isinstance(action, HandleDown):
            geometry.handle_down(action.direction, action.x, action.y)
        elif isinstance(action, PointerMove):
            await geometry.pointer_move(action.x, action.y)
        elif isinstance(action, PointerUp):
            geometry.pointer_up()
        elif isinstance(action, MinimizeToggle):
            await geometry.toggle_minimize()
        elif isinstance(action, CloseClick):
            self.panel.close()
        else:
            raise TypeError(f"Unhandled overlay action: {type(action).__name__}")

    # ── Help Requests ─────────────────────────────────────────
    async def ask(self, question: str, current_time: float | None = None) -> None:
        question = question.strip()
        if not question or not self.panel.visible:
            return
        self.panel.append_chat("user", question)
        if current_time is None:
            current_time = self.tracker.element.current_time
        context = self.index.context_window(current_time, CHAT_FULL_TRANSCRIPT_LIMIT, CHAT_CONTEXT_RADIUS)
        self._spawn(self._run_help(initial_state(
            "chat",
            question=question,
            current_time=current_time,
            transcript_context=context,
        )))

    async def _run_help(self, state: dict) -> None:
        final = await self.graph.ainvoke(state)
        if state["kind"] == "chat":
            self.panel.append_chat("assistant", final["answer"] or final["error"] or "AI error")
        elif final["error"]:
            self.panel.show_error(final["error"])
        else:
            self.panel.show_answer(final["answer"])


class SessionRegistry:
    """
    Live sessions by id. Tracking state lives in a per-session namespace;
    overlay geometry is shared so it survives reloads.
    """

    def __init__(
        self,
        ai_client: AiClient,
        transcript_source: TranscriptSource | None = None,
        redis: aioredis.Redis | None = None,
    ):
        self.ai_client = ai_client
        self.transcript_source = transcript_source
        self._redis = redis
        self._sessions: dict[str, SessionController] = {}

    def get(self, session_id: str) -> SessionController | None:
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    async def get_or_create(self, session_id: str) -> SessionController:
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        redis = self._redis or await get_redis()
        if session_id in self._sessions:
            return self._sessions[session_id]
        session = SessionController(
            session_id,
            KeyValueStore(redis, namespace=f"session:{session_id}"),
            self.ai_client,
            self.transcript_source,
            overlay_store=KeyValueStore(redis, namespace=OVERLAY_NAMESPACE),
        )
        self._sessions[session_id] = session
        await session.start()
        return session

    async def close(self, session_id: str) -> bool:
        """Tear down one session (tab closed); False when it was unknown."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            await session.close()
        self._sessions.clear()
