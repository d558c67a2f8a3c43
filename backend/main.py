# ============================================================
# main.py — FastAPI Backend for the YouTube Learning Assistant
# ============================================================
# The content script forwards playback signals, page changes
# and overlay pointer actions here; the panel it paints comes
# back as a view-model, either polled or streamed over SSE.
# ============================================================

import json
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from ai_client import AiClient
from config import CORS_ORIGINS
from models import (
    ChangeEvent,
    ChatPayload,
    MetricsSnapshot,
    OverlayAction,
    PanelView,
    PlaybackSignal,
    TrackingStats,
)
from session import SessionController, SessionRegistry
from store import generate_session_id
from transcript import TranscriptSource

SSE_KEEPALIVE_SECONDS = 15


# ── Lifespan (startup/shutdown) ───────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    print("🚀 Learning Assistant backend starting...")
    if getattr(app.state, "registry", None) is None:
        app.state.registry = SessionRegistry(
            ai_client=AiClient(),
            transcript_source=TranscriptSource(),
        )
    yield
    await app.state.registry.close_all()
    print("🛑 Backend shutting down.")


app = FastAPI(
    title="YouTube Learning Assistant",
    description="Transcript-aware behaviour tracking and overlay state for the Chrome Extension",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS Middleware ────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Helpers ───────────────────────────────────────────────────
def sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


async def _session(request: Request, session_id: str) -> SessionController:
    return await request.app.state.registry.get_or_create(session_id)


def _existing_session(request: Request, session_id: str) -> SessionController:
    session = request.app.state.registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return session


# ── Sessions ──────────────────────────────────────────────────
@app.post("/sessions")
async def create_session(request: Request):
    session_id = generate_session_id()
    await _session(request, session_id)
    print(f"[SESSION] Created {session_id}")
    return {"session_id": session_id}


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str, request: Request):
    """Tab closed: stop sampling, drop listeners and forget the session."""
    if not await request.app.state.registry.close(session_id):
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    print(f"[CLEANUP] Session {session_id} cleaned up")
    return {"session_id": session_id, "closed": True}


@app.post("/sessions/{session_id}/events", response_model=PanelView)
async def post_event(session_id: str, event: ChangeEvent, request: Request):
    """Change feed: assistant start/stop, player discovery, navigation, fullscreen, transcript, viewport."""
    session = await _session(request, session_id)
    await session.handle_event(event)
    return session.panel.view()


@app.post("/sessions/{session_id}/signals", response_model=PanelView)
async def post_signal(session_id: str, signal: PlaybackSignal, request: Request):
    session = await _session(request, session_id)
    await session.handle_signal(signal)
    return session.panel.view()


@app.post("/sessions/{session_id}/overlay", response_model=PanelView)
async def post_overlay_action(session_id: str, action: OverlayAction, request: Request):
    session = await _session(request, session_id)
    await session.handle_overlay(action)
    return session.panel.view()


@app.post("/sessions/{session_id}/chat", response_model=PanelView)
async def post_chat(session_id: str, payload: ChatPayload, request: Request):
    session = _existing_session(request, session_id)
    await session.ask(payload.question, payload.current_time)
    return session.panel.view()


@app.get("/sessions/{session_id}/panel", response_model=PanelView)
async def get_panel(session_id: str, request: Request):
    return _existing_session(request, session_id).panel.view()


@app.get("/sessions/{session_id}/panel/stream")
async def stream_panel(session_id: str, request: Request):
    """SSE stream of panel view-models, one per change."""
    registry = request.app.state.registry
    session = _existing_session(request, session_id)

    async def event_generator():
        queue = session.panel.subscribe()
        try:
            # Ends when the client goes away or the session is deleted
            while registry.get(session_id) is session and not await request.is_disconnected():
                try:
                    view = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield sse_event(view.model_dump(mode="json"))
        finally:
            session.panel.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/sessions/{session_id}/stats", response_model=TrackingStats, response_model_by_alias=True)
async def get_stats(session_id: str, request: Request):
    return _existing_session(request, session_id).tracker.stats()


# ── Metrics & Health ──────────────────────────────────────────
@app.get("/metrics", response_model=MetricsSnapshot)
async def get_metrics(request: Request):
    return request.app.state.registry.ai_client.metrics.snapshot()


@app.get("/health")
async def health():
    return {"status": "ok", "service": "youtube-learning-assistant"}
