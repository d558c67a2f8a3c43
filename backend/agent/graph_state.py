# ============================================================
# agent/graph_state.py — LangGraph State Definition
# ============================================================
# One help request travelling through the graph: what the user
# was looking at, the prompt built for it and the outcome.
# ============================================================

from typing import Literal, TypedDict


class HelpState(TypedDict):
    # ── Request (from the session) ────────────────────────────
    kind: Literal["pause", "chat"]
    topic: str
    question: str
    current_time: float

    # ── Context Derivations ───────────────────────────────────
    transcript_context: str
    watch_seconds: float
    replay_count: int

    # ── Outcome ───────────────────────────────────────────────
    prompt: str
    answer: str
    error: str
