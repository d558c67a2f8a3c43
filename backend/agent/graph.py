# ============================================================
# agent/graph.py — LangGraph StateGraph Wiring & Compilation
# ============================================================
# build prompt → (nothing to ask? stop) → generate → END
# The AI client is bound per graph so sessions can share one.
# ============================================================

from langgraph.graph import StateGraph, END
from agent.graph_state import HelpState
from agent.nodes import node_build_prompt, node_generate
from ai_client import AiClient


def _routing_logic(state: HelpState) -> str:
    """Skip the model call when there was nothing to build a prompt from."""
    return "generate" if state.get("prompt") else "skip"


def build_graph(ai_client: AiClient):
    """Build and compile the help graph around one AI client."""

    async def generate(state: HelpState) -> dict:
        return await node_generate(state, ai_client)

    workflow = StateGraph(HelpState)

    # ── Register Nodes ────────────────────────────────────────
    workflow.add_node("node_build_prompt", node_build_prompt)
    workflow.add_node("node_generate", generate)

    # ── Wire Edges ────────────────────────────────────────────
    workflow.set_entry_point("node_build_prompt")
    workflow.add_conditional_edges(
        "node_build_prompt",
        _routing_logic,
        {
            "generate": "node_generate",
            "skip": END,
        },
    )
    workflow.add_edge("node_generate", END)

    return workflow.compile()


def initial_state(kind: str, **fields) -> HelpState:
    state: HelpState = {
        "kind": kind,
        "topic": "",
        "question": "",
        "current_time": 0.0,
        "transcript_context": "",
        "watch_seconds": 0.0,
        "replay_count": 0,
        "prompt": "",
        "answer": "",
        "error": "",
    }
    state.update(fields)
    return state
