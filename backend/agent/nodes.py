# ============================================================
# agent/nodes.py — LangGraph Node Functions
# ============================================================
# Each function reads the HelpState and returns the keys it
# changes.
# ============================================================

from ai_client import AiClient
from models import AiFailure


def _pause_prompt(state: dict) -> str:
    topic = state["topic"]
    if not topic.strip():
        return ""
    behaviour = ""
    if state.get("replay_count", 0) > 1 or state.get("watch_seconds", 0) > 0:
        behaviour = (
            f"\nThe learner has paused on this part {state.get('replay_count', 0)} times "
            f"and watched it for {state.get('watch_seconds', 0):.0f} seconds.\n"
        )
    return f"""
You are a helpful YouTube learning assistant.

1. Summarize the topic at this paused moment in ONE concise sentence.
2. Give a simple explanation in 5 bullet points.
3. Create a quiz question with 3 multiple-choice answers (A, B, C), and indicate the correct answer.
{behaviour}
Topic: "{topic}"
"""


def _chat_prompt(state: dict) -> str:
    question = state["question"].strip()
    if not question:
        return ""
    return f"""You are a helpful assistant for YouTube videos. Use ALL of the transcript below to answer the user's question. If the question asks for analysis, critique, or fact-checking, you may use your own knowledge in addition to the transcript, but clearly indicate when you are using outside knowledge. If the answer is not present in the transcript and you cannot answer, say: 'The transcript does not contain this information.'

Transcript:
{state.get('transcript_context', '')}

User question: {question}
"""


# ── Node 1: Prompt Building ───────────────────────────────────
async def node_build_prompt(state: dict) -> dict:
    """Pick the prompt template for the request kind."""
    if state["kind"] == "pause":
        prompt = _pause_prompt(state)
    elif state["kind"] == "chat":
        prompt = _chat_prompt(state)
    else:
        raise ValueError(f"Unknown help request kind: {state['kind']!r}")

    if not prompt:
        return {"prompt": "", "error": "Nothing to ask about"}
    return {"prompt": prompt}


# ── Node 2: Generation ────────────────────────────────────────
async def node_generate(state: dict, ai_client: AiClient) -> dict:
    """Send the prompt and fold the outcome into the state."""
    key = state["topic"] if state["kind"] == "pause" else state["question"]
    result = await ai_client.request(state["prompt"], key)
    if isinstance(result, AiFailure):
        return {"answer": "", "error": result.message}
    return {"answer": result.text, "error": ""}
