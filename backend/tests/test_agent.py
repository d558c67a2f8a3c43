"""Tests for the help graph: prompt building and generation."""

import asyncio

import pytest

from agent.graph import build_graph, initial_state
from agent.nodes import node_build_prompt
from ai_client import AiClient
from conftest import StubTransport


def _graph(primary):
    return build_graph(AiClient(primary, StubTransport("fallback"), timeout=1))


def test_pause_request_builds_quiz_prompt_and_answers():
    async def scenario():
        primary = StubTransport("primary", reply="Summary + quiz")
        final = await _graph(primary).ainvoke(initial_state(
            "pause", topic="binary search halves the range", replay_count=3, watch_seconds=42,
        ))
        assert final["answer"] == "Summary + quiz"
        assert final["error"] == ""
        prompt = primary.prompts[0]
        assert 'Topic: "binary search halves the range"' in prompt
        assert "quiz question" in prompt
        assert "paused on this part 3 times" in prompt

    asyncio.run(scenario())


def test_chat_request_carries_transcript_and_question():
    async def scenario():
        primary = StubTransport("primary", reply="It is O(log n).")
        final = await _graph(primary).ainvoke(initial_state(
            "chat", question="How fast is it?", transcript_context="we split the list in half",
        ))
        assert final["answer"] == "It is O(log n)."
        assert "we split the list in half" in primary.prompts[0]
        assert "User question: How fast is it?" in primary.prompts[0]

    asyncio.run(scenario())


def test_empty_request_skips_the_model():
    async def scenario():
        primary = StubTransport("primary")
        final = await _graph(primary).ainvoke(initial_state("chat", question="   "))
        assert final["error"] == "Nothing to ask about"
        assert primary.prompts == []

    asyncio.run(scenario())


def test_failure_lands_in_error():
    async def scenario():
        primary = StubTransport("primary", error=RuntimeError("down"))
        client = AiClient(primary, StubTransport("fallback", error=RuntimeError("also down")), timeout=1)
        final = await build_graph(client).ainvoke(initial_state("pause", topic="t"))
        assert final["answer"] == ""
        assert final["error"] == "also down"

    asyncio.run(scenario())


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        asyncio.run(node_build_prompt(initial_state("summary")))
