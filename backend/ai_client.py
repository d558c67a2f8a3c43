# ============================================================
# ai_client.py — Gemini Request Channel with Deadline & Fallback
# ============================================================
# request(prompt, topic) always resolves to an AiResponse or an
# AiFailure within AI_TIMEOUT_SECONDS. The async SDK call is the
# primary channel; if it errors before answering, the blocking
# key-rotating call runs on a worker thread inside the same
# deadline. A request that misses the deadline is abandoned,
# not cancelled.
# ============================================================

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol

from google.genai import types

from config import (
    key_rotator,
    MODEL_FLASH,
    MODEL_TEMPERATURE,
    MODEL_MAX_OUTPUT_TOKENS,
    SYSTEM_INSTRUCTION,
    AI_TIMEOUT_SECONDS,
)
from models import AiFailure, AiResponse, AiResult, MetricsSnapshot

TIMEOUT_MESSAGE = "Request timeout - please try again"


class Transport(Protocol):
    name: str

    async def send(self, prompt: str) -> AiResponse:
        ...


def _generation_config() -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        system_instruction=SYSTEM_INSTRUCTION,
        temperature=MODEL_TEMPERATURE,
        max_output_tokens=MODEL_MAX_OUTPUT_TOKENS,
    )


def _to_response(response) -> AiResponse:
    text = (response.text or "").strip()
    if not text:
        raise ValueError("Empty response from model")
    usage = None
    if getattr(response, "usage_metadata", None) is not None:
        usage = response.usage_metadata.model_dump(exclude_none=True)
    return AiResponse(text=text, usage=usage)


class GeminiTransport:
    """Primary channel: the SDK's native async call."""
    name = "primary"

    async def send(self, prompt: str) -> AiResponse:
        client = key_rotator.get_client()
        response = await client.aio.models.generate_content(
            model=MODEL_FLASH,
            contents=prompt,
            config=_generation_config(),
        )
        return _to_response(response)


class RotatingGeminiTransport:
    """Fallback channel: blocking call with 429 key rotation, off the event loop."""
    name = "fallback"

    async def send(self, prompt: str) -> AiResponse:
        response = await asyncio.to_thread(
            key_rotator.call_with_retry,
            MODEL_FLASH,
            prompt,
            _generation_config(),
        )
        return _to_response(response)


@dataclass
class ResponseMetrics:
    """Running response-time and failure counts for AI requests."""
    response_times: list[int] = field(default_factory=list)
    failures: int = 0

    def log_success(self, duration_ms: int):
        self.response_times.append(duration_ms)
        self.print_metrics()

    def log_failure(self, duration_ms: int):
        self.response_times.append(duration_ms)
        self.failures += 1
        self.print_metrics()

    def snapshot(self) -> MetricsSnapshot:
        total = len(self.response_times)
        average = round(sum(self.response_times) / total) if total else 0
        success = total - self.failures
        success_rate = f"{(success / total) * 100:.1f}" if total else "0.0"
        return MetricsSnapshot(
            total=total,
            success=success,
            failures=self.failures,
            success_rate=success_rate,
            average_time=average,
        )

    def print_metrics(self):
        m = self.snapshot()
        print(
            f"📊 AI Metrics: total={m.total} ok={m.success} failed={m.failures} "
            f"rate={m.success_rate}% avg={m.average_time}ms"
        )


def _discard_late_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        print(f"[AI] Late failure after deadline ignored: {str(error)[:100]}")
    else:
        print("[AI] Late response after deadline ignored")


class AiClient:
    """The AI-request collaborator shared by every session."""

    def __init__(
        self,
        primary: Transport | None = None,
        fallback: Transport | None = None,
        timeout: float = AI_TIMEOUT_SECONDS,
        metrics: ResponseMetrics | None = None,
    ):
        self.primary = primary or GeminiTransport()
        self.fallback = fallback if fallback is not None else RotatingGeminiTransport()
        self.timeout = timeout
        self.metrics = metrics or ResponseMetrics()

    async def _exchange(self, prompt: str) -> AiResponse:
        try:
            return await self.primary.send(prompt)
        except Exception as e:
            print(f"[AI] ⚠️ {self.primary.name} channel failed ({str(e)[:100]}), trying {self.fallback.name}")
            return await self.fallback.send(prompt)

    async def request(self, prompt: str, topic: str) -> AiResult:
        if not prompt or not topic:
            return AiFailure(message="Missing prompt or topic in request")

        print(f"[AI] Request for topic: {topic[:60]!r}")
        started = time.perf_counter()
        task = asyncio.ensure_future(self._exchange(prompt))
        done, _ = await asyncio.wait({task}, timeout=self.timeout)
        duration = round((time.perf_counter() - started) * 1000)

        if not done:
            task.add_done_callback(_discard_late_result)
            print(f"[⏱️ AI Response Time (Timeout)] {duration} ms")
            self.metrics.log_failure(duration)
            return AiFailure(message=TIMEOUT_MESSAGE)

        try:
            result = task.result()
        except Exception as e:
            print(f"[⏱️ AI Response Time (Failed)] {duration} ms")
            self.metrics.log_failure(duration)
            return AiFailure(message=str(e) or type(e).__name__)

        print(f"[⏱️ AI Response Time] {duration} ms")
        self.metrics.log_success(duration)
        return result
