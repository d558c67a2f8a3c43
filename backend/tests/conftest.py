"""Shared fakes for the backend tests."""

import asyncio

import fakeredis
import fakeredis.aioredis
import pytest

from models import AiResponse, TranscriptSegment
from store import KeyValueStore


class FakeTimer:
    """Stands in for SamplingTimer; ticks are driven by calling tracker.sample()."""

    def __init__(self):
        self.running = False
        self.starts = 0
        self.stops = 0
        self.callback = None

    def start(self, callback):
        self.running = True
        self.starts += 1
        self.callback = callback

    def stop(self):
        if self.running:
            self.stops += 1
        self.running = False


class StubTransport:
    def __init__(self, name="stub", reply="stub answer", error=None, delay=0.0):
        self.name = name
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts = []

    async def send(self, prompt):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return AiResponse(text=self.reply, usage={"total_token_count": 12})


class StubSource:
    def __init__(self, segments=None):
        self.segments = segments or []
        self.urls = []

    def extract(self, url):
        self.urls.append(url)
        return list(self.segments)


def segments(*pairs):
    return [TranscriptSegment(time=t, text=text) for t, text in pairs]


@pytest.fixture
def make_store():
    """Factory, called inside the test's event loop, sharing one fake server."""
    server = fakeredis.FakeServer()

    def _make(namespace="session:test"):
        redis = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
        return KeyValueStore(redis, namespace=namespace)

    return _make
