# ============================================================
# store.py — Async Redis Key-Value Store for Session State
# ============================================================
# The durable map behind tracking aggregates, the watch-event
# log and overlay geometry. Values are JSON; keys are namespaced
# per session. Writers are last-writer-wins and listeners are
# told which keys changed after every write.
# ============================================================

import json
import uuid
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from config import REDIS_URL

# ── Singleton Connection Pool ─────────────────────────────────
_redis_pool: aioredis.Redis | None = None

ChangeListener = Callable[[dict], Awaitable[None]]


async def get_redis() -> aioredis.Redis:
    """Get or create the async Redis connection. Falls back to fakeredis if no server is running."""
    global _redis_pool
    if _redis_pool is None:
        try:
            _redis_pool = aioredis.from_url(
                REDIS_URL,
                decode_responses=True,
                max_connections=20,
            )
            await _redis_pool.ping()
            print("✅ Connected to Redis server")
        except Exception:
            # In-memory fakeredis for dev (no Docker needed)
            import fakeredis.aioredis
            _redis_pool = fakeredis.aioredis.FakeRedis(decode_responses=True)
            print("⚠️  No Redis server found — using in-memory fakeredis (dev mode)")
    return _redis_pool


class KeyValueStore:
    """
    Durable map with change notifications, scoped to one namespace.

    `get`/`set` mirror the extension storage API: `get` returns only the
    keys that exist, `set` writes a whole mapping and then notifies
    listeners with `{key: new_value}`.
    """

    def __init__(self, redis: aioredis.Redis, namespace: str):
        self._redis = redis
        self._namespace = namespace
        self._listeners: list[ChangeListener] = []

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, keys: list[str]) -> dict:
        if not keys:
            return {}
        raw_values = await self._redis.mget([self._key(k) for k in keys])
        result = {}
        for key, raw in zip(keys, raw_values):
            if raw is None:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            try:
                result[key] = json.loads(raw)
            except json.JSONDecodeError:
                print(f"[STORE] ⚠️ Dropping malformed value for {self._key(key)}")
        return result

    async def set(self, mapping: dict) -> None:
        if not mapping:
            return
        await self._redis.mset({self._key(k): json.dumps(v) for k, v in mapping.items()})
        await self._notify(mapping)

    async def delete(self, keys: list[str]) -> None:
        if not keys:
            return
        await self._redis.delete(*[self._key(k) for k in keys])
        await self._notify({k: None for k in keys})

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, changes: dict) -> None:
        for listener in list(self._listeners):
            await listener(changes)


def generate_session_id() -> str:
    """Generate a unique session ID."""
    return uuid.uuid4().hex[:12]
