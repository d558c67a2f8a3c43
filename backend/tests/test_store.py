"""Tests for the namespaced key-value store."""

import asyncio


def test_get_returns_only_existing_keys(make_store):
    async def scenario():
        store = make_store()
        await store.set({"a": {"x": 1}, "b": [1, 2]})
        assert await store.get(["a", "b", "missing"]) == {"a": {"x": 1}, "b": [1, 2]}
        assert await store.get([]) == {}

    asyncio.run(scenario())


def test_namespaces_are_isolated(make_store):
    async def scenario():
        one, two = make_store("session:one"), make_store("session:two")
        await one.set({"overlay_state": {"minimized": True}})
        assert await two.get(["overlay_state"]) == {}

    asyncio.run(scenario())


def test_listeners_see_writes_and_deletes(make_store):
    async def scenario():
        store = make_store()
        seen = []

        async def listener(changes):
            seen.append(changes)

        unsubscribe = store.subscribe(listener)
        await store.set({"assistant_started": True})
        await store.delete(["assistant_started"])
        unsubscribe()
        await store.set({"assistant_started": False})
        assert seen == [{"assistant_started": True}, {"assistant_started": None}]

    asyncio.run(scenario())


def test_malformed_json_is_skipped(make_store):
    async def scenario():
        store = make_store()
        await store._redis.set("session:test:broken", "{not json")
        assert await store.get(["broken"]) == {}

    asyncio.run(scenario())
