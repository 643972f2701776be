"""
Medlink Triage - Call Session Store Tests

Run with: pytest tests/test_session_store.py -v
"""

import asyncio

import pytest

from medlink.core.session_store import CallSessionStore


class TestContextLifecycle:
    """Tests for create/get/delete."""

    def test_get_or_create_is_idempotent(self):
        store = CallSessionStore()
        first = store.get_or_create("call-1")
        second = store.get_or_create("call-1")
        assert first is second
        assert store.active_count() == 1

    def test_get_unknown(self):
        assert CallSessionStore().get("missing") is None

    def test_delete_returns_context(self):
        store = CallSessionStore()
        context = store.get_or_create("call-1")
        assert store.delete("call-1") is context
        assert store.get("call-1") is None

    def test_delete_unknown_is_safe(self):
        assert CallSessionStore().delete("missing") is None

    def test_is_current_after_delete(self):
        store = CallSessionStore()
        context = store.get_or_create("call-1")
        assert store.is_current(context)

        store.delete("call-1")
        assert not store.is_current(context)

    def test_recreated_context_is_new(self):
        store = CallSessionStore()
        old = store.get_or_create("call-1")
        store.delete("call-1")
        new = store.get_or_create("call-1")
        assert new is not old
        assert not store.is_current(old)
        assert store.is_current(new)

    def test_active_call_ids_and_clear(self):
        store = CallSessionStore()
        store.get_or_create("a")
        store.get_or_create("b")
        assert sorted(store.active_call_ids()) == ["a", "b"]

        store.clear()
        assert store.active_count() == 0


class TestSerialize:
    """Tests for per-call serialization."""

    @pytest.mark.asyncio
    async def test_same_call_runs_in_order(self):
        store = CallSessionStore()
        events = []

        async def work(name: str, delay: float):
            async with store.serialize("call-1"):
                events.append(f"{name}-start")
                await asyncio.sleep(delay)
                events.append(f"{name}-end")

        first = asyncio.create_task(work("first", 0.02))
        await asyncio.sleep(0)
        second = asyncio.create_task(work("second", 0))
        await asyncio.gather(first, second)

        assert events == ["first-start", "first-end", "second-start", "second-end"]

    @pytest.mark.asyncio
    async def test_distinct_calls_do_not_wait(self):
        store = CallSessionStore()
        release = asyncio.Event()
        other_done = asyncio.Event()

        async def blocked():
            async with store.serialize("call-1"):
                await release.wait()

        async def other():
            async with store.serialize("call-2"):
                other_done.set()

        blocked_task = asyncio.create_task(blocked())
        await asyncio.sleep(0)
        await asyncio.wait_for(other(), timeout=1.0)
        assert other_done.is_set()

        release.set()
        await blocked_task

    @pytest.mark.asyncio
    async def test_lock_dropped_when_unused(self):
        store = CallSessionStore()
        async with store.serialize("call-1"):
            assert "call-1" in store._locks
        assert "call-1" not in store._locks
        assert "call-1" not in store._waiters

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        store = CallSessionStore()
        with pytest.raises(RuntimeError):
            async with store.serialize("call-1"):
                raise RuntimeError("boom")

        async with store.serialize("call-1"):
            pass
        assert store._locks == {}
