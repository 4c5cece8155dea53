"""Tests for session_service/core/distributed_lock/core.py.

Covers:
- LockRegistry: exclusion, FIFO hand-off, timeout, eviction, key isolation
- LockContext: release on every exit path
- LockHandle: idempotent release
"""

from __future__ import annotations

import asyncio

import pytest

from session_service.core.distributed_lock import LockRegistry, LockStatus
from session_service.core.errors import LockTimeoutError


class TestLockRegistry:
    """Tests for LockRegistry."""

    @pytest.fixture
    def registry(self):
        return LockRegistry()

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, registry):
        handle = await registry.acquire("session-1")

        assert handle.status == LockStatus.ACQUIRED
        assert registry.is_locked("session-1")

        handle.release()
        assert handle.status == LockStatus.RELEASED
        assert not registry.is_locked("session-1")

    @pytest.mark.asyncio
    async def test_mutual_exclusion(self, registry):
        """Critical sections on one key never interleave."""
        trace = []

        async def worker(name):
            async with registry.hold("session-1"):
                trace.append(f"{name}-enter")
                await asyncio.sleep(0.01)
                trace.append(f"{name}-exit")

        await asyncio.gather(worker("a"), worker("b"), worker("c"))

        for i in range(0, len(trace), 2):
            assert trace[i].split("-")[0] == trace[i + 1].split("-")[0]

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_block(self, registry):
        first = await registry.acquire("session-1")
        second = await asyncio.wait_for(registry.acquire("session-2"), timeout=0.1)

        assert first.fencing_token < second.fencing_token
        first.release()
        second.release()

    @pytest.mark.asyncio
    async def test_wait_timeout(self, registry):
        holder = await registry.acquire("session-1")

        with pytest.raises(LockTimeoutError) as exc_info:
            await registry.acquire("session-1", wait_timeout=0.02)

        assert exc_info.value.status_code == 409
        holder.release()
        assert registry.active_keys == []

    @pytest.mark.asyncio
    async def test_registry_default_timeout(self):
        registry = LockRegistry(wait_timeout=0.02)
        holder = await registry.acquire("session-1")

        with pytest.raises(LockTimeoutError):
            async with registry.hold("session-1"):
                pass

        holder.release()

    @pytest.mark.asyncio
    async def test_entries_evicted_after_last_holder(self, registry):
        async with registry.hold("session-1"):
            assert registry.active_keys == ["session-1"]
        assert registry.active_keys == []

    @pytest.mark.asyncio
    async def test_waiter_keeps_entry_alive(self, registry):
        holder = await registry.acquire("session-1")
        waiter = asyncio.create_task(registry.acquire("session-1"))
        await asyncio.sleep(0)

        holder.release()
        handle = await waiter

        assert registry.is_locked("session-1")
        handle.release()
        assert registry.active_keys == []


class TestLockContext:
    @pytest.mark.asyncio
    async def test_released_when_body_raises(self):
        registry = LockRegistry()

        with pytest.raises(RuntimeError):
            async with registry.hold("session-1"):
                raise RuntimeError("boom")

        assert not registry.is_locked("session-1")

    @pytest.mark.asyncio
    async def test_double_release_is_noop(self):
        registry = LockRegistry()
        handle = await registry.acquire("session-1")

        handle.release()
        handle.release()

        other = await asyncio.wait_for(registry.acquire("session-1"), timeout=0.1)
        other.release()
