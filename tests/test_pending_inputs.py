"""Tests for the pending-input registry."""

from __future__ import annotations

import asyncio
import threading

import pytest

from nodeflow.core.errors import PendingInputConflictError
from nodeflow.core.pending_inputs import AudioInputData, PendingInputRegistry


class TestPendingInputRegistry:
    """Tests for suspend/resume of nodes awaiting input."""

    @pytest.mark.asyncio
    async def test_resolve_delivers_value(self):
        """Test resolve delivers value."""
        registry = PendingInputRegistry()
        waiter = asyncio.create_task(registry.wait_for_input("rec"))
        await asyncio.sleep(0)

        assert registry.is_waiting("rec")
        assert registry.resolve_input("rec", "payload") is True
        assert await waiter == "payload"
        assert not registry.is_waiting("rec")

    def test_resolve_without_waiter_is_noop(self):
        """Test resolve without waiter is noop."""
        registry = PendingInputRegistry()

        assert registry.resolve_input("missing", "x") is False

    @pytest.mark.asyncio
    async def test_second_wait_for_same_node_conflicts(self):
        """Test second wait for same node conflicts."""
        registry = PendingInputRegistry()
        first = asyncio.create_task(registry.wait_for_input("rec"))
        await asyncio.sleep(0)

        with pytest.raises(PendingInputConflictError):
            await registry.wait_for_input("rec")

        # The first waiter is untouched
        registry.resolve_input("rec", "ok")
        assert await first == "ok"

    @pytest.mark.asyncio
    async def test_clear_releases_all_waiters_with_none(self):
        """Test clear releases all waiters with none."""
        registry = PendingInputRegistry()
        waiters = [asyncio.create_task(registry.wait_for_input(n)) for n in ("a", "b")]
        await asyncio.sleep(0)
        assert sorted(registry.waiting_nodes()) == ["a", "b"]

        registry.clear()

        assert await asyncio.gather(*waiters) == [None, None]
        assert registry.waiting_nodes() == []

    @pytest.mark.asyncio
    async def test_cancelled_waiter_unregisters(self):
        """Test cancelled waiter unregisters."""
        registry = PendingInputRegistry()
        waiter = asyncio.create_task(registry.wait_for_input("rec"))
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert not registry.is_waiting("rec")
        # A fresh wait is allowed again
        again = asyncio.create_task(registry.wait_for_input("rec"))
        await asyncio.sleep(0)
        registry.resolve_input("rec", 1)
        assert await again == 1

    @pytest.mark.asyncio
    async def test_resolve_from_another_thread(self):
        """Test resolve from another thread."""
        registry = PendingInputRegistry()
        data = AudioInputData(buffer="AAAA", duration=1.5)
        waiter = asyncio.create_task(registry.wait_for_input("rec"))
        await asyncio.sleep(0)

        thread = threading.Thread(target=registry.resolve_input, args=("rec", data))
        thread.start()
        result = await asyncio.wait_for(waiter, timeout=2)
        thread.join()

        assert result == data
