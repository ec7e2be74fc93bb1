"""Tests for concurrency helpers and logging utilities."""

import asyncio

import pytest

from provider_sync.performance import ConcurrentExecutor, KeyedLockPool, get_lock_pool
from provider_sync.utils.logging import (
    log_async_execution_time,
    log_execution_time,
    mask_secret,
)


class TestKeyedLockPool:
    """Per-resource locking."""

    def test_same_name_same_lock(self):
        """Locks are created once per name."""
        pool = KeyedLockPool()
        assert pool.get_lock("a") is pool.get_lock("a")
        assert pool.get_lock("a") is not pool.get_lock("b")
        assert not pool.locked("missing")

    @pytest.mark.asyncio
    async def test_serializes_same_key(self):
        """Critical sections on one key never overlap."""
        pool = KeyedLockPool()
        events = []

        async def _worker(name):
            async with pool.acquire("file.json"):
                events.append(f"start {name}")
                await asyncio.sleep(0.01)
                events.append(f"end {name}")

        await asyncio.gather(_worker("a"), _worker("b"))

        assert events in (
            ["start a", "end a", "start b", "end b"],
            ["start b", "end b", "start a", "end a"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_interleave(self):
        """Different keys do not block each other."""
        pool = KeyedLockPool()

        async with pool.acquire("a"):
            assert pool.locked("a")
            async with pool.acquire("b"):
                assert pool.locked("b")
        assert not pool.locked("a")

    def test_global_pool(self):
        """The process-wide pool is a singleton."""
        assert get_lock_pool() is get_lock_pool()


class TestConcurrentExecutor:
    """Bounded batch execution."""

    @pytest.mark.asyncio
    async def test_limit_and_order(self):
        """Results keep task order and concurrency stays bounded."""
        executor = ConcurrentExecutor(max_concurrent=2)
        running = {"now": 0, "peak": 0}

        def _task(value):
            async def _run():
                running["now"] += 1
                running["peak"] = max(running["peak"], running["now"])
                await asyncio.sleep(0.01 * (5 - value))
                running["now"] -= 1
                return value * 10
            return _run

        results = await executor.execute_batch([_task(i) for i in range(5)])

        assert results == [0, 10, 20, 30, 40]
        assert running["peak"] <= 2

    @pytest.mark.asyncio
    async def test_return_exceptions(self):
        """Failures can be collected instead of raised."""
        executor = ConcurrentExecutor(max_concurrent=3)

        async def _ok():
            return "ok"

        async def _fail():
            raise ValueError("boom")

        results = await executor.execute_batch([_ok, _fail], return_exceptions=True)
        assert results[0] == "ok"
        assert isinstance(results[1], ValueError)

        with pytest.raises(ValueError):
            await executor.execute_batch([_ok, _fail])

    def test_invalid_limit(self):
        """At least one task must be allowed to run."""
        with pytest.raises(ValueError):
            ConcurrentExecutor(max_concurrent=0)


class TestLoggingUtilities:
    """Logging helpers."""

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        ("", ""),
        ("short", "*****"),
        ("fo-test-value-123", "fo-test-..."),
    ])
    def test_mask_secret(self, value, expected):
        """Credentials are never logged in full."""
        assert mask_secret(value) == expected

    def test_sync_decorator_preserves_result(self):
        """The timing decorator is transparent."""
        @log_execution_time
        def _double(value):
            return value * 2

        assert _double(21) == 42
        assert _double.__name__ == "_double"

    def test_sync_decorator_reraises(self):
        """Exceptions propagate unchanged."""
        @log_execution_time
        def _fail():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            _fail()

    @pytest.mark.asyncio
    async def test_async_decorator(self):
        """Coroutines keep their result and exceptions."""
        @log_async_execution_time
        async def _value():
            return "done"

        @log_async_execution_time
        async def _fail():
            raise RuntimeError("nope")

        assert await _value() == "done"
        with pytest.raises(RuntimeError):
            await _fail()
