"""Tests for the FIFO async locks."""

import asyncio

import pytest

from muse.memory.lock import KeyedLock, Lock, LockedResource


class TestLock:
    @pytest.mark.asyncio
    async def test_runs_work_in_enqueue_order(self):
        lock = Lock()
        order: list[tuple[str, int]] = []

        def job(i: int):
            async def work():
                order.append(("start", i))
                await asyncio.sleep(0.01 if i == 0 else 0)
                order.append(("end", i))
                return i

            return work

        results = await asyncio.gather(*(lock.acquire(job(i)) for i in range(3)))

        assert results == [0, 1, 2]
        assert order == [
            ("start", 0), ("end", 0),
            ("start", 1), ("end", 1),
            ("start", 2), ("end", 2),
        ]

    @pytest.mark.asyncio
    async def test_never_overlaps(self):
        lock = Lock()
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1

        await asyncio.gather(*(lock.acquire(work) for _ in range(10)))
        assert peak == 1
        assert not lock.locked

    @pytest.mark.asyncio
    async def test_sync_work(self):
        lock = Lock()
        assert await lock.acquire(lambda: "done") == "done"

    @pytest.mark.asyncio
    async def test_exception_passes_through_and_releases(self):
        lock = Lock()

        async def boom():
            raise ValueError("nope")

        with pytest.raises(ValueError, match="nope"):
            await lock.acquire(boom)

        assert lock.queue_length == 0
        assert await lock.acquire(lambda: 1) == 1

    @pytest.mark.asyncio
    async def test_reentrant_acquire_raises(self):
        lock = Lock()

        async def outer():
            return await lock.acquire(lambda: 1)

        with pytest.raises(RuntimeError, match="not reentrant"):
            await lock.acquire(outer)

        # Still usable afterwards.
        assert await lock.acquire(lambda: "ok") == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self):
        lock = Lock()
        release = asyncio.Event()

        async def hold():
            await release.wait()

        holder = asyncio.create_task(lock.acquire(hold))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(lock.acquire(lambda: "never"))
        await asyncio.sleep(0)
        assert lock.queue_length == 2

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert lock.queue_length == 1

        release.set()
        await holder
        assert await lock.acquire(lambda: "next") == "next"


class TestLockedResource:
    @pytest.mark.asyncio
    async def test_use_returns_result(self):
        resource = LockedResource({"a": 1})

        async def read(value):
            return value["a"]

        assert await resource.use(read) == 1

    @pytest.mark.asyncio
    async def test_use_can_mutate_in_place(self):
        resource = LockedResource([])
        await resource.use(lambda items: items.append(1))
        assert await resource.use(lambda items: list(items)) == [1]

    @pytest.mark.asyncio
    async def test_update_replaces_value(self):
        resource = LockedResource(1)

        async def increment(value):
            await asyncio.sleep(0)
            return value + 1

        await asyncio.gather(*(resource.update(increment) for _ in range(5)))
        assert await resource.use(lambda value: value) == 6


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1

        await asyncio.gather(*(locks.acquire("lang/rust", work) for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        b_started = asyncio.Event()

        async def work_a():
            await asyncio.wait_for(b_started.wait(), timeout=1)
            return "a"

        async def work_b():
            b_started.set()
            return "b"

        results = await asyncio.gather(locks.acquire("a", work_a), locks.acquire("b", work_b))
        assert results == ["a", "b"]

    @pytest.mark.asyncio
    async def test_lock_dropped_once_drained(self):
        locks = KeyedLock()
        seen_inside = []

        async def work():
            seen_inside.append("k" in locks)

        await asyncio.gather(locks.acquire("k", work), locks.acquire("k", work))
        assert seen_inside == [True, True]
        assert "k" not in locks
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_dropped_after_failure(self):
        locks = KeyedLock()

        def boom():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await locks.acquire("k", boom)
        assert len(locks) == 0
