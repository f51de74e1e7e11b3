"""Tests for the bounded worker pool."""

import asyncio

import pytest

from rebac_admin.pool.worker_pool import (
    PoolFullError,
    PoolStoppedError,
    WaitGroup,
    WorkerPool,
    take,
)


class TestWaitGroup:
    @pytest.mark.asyncio
    async def test_wait_returns_immediately_when_empty(self):
        await asyncio.wait_for(WaitGroup().wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_wait_blocks_until_done(self):
        wait_group = WaitGroup(2)
        waiter = asyncio.create_task(wait_group.wait())

        wait_group.done()
        await asyncio.sleep(0)
        assert not waiter.done()

        wait_group.done()
        await asyncio.wait_for(waiter, timeout=1)
        assert wait_group.count == 0

    def test_negative_counter_rejected(self):
        with pytest.raises(ValueError):
            WaitGroup().done()


class TestWorkerPool:
    def test_needs_a_worker(self):
        with pytest.raises(ValueError):
            WorkerPool(0)

    @pytest.mark.asyncio
    async def test_results_and_wait_group(self):
        pool = WorkerPool(4)
        pool.start()
        try:
            results: asyncio.Queue = asyncio.Queue(maxsize=3)
            wait_group = WaitGroup(3)

            async def double(n):
                return n * 2

            ids = {
                pool.submit(lambda n=n: double(n), results, wait_group): n
                for n in range(3)
            }
            await asyncio.wait_for(wait_group.wait(), timeout=1)

            collected = await take(results, 3)
            assert {ids[r.id]: r.value for r in collected} == {0: 0, 1: 2, 2: 4}
        finally:
            await pool.stop()

    @pytest.mark.asyncio
    async def test_none_becomes_true_and_errors_are_values(self):
        pool = WorkerPool(2)
        pool.start()
        try:
            results: asyncio.Queue = asyncio.Queue()
            wait_group = WaitGroup(2)

            async def nothing():
                return None

            async def boom():
                raise RuntimeError("boom")

            ok_id = pool.submit(nothing, results, wait_group)
            pool.submit(boom, results, wait_group)
            await asyncio.wait_for(wait_group.wait(), timeout=1)

            values = {r.id: r.value for r in await take(results, 2)}
            assert values.pop(ok_id) is True
            (error,) = values.values()
            assert isinstance(error, RuntimeError)
        finally:
            await pool.stop()

    @pytest.mark.asyncio
    async def test_plain_callables_run(self):
        pool = WorkerPool(1)
        pool.start()
        try:
            results: asyncio.Queue = asyncio.Queue()
            wait_group = WaitGroup(1)
            pool.submit(lambda: "sync", results, wait_group)
            await asyncio.wait_for(wait_group.wait(), timeout=1)
            assert (await results.get()).value == "sync"
        finally:
            await pool.stop()

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self):
        pool = WorkerPool(1, queue_size=1)
        # Not started, so nothing drains the queue
        pool.submit(lambda: None)
        with pytest.raises(PoolFullError):
            pool.submit(lambda: None)
        assert pool.pending == 1
        await pool.stop()

    @pytest.mark.asyncio
    async def test_stop_releases_queued_jobs(self):
        pool = WorkerPool(1)
        wait_group = WaitGroup(2)
        pool.submit(lambda: None, None, wait_group)
        pool.submit(lambda: None, None, wait_group)

        await pool.stop()

        await asyncio.wait_for(wait_group.wait(), timeout=1)
        with pytest.raises(PoolStoppedError):
            pool.submit(lambda: None)

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_workers(self):
        pool = WorkerPool(2)
        pool.start()
        running = 0
        peak = 0

        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        try:
            wait_group = WaitGroup(6)
            for _ in range(6):
                pool.submit(job, None, wait_group)
            await asyncio.wait_for(wait_group.wait(), timeout=2)
            assert peak == 2
        finally:
            await pool.stop()
