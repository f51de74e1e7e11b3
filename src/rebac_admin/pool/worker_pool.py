"""Bounded pool of asyncio workers for fan-out jobs.

Jobs are queued in a bounded buffer and picked up by a fixed number of
worker tasks. Each job reports its outcome on a caller-owned results queue
and releases the caller's ``WaitGroup`` exactly once, whether the job
succeeded, raised or was abandoned during shutdown.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

JOBS_BUFFER_SIZE = 200


class PoolFullError(Exception):
    """The job buffer is full; the job was not queued."""

    pass


class PoolStoppedError(Exception):
    """The pool has been stopped and accepts no more jobs."""

    pass


@dataclass(frozen=True)
class Result:
    """Outcome of a job: its return value, ``True`` or the exception raised."""

    key: uuid.UUID
    value: Any

    @property
    def id(self) -> str:
        return str(self.key)


class WaitGroup:
    """Counter that lets a coroutine wait until every added job is done."""

    def __init__(self, count: int = 0):
        self._count = 0
        self._event = asyncio.Event()
        self._event.set()
        if count:
            self.add(count)

    @property
    def count(self) -> int:
        return self._count

    def add(self, delta: int = 1):
        self._count += delta
        if self._count < 0:
            raise ValueError("negative WaitGroup counter")
        if self._count == 0:
            self._event.set()
        else:
            self._event.clear()

    def done(self):
        self.add(-1)

    async def wait(self):
        await self._event.wait()


@dataclass
class _Job:
    task: Callable[[], Any]
    results: Optional[asyncio.Queue]
    wait_group: Optional[WaitGroup]
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class WorkerPool:
    """Fixed number of worker tasks consuming a bounded job queue.

    Tasks may be plain callables or coroutine functions. Plain callables run
    on the event loop and must not block.
    """

    def __init__(self, workers: int, queue_size: int = JOBS_BUFFER_SIZE):
        if workers < 1:
            raise ValueError("WorkerPool needs at least one worker")
        self.workers = workers
        self._jobs: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._tasks: List[asyncio.Task] = []
        self._stopped = False

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopped

    @property
    def pending(self) -> int:
        """Number of queued jobs not yet picked up by a worker."""
        return self._jobs.qsize()

    def start(self):
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._consume(n), name=f"worker-pool-{n}")
            for n in range(self.workers)
        ]
        logger.info("Worker pool started with %d workers", self.workers)

    def submit(
        self,
        task: Callable[[], Any],
        results: Optional[asyncio.Queue] = None,
        wait_group: Optional[WaitGroup] = None,
    ) -> str:
        """Queue ``task`` and return its job id.

        The caller is expected to have ``add``-ed the job to ``wait_group``.

        Raises:
            PoolFullError: the job buffer is full.
            PoolStoppedError: the pool has been stopped.
        """
        if self._stopped:
            raise PoolStoppedError("WorkerPool is stopped")

        job = _Job(task=task, results=results, wait_group=wait_group)
        try:
            self._jobs.put_nowait(job)
        except asyncio.QueueFull:
            raise PoolFullError("WorkerPool queue is full") from None
        return str(job.id)

    async def stop(self):
        """Cancel the workers and release the wait groups of unstarted jobs."""
        self._stopped = True
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        abandoned = 0
        while not self._jobs.empty():
            job = self._jobs.get_nowait()
            if job.wait_group is not None:
                job.wait_group.done()
            abandoned += 1
        if abandoned:
            logger.info("Worker pool stopped, %d queued jobs aborted", abandoned)
        else:
            logger.info("Worker pool stopped")

    async def _consume(self, worker: int):
        while True:
            job = await self._jobs.get()
            await self._execute(job)

    async def _execute(self, job: _Job):
        try:
            try:
                value = job.task()
                if inspect.isawaitable(value):
                    value = await value
                if value is None:
                    value = True
            except Exception as exc:
                logger.error("Job %s failed: %s", job.id, exc)
                value = exc

            if job.results is not None:
                try:
                    job.results.put_nowait(Result(job.id, value))
                except asyncio.QueueFull:
                    logger.error("Results queue full, dropping result of job %s", job.id)
        finally:
            if job.wait_group is not None:
                job.wait_group.done()


async def take(results: asyncio.Queue, n: int) -> List[Result]:
    """Collect ``n`` results from ``results``, waiting as needed."""
    return [await results.get() for _ in range(n)]
