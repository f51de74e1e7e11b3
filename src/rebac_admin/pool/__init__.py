"""Bounded asyncio worker pool."""

from .worker_pool import (
    JOBS_BUFFER_SIZE,
    PoolFullError,
    PoolStoppedError,
    Result,
    WaitGroup,
    WorkerPool,
    take,
)

__all__ = [
    "JOBS_BUFFER_SIZE",
    "PoolFullError",
    "PoolStoppedError",
    "Result",
    "WaitGroup",
    "WorkerPool",
    "take",
]
