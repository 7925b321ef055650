"""Inference concurrency layer.

Architecture:
    caller (event loop) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> classification worker

Requests beyond the semaphore limit wait for a slot; there is no admission
timeout. The pool keeps running totals of finished and failed runs for the
health endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time counters for the inference pool."""

    active: int
    queued: int
    completed: int
    failed: int


class InferencePool:
    """Bounds concurrent classifications and runs them on worker threads."""

    def __init__(self, max_concurrent: int) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="classify-worker",
        )
        self._active = 0
        self._queued = 0
        self._completed = 0
        self._failed = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on a worker thread once a slot is free.

        Exceptions raised by ``func`` propagate to the caller and are counted
        as failed runs.
        """
        with self._counter_lock:
            self._queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            with self._counter_lock:
                self._queued -= 1

        with self._counter_lock:
            self._active += 1
        started = time.perf_counter()
        failed = True
        try:
            result = await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
            failed = False
            return result
        finally:
            self._semaphore.release()
            elapsed_ms = (time.perf_counter() - started) * 1000
            with self._counter_lock:
                self._active -= 1
                if failed:
                    self._failed += 1
                else:
                    self._completed += 1
            logger.debug("Worker run %s in %.1f ms", "failed" if failed else "finished", elapsed_ms)

    def stats(self) -> PoolStats:
        """Running and waiting counts, plus totals since the pool started."""
        with self._counter_lock:
            return PoolStats(
                active=self._active,
                queued=self._queued,
                completed=self._completed,
                failed=self._failed,
            )

    def shutdown(self) -> None:
        """Wait for running work, then stop the worker threads."""
        self._executor.shutdown(wait=True)
