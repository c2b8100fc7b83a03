"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> pipeline run

Requests beyond the semaphore limit queue with a 5s timeout and then fail
with :class:`QueueTimeout`. A caller may also bound the run itself; when that
deadline passes the awaiting task gets :class:`RunTimeout` and the worker's
eventual result is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from avatarprep.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class QueueTimeout(TimeoutError):
    """No worker slot became free within the queue timeout."""


class RunTimeout(TimeoutError):
    """The submitted function did not finish within the caller's deadline."""


class InferencePool:
    """Manages the semaphore and thread pool that pipeline runs execute on."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="avatar-pipeline",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object, timeout: float | None = None) -> T:
        """Submit a synchronous function to the worker thread pool.

        Raises:
            QueueTimeout: If no slot frees up within ``SEMAPHORE_TIMEOUT_SECONDS``.
            RunTimeout: If ``timeout`` is set and the function runs longer.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        except TimeoutError:
            raise QueueTimeout(f"No worker available within {SEMAPHORE_TIMEOUT_SECONDS:g}s") from None
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(self._executor, func, *args)
            try:
                return await asyncio.wait_for(future, timeout=timeout)
            except TimeoutError:
                logger.warning("Pipeline run exceeded %.1fs deadline; result will be discarded", timeout)
                raise RunTimeout(f"Run did not finish within {timeout:g}s") from None
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
