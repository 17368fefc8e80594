"""Capture processing pool.

Each uploaded photo is one capture. A capture holds a slot for its whole
pass (decode, invoke, post-process) and runs on a worker thread so the
event loop keeps serving health and metadata requests. With the default
single slot, a capture runs to completion before the next is accepted;
captures that cannot get a slot within the queue timeout are turned away.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from fruitcounter.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Admits captures into a fixed number of processing slots."""

    def __init__(self, settings: Settings) -> None:
        self._slots = settings.max_concurrent
        self._timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(self._slots)
        self._executor = ThreadPoolExecutor(
            max_workers=self._slots,
            thread_name_prefix="capture-pass",
        )
        self._running: int = 0
        self._waiting: int = 0
        self._counter_lock = threading.Lock()

    def _adjust(self, *, running: int = 0, waiting: int = 0) -> None:
        with self._counter_lock:
            self._running += running
            self._waiting += waiting

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._adjust(waiting=1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Capture turned away: all %d slot(s) busy for %.1fs", self._slots, self._timeout)
            raise
        finally:
            self._adjust(waiting=-1)

        self._adjust(running=1)
        try:
            yield
        finally:
            self._semaphore.release()
            self._adjust(running=-1)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Process one capture on a worker thread once a slot is free.

        No partial result survives a failure: whatever ``func`` raises
        propagates to the caller and the slot is released.

        Raises:
            TimeoutError: If every slot stayed busy for the queue timeout.
        """
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)

    @property
    def active_count(self) -> int:
        """Captures currently being processed."""
        with self._counter_lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        """Captures waiting for a slot."""
        with self._counter_lock:
            return self._waiting

    def shutdown(self) -> None:
        """Let in-flight captures finish, then stop the worker threads."""
        self._executor.shutdown(wait=True)
