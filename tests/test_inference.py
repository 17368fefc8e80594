"""Tests for the capture processing pool."""

from __future__ import annotations

import asyncio
import threading

import pytest

from fruitcounter.config import Settings
from fruitcounter.ml.inference import InferencePool


class TestInferencePool:
    async def test_run_returns_result(self) -> None:
        pool = InferencePool(Settings())
        try:
            assert await pool.run(lambda a, b: a + b, 2, 3) == 5
            assert pool.active_count == 0
            assert pool.queue_depth == 0
        finally:
            pool.shutdown()

    async def test_exception_propagates_and_releases_slot(self) -> None:
        pool = InferencePool(Settings())

        def _fail() -> None:
            raise ValueError("bad capture")

        try:
            with pytest.raises(ValueError, match="bad capture"):
                await pool.run(_fail)
            assert await pool.run(lambda: "ok") == "ok"
        finally:
            pool.shutdown()

    async def test_second_capture_times_out_while_first_runs(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=0.1))
        release = threading.Event()
        try:
            first = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.05)
            assert pool.active_count == 1

            with pytest.raises(TimeoutError):
                await pool.run(lambda: None)
            assert pool.queue_depth == 0

            release.set()
            assert await first is True
        finally:
            release.set()
            pool.shutdown()

    async def test_waiting_capture_counted_in_queue_depth(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=2.0))
        release = threading.Event()
        try:
            first = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.05)
            second = asyncio.create_task(pool.run(lambda: "second"))
            await asyncio.sleep(0.05)
            assert pool.active_count == 1
            assert pool.queue_depth == 1

            release.set()
            assert await first is True
            assert await second == "second"
            assert pool.queue_depth == 0
            assert pool.active_count == 0
        finally:
            release.set()
            pool.shutdown()
