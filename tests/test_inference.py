"""Tests for the inference thread pool."""

from __future__ import annotations

import asyncio
import threading

import pytest

from safelens.ml.inference import InferencePool


class TestInferencePool:
    async def test_runs_function_off_loop(self) -> None:
        pool = InferencePool(max_concurrent=1)
        try:
            thread_name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()
        assert thread_name.startswith("safelens-inference")

    async def test_times_out_when_slot_busy(self) -> None:
        pool = InferencePool(max_concurrent=1, timeout=0.05)
        release = threading.Event()
        try:
            busy = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.02)
            assert pool.active_count == 1

            with pytest.raises(TimeoutError):
                await pool.run(lambda: None)
            assert pool.queue_depth == 0

            release.set()
            assert await busy is True
        finally:
            release.set()
            pool.shutdown()
        assert pool.active_count == 0

    async def test_per_call_timeout_overrides_default(self) -> None:
        pool = InferencePool(max_concurrent=1, timeout=0.01)
        release = threading.Event()
        try:
            busy = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.02)
            waiting = asyncio.create_task(pool.run(lambda: "loaded", timeout=5))
            await asyncio.sleep(0.05)
            release.set()
            assert await waiting == "loaded"
            await busy
        finally:
            release.set()
            pool.shutdown()
