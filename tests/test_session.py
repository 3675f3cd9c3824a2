"""Tests for the classifier session lifecycle."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterator

import numpy as np
import pytest

from safelens.errors import (
    ClassifierBusyError,
    InferenceError,
    InvalidStateError,
    MalformedGridError,
    ModelLoadError,
)
from safelens.ml.image_classifier import Prediction
from safelens.ml.inference import InferencePool
from safelens.ml.session import ClassifierSession, SessionState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StubClassifier:
    def __init__(self, predictions: list[Prediction] | None = None, error: Exception | None = None) -> None:
        self._predictions = predictions or [
            Prediction(label="neutral", probability=0.9),
            Prediction(label="nsfw", probability=0.1),
        ]
        self._error = error
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(p.label for p in self._predictions)

    def classify(self, image: np.ndarray) -> list[Prediction]:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._predictions)


class CountingLoader:
    """Loader that blocks until released, counting fetches."""

    def __init__(self, classifier: StubClassifier | None = None, error: Exception | None = None) -> None:
        self.classifier = classifier or StubClassifier()
        self.error = error
        self.calls = 0
        self.sources: list[str | None] = []
        self.release = threading.Event()
        self.release.set()

    def __call__(self, source: str | None) -> StubClassifier:
        self.calls += 1
        self.sources.append(source)
        self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.classifier


@pytest.fixture()
def pool() -> Iterator[InferencePool]:
    inference_pool = InferencePool(max_concurrent=1)
    yield inference_pool
    inference_pool.shutdown()


def _tensor() -> np.ndarray:
    return np.zeros((2, 2, 3), dtype=np.uint8)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestInitialize:
    async def test_starts_uninitialized(self, pool: InferencePool) -> None:
        session = ClassifierSession(CountingLoader(), pool)
        assert session.state is SessionState.UNINITIALIZED
        assert session.model_name is None

    async def test_initialize_reaches_ready(self, pool: InferencePool) -> None:
        loader = CountingLoader()
        session = ClassifierSession(loader, pool)

        await session.initialize("models/nsfw.onnx")

        assert session.state is SessionState.READY
        assert session.model_name == "stub"
        assert loader.sources == ["models/nsfw.onnx"]

    async def test_concurrent_initialize_fetches_once(self, pool: InferencePool) -> None:
        loader = CountingLoader()
        loader.release.clear()
        session = ClassifierSession(loader, pool)

        first = asyncio.create_task(session.initialize())
        second = asyncio.create_task(session.initialize())
        await asyncio.sleep(0.05)
        assert session.state is SessionState.LOADING

        loader.release.set()
        await asyncio.gather(first, second)

        assert loader.calls == 1
        assert session.state is SessionState.READY

    async def test_initialize_after_ready_is_noop(self, pool: InferencePool) -> None:
        loader = CountingLoader()
        session = ClassifierSession(loader, pool)

        await session.initialize()
        await session.initialize()

        assert loader.calls == 1

    async def test_load_failure_is_terminal(self, pool: InferencePool) -> None:
        loader = CountingLoader(error=ModelLoadError("malformed weights"))
        session = ClassifierSession(loader, pool)

        with pytest.raises(ModelLoadError, match="malformed weights"):
            await session.initialize()

        assert session.state is SessionState.FAILED
        assert session.error == "malformed weights"
        with pytest.raises(InvalidStateError):
            await session.classify(_tensor())
        assert loader.calls == 1

    async def test_unexpected_loader_error_wrapped(self, pool: InferencePool) -> None:
        session = ClassifierSession(CountingLoader(error=KeyError("Unknown model")), pool)

        with pytest.raises(ModelLoadError, match="Unknown model"):
            await session.initialize()
        assert session.state is SessionState.FAILED

    async def test_explicit_retry_after_failure(self, pool: InferencePool) -> None:
        loader = CountingLoader(error=ModelLoadError("offline"))
        session = ClassifierSession(loader, pool)
        with pytest.raises(ModelLoadError):
            await session.initialize()

        loader.error = None
        await session.initialize()

        assert loader.calls == 2
        assert session.state is SessionState.READY
        assert session.error is None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassify:
    async def test_classify_before_initialize_fails(self, pool: InferencePool) -> None:
        session = ClassifierSession(CountingLoader(), pool)
        with pytest.raises(InvalidStateError, match="classifier unavailable"):
            await session.classify(_tensor())

    async def test_classify_while_loading_fails_fast(self, pool: InferencePool) -> None:
        loader = CountingLoader()
        loader.release.clear()
        session = ClassifierSession(loader, pool)
        load = asyncio.create_task(session.initialize())
        await asyncio.sleep(0.05)

        with pytest.raises(InvalidStateError):
            await asyncio.wait_for(session.classify(_tensor()), timeout=1)

        loader.release.set()
        await load

    async def test_returns_predictions_in_order(self, pool: InferencePool) -> None:
        session = ClassifierSession(CountingLoader(), pool)
        await session.initialize()

        predictions = await session.classify(_tensor())

        assert predictions == [
            Prediction(label="neutral", probability=0.9),
            Prediction(label="nsfw", probability=0.1),
        ]

    async def test_sorts_descending_and_keeps_tie_order(self, pool: InferencePool) -> None:
        stub = StubClassifier(
            [
                Prediction(label="Drawing", probability=0.2),
                Prediction(label="Hentai", probability=0.2),
                Prediction(label="Neutral", probability=0.6),
            ]
        )
        session = ClassifierSession(CountingLoader(stub), pool)
        await session.initialize()

        predictions = await session.classify(_tensor())

        assert [p.label for p in predictions] == ["Neutral", "Drawing", "Hentai"]

    async def test_rejects_non_rgb_tensor(self, pool: InferencePool) -> None:
        session = ClassifierSession(CountingLoader(), pool)
        await session.initialize()

        with pytest.raises(MalformedGridError):
            await session.classify(np.zeros((2, 2, 4), dtype=np.uint8))

    async def test_model_error_leaves_session_ready(self, pool: InferencePool) -> None:
        stub = StubClassifier(error=RuntimeError("onnx runtime exploded"))
        session = ClassifierSession(CountingLoader(stub), pool)
        await session.initialize()

        with pytest.raises(InferenceError, match="onnx runtime exploded"):
            await session.classify(_tensor())
        assert session.state is SessionState.READY

    async def test_busy_pool_raises_busy_error(self) -> None:
        busy_pool = InferencePool(max_concurrent=1, timeout=0.05)
        gate = threading.Event()
        try:
            session = ClassifierSession(CountingLoader(), busy_pool)
            await session.initialize()
            occupant = asyncio.ensure_future(busy_pool.run(gate.wait, 5))
            while busy_pool.active_count == 0:
                await asyncio.sleep(0.01)

            with pytest.raises(ClassifierBusyError):
                await session.classify(_tensor())
            assert session.state is SessionState.READY

            gate.set()
            await occupant
        finally:
            gate.set()
            busy_pool.shutdown()
