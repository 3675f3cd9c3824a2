"""Classifier session: model lifecycle and classification entry point.

The session is an explicitly owned component (not module state). Its
lifecycle is observable through ``state``:

    uninitialized -> loading -> ready
                             -> failed -> loading (explicit retry only)

Only one load is ever in flight; concurrent ``initialize`` calls await the
same load. ``classify`` never waits for a load and fails fast instead.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from safelens.errors import (
    ClassifierBusyError,
    InferenceError,
    InvalidStateError,
    MalformedGridError,
    ModelLoadError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from safelens.ml.image_classifier import ImageClassifier, Prediction
    from safelens.ml.inference import InferencePool

    ClassifierLoader = Callable[[str | None], ImageClassifier]

logger = logging.getLogger(__name__)

LOAD_SLOT_TIMEOUT_SECONDS: float = 300.0


class SessionState(StrEnum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ClassifierSession:
    """Owns a loaded classifier and serves classify calls once ready."""

    def __init__(self, loader: ClassifierLoader, pool: InferencePool) -> None:
        self._loader = loader
        self._pool = pool
        self._state = SessionState.UNINITIALIZED
        self._classifier: ImageClassifier | None = None
        self._load_task: asyncio.Task[None] | None = None
        self._error: str | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> str | None:
        """Message of the last load failure, if the session is failed."""
        return self._error

    @property
    def model_name(self) -> str | None:
        return self._classifier.model_name if self._classifier is not None else None

    async def initialize(self, model_source: str | None = None) -> None:
        """Load the model, or join a load already in progress.

        A no-op once ready. From the failed state a new load is started.

        Raises:
            ModelLoadError: If the model cannot be fetched or parsed.
        """
        if self._state is SessionState.READY:
            return

        if self._load_task is None or self._state is SessionState.FAILED:
            self._state = SessionState.LOADING
            self._error = None
            logger.info("Classifier loading (source=%s)", model_source or "default")
            self._load_task = asyncio.ensure_future(self._load(model_source))

        await asyncio.shield(self._load_task)

    async def _load(self, model_source: str | None) -> None:
        try:
            classifier = await self._pool.run(self._loader, model_source, timeout=LOAD_SLOT_TIMEOUT_SECONDS)
        except Exception as exc:
            error = exc if isinstance(exc, ModelLoadError) else ModelLoadError(f"model load failed: {exc}")
            self._state = SessionState.FAILED
            self._error = str(error)
            logger.warning("Classifier failed to load: %s", error)
            if error is exc:
                raise
            raise error from exc

        self._classifier = classifier
        self._state = SessionState.READY
        logger.info("Classifier ready (%s, %d labels)", classifier.model_name, len(classifier.labels))

    async def classify(self, tensor: NDArray[np.uint8]) -> list[Prediction]:
        """Classify an HxWx3 RGB tensor.

        Returns:
            Predictions sorted by descending probability; ties keep the
            model's category order.

        Raises:
            InvalidStateError: If the session is not ready.
            MalformedGridError: If the tensor is not HxWx3.
            ClassifierBusyError: If no inference slot frees up in time.
            InferenceError: If the model fails while running.
        """
        classifier = self._classifier
        if self._state is not SessionState.READY or classifier is None:
            raise InvalidStateError()

        if tensor.ndim != 3 or tensor.shape[2] != 3:
            raise MalformedGridError(f"expected an HxWx3 tensor, got shape {tensor.shape}")

        try:
            predictions = await self._pool.run(classifier.classify, tensor)
        except TimeoutError as exc:
            raise ClassifierBusyError("classifier busy") from exc
        except Exception as exc:
            logger.exception("Inference failed on %s", classifier.model_name)
            raise InferenceError(f"inference failed: {exc}") from exc

        return sorted(predictions, key=lambda p: p.probability, reverse=True)
