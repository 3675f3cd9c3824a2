"""Pick -> read -> decode -> tensor -> classify, one request at a time.

Every failure inside a request ends that request with a human-readable
status; the session is never touched by a request failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from safelens.acquisition import read_file
from safelens.errors import (
    ClassifierBusyError,
    DecodeError,
    FileReadError,
    InferenceError,
    InvalidStateError,
    MalformedGridError,
    SafeLensError,
)
from safelens.ml.decoder import DEFAULT_MAX_PIXELS, decode_image
from safelens.ml.tensor import build_tensor

if TYPE_CHECKING:
    from safelens.acquisition import ImageSource
    from safelens.ml.image_classifier import Prediction
    from safelens.ml.session import ClassifierSession

logger = logging.getLogger(__name__)


class PipelineStatus(StrEnum):
    NO_SELECTION = "no_selection"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome of one classification request."""

    status: PipelineStatus
    message: str
    predictions: list[Prediction] = field(default_factory=list)
    error: SafeLensError | None = None


_FAILURE_MESSAGES: dict[type[SafeLensError], str] = {
    FileReadError: "Could not read the selected image",
    DecodeError: "The selected file is not a supported image",
    MalformedGridError: "The image data is malformed",
    InvalidStateError: "The classifier is not ready yet",
    ClassifierBusyError: "The classifier is busy, try again",
    InferenceError: "Prediction failed",
}


def describe_error(error: SafeLensError) -> str:
    for kind, message in _FAILURE_MESSAGES.items():
        if isinstance(error, kind):
            return message
    return "Prediction failed"


class ClassificationPipeline:
    """Runs one classification request end to end."""

    def __init__(
        self,
        session: ClassifierSession,
        source: ImageSource | None = None,
        max_pixels: int = DEFAULT_MAX_PIXELS,
    ) -> None:
        self._session = session
        self._source = source
        self._max_pixels = max_pixels

    async def run(self) -> PipelineResult:
        """Pick an image from the source and classify it."""
        if self._source is None:
            raise ValueError("pipeline has no image source")

        ref = await self._source.pick_image()
        if ref is None:
            return PipelineResult(status=PipelineStatus.NO_SELECTION, message="No image selected")

        try:
            data = await asyncio.to_thread(read_file, ref)
        except FileReadError as exc:
            return self._failed(exc)
        return await self.run_bytes(data)

    async def run_bytes(self, data: bytes) -> PipelineResult:
        """Classify raw image bytes that are already in memory."""
        try:
            grid = await asyncio.to_thread(decode_image, data, self._max_pixels)
            tensor = build_tensor(grid)
            predictions = await self._session.classify(tensor)
        except SafeLensError as exc:
            return self._failed(exc)

        return PipelineResult(
            status=PipelineStatus.SUCCEEDED,
            message=f"{len(predictions)} predictions",
            predictions=predictions,
        )

    @staticmethod
    def _failed(error: SafeLensError) -> PipelineResult:
        logger.warning("Classification request failed: %s", error)
        return PipelineResult(status=PipelineStatus.FAILED, message=describe_error(error), error=error)
