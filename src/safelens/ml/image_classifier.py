"""Image classification models.

``OnnxImageClassifier`` wraps an ONNX Runtime session for a single-head
content classifier and turns its output into ranked predictions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from safelens.ml.preprocessing import resize_image, to_model_input

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from safelens.ml.model_manager import ModelSpec
    from safelens.ml.preprocessing import ResizePolicy


@dataclass(frozen=True)
class Prediction:
    """A single category prediction."""

    label: str
    probability: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def labels(self) -> tuple[str, ...]:
        """Return category labels in the model's native output order."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        """Classify an image and return ranked predictions.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            One prediction per category, sorted by probability (descending).
        """
        ...


def rank_predictions(labels: tuple[str, ...] | list[str], scores: NDArray[np.float32]) -> list[Prediction]:
    """Pair labels with scores and sort descending, keeping native order on ties."""
    predictions = [Prediction(label=label, probability=float(score)) for label, score in zip(labels, scores, strict=True)]
    # sorted() is stable, so equal probabilities keep label order.
    return sorted(predictions, key=lambda p: p.probability, reverse=True)


def _softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = np.exp(logits - np.max(logits))
    return shifted / shifted.sum()


def _sigmoid(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    return 1.0 / (1.0 + np.exp(-logits))


class OnnxImageClassifier:
    """Runs a loaded ONNX content classifier on RGB images."""

    def __init__(self, session: InferenceSession, spec: ModelSpec, resize_policy: ResizePolicy = "scale") -> None:
        self._session = session
        self._spec = spec
        self._resize_policy: ResizePolicy = resize_policy
        self._input_name: str = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def labels(self) -> tuple[str, ...]:
        return self._spec.labels

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        resized = resize_image(image, self._spec.input_size, self._resize_policy)
        batch = to_model_input(resized, self._spec.mean, self._spec.std, self._spec.layout)
        outputs = self._session.run(None, {self._input_name: batch})
        raw = np.asarray(outputs[0], dtype=np.float32).reshape(-1)

        if raw.shape[0] != len(self._spec.labels):
            raise ValueError(f"Model {self._spec.name} returned {raw.shape[0]} scores for {len(self._spec.labels)} labels")

        if self._spec.activation == "softmax":
            scores = _softmax(raw)
        elif self._spec.activation == "sigmoid":
            scores = _sigmoid(raw)
        else:
            scores = raw
        return rank_predictions(self._spec.labels, np.clip(scores, 0.0, 1.0))
