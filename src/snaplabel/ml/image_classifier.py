"""Image classification: the classifier contract and its ONNX Runtime implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from snaplabel.errors import InferenceError, ModelLoadError

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from snaplabel.ml.model_manager import ModelManager, ModelSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prediction:
    """A single classification prediction."""

    label: str
    confidence: float


@dataclass(frozen=True)
class ClassificationResult:
    """Predictions for one image, ordered by descending confidence."""

    predictions: tuple[Prediction, ...]

    @property
    def top(self) -> Prediction:
        return self.predictions[0]

    def __len__(self) -> int:
        return len(self.predictions)


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, tensor: NDArray[np.float32]) -> list[Prediction]:
        """Classify a preprocessed image and return ranked predictions.

        Args:
            tensor: 1x3xSxS float32 array from ``ImagePreprocessor.prepare``.

        Returns:
            List of predictions sorted by confidence (descending).
        """
        ...


class OnnxImageClassifier:
    """Runs a single-output ONNX classifier and ranks its scores."""

    def __init__(self, session: InferenceSession, spec: ModelSpec, labels: list[str], top_k: int) -> None:
        self._session = session
        self._spec = spec
        self._labels = labels
        self._top_k = top_k
        self._input_name = session.get_inputs()[0].name

    @classmethod
    def load(cls, manager: ModelManager, spec: ModelSpec, top_k: int) -> OnnxImageClassifier:
        """Build a classifier from the model manager.

        Raises:
            ModelLoadError: If the model or its labels cannot be loaded.
        """
        try:
            session = manager.get_session(spec.name)
            labels = manager.load_labels(spec.name)
        except Exception as exc:  # noqa: BLE001
            raise ModelLoadError(f"Failed to load model {spec.name}: {exc}") from exc
        if not labels:
            raise ModelLoadError(f"Model {spec.name} has an empty labels file")
        logger.info("Classifier ready: %s (%d labels, top_k=%d)", spec.name, len(labels), top_k)
        return cls(session, spec, labels, top_k)

    @property
    def model_name(self) -> str:
        return self._spec.name

    def classify(self, tensor: NDArray[np.float32]) -> list[Prediction]:
        try:
            outputs = self._session.run(None, {self._input_name: tensor})
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(f"Inference failed: {exc}") from exc

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.size == 0:
            return []
        if scores.size != len(self._labels):
            raise InferenceError(f"Model produced {scores.size} scores for {len(self._labels)} labels")

        if self._spec.apply_softmax:
            scores = softmax(scores)

        k = min(self._top_k, scores.size)
        indices = np.argsort(scores)[::-1][:k]
        return [Prediction(label=self._labels[int(i)], confidence=float(scores[i])) for i in indices]


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    """Numerically stable softmax over a 1-D score vector."""
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)
