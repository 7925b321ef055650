"""Shared fakes and fixtures for classification tests."""

from __future__ import annotations

import io
import threading
from typing import TYPE_CHECKING, Any

import pytest
from PIL import Image

from snaplabel.errors import InferenceError
from snaplabel.ml.image_classifier import Prediction
from snaplabel.ml.inference import InferencePool
from snaplabel.ml.model_manager import InputSpec
from snaplabel.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from collections.abc import Iterator


def make_image_bytes(
    size: tuple[int, int] = (64, 48), color: tuple[int, int, int] = (200, 30, 30), fmt: str = "PNG"
) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeClassifier:
    """Returns fixed predictions, or raises, and records every call."""

    model_name = "fake"

    def __init__(self, predictions: list[Prediction] | None = None, error: Exception | None = None) -> None:
        self.predictions = predictions if predictions is not None else []
        self.error = error
        self.calls = 0

    def classify(self, tensor: Any) -> list[Prediction]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.predictions)


class KeyedClassifier:
    """Answers per input key; a key with a gate blocks until the gate is set."""

    model_name = "keyed"

    def __init__(self, answers: dict[str, list[Prediction]], gates: dict[str, threading.Event] | None = None) -> None:
        self.answers = answers
        self.gates = gates or {}

    def classify(self, tensor: Any) -> list[Prediction]:
        gate = self.gates.get(tensor)
        if gate is not None and not gate.wait(timeout=5):
            raise InferenceError(f"gate for {tensor!r} never opened")
        return list(self.answers[tensor])


class PassthroughPreprocessor:
    """Hands the image straight to the classifier."""

    def prepare(self, image: Any) -> Any:
        return image


CAT_DOG = [Prediction("dog", 0.05), Prediction("cat", 0.92)]


@pytest.fixture()
def pool() -> Iterator[InferencePool]:
    inference_pool = InferencePool(max_concurrent=2)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def preprocessor() -> ImagePreprocessor:
    return ImagePreprocessor(InputSpec(size=32), max_image_pixels=1_000_000)
