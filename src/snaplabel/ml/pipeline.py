"""Classification pipeline: one image in, one outcome out.

Steps, all run on an inference worker thread:

1. convert the image to the model's input tensor (conversion errors stop here,
   before the classifier is touched);
2. create the classifier on first use, then reuse it;
3. run inference and rank the predictions.

The caller's event loop is never blocked, and every request yields exactly
one ``Success`` or ``Failure``. Errors outside the four classification kinds
are logged with their traceback and reported as inference errors, so a
``submit`` callback always fires.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from snaplabel.errors import ClassificationError, EmptyResultError, ErrorKind, ModelLoadError
from snaplabel.ml.image_classifier import ClassificationResult
from snaplabel.ml.outcome import ClassificationOutcome, Failure, Success

if TYPE_CHECKING:
    from collections.abc import Callable

    from snaplabel.ml.image_classifier import ImageClassifier
    from snaplabel.ml.inference import InferencePool
    from snaplabel.ml.preprocessing import ImageInput, ImagePreprocessor

logger = logging.getLogger(__name__)


class ClassificationPipeline:
    """Owns a lazily created classifier and runs requests on an inference pool."""

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        classifier_factory: Callable[[], ImageClassifier],
        pool: InferencePool,
    ) -> None:
        self._preprocessor = preprocessor
        self._classifier_factory = classifier_factory
        self._pool = pool
        self._classifier: ImageClassifier | None = None
        self._classifier_lock = threading.Lock()

    @property
    def classifier_loaded(self) -> bool:
        return self._classifier is not None

    async def classify(self, image: ImageInput) -> ClassificationOutcome:
        """Classify one image and return its outcome; never raises for a bad image or model."""
        try:
            result = await self._pool.run(self._classify_sync, image)
        except ClassificationError as exc:
            logger.warning("Classification failed (%s): %s", exc.kind, exc.message)
            return Failure.from_error(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error during classification")
            return Failure(kind=ErrorKind.INFERENCE_ERROR, message=f"Unexpected error: {exc!r}")
        return Success(result)

    def submit(
        self,
        image: ImageInput,
        on_result: Callable[[ClassificationOutcome], None],
    ) -> asyncio.Task[ClassificationOutcome]:
        """Start a classification and return immediately.

        ``on_result`` is called once, on the calling event loop, with the
        outcome. Must be called from a running event loop.
        """

        async def _run() -> ClassificationOutcome:
            outcome = await self.classify(image)
            on_result(outcome)
            return outcome

        return asyncio.get_running_loop().create_task(_run())

    def shutdown(self) -> None:
        """Drop the classifier; the next request creates a new one."""
        with self._classifier_lock:
            self._classifier = None

    # -- Internal -----------------------------------------------------------

    def _classify_sync(self, image: ImageInput) -> ClassificationResult:
        tensor = self._preprocessor.prepare(image)
        classifier = self._get_classifier()
        predictions = classifier.classify(tensor)
        if not predictions:
            raise EmptyResultError("Could not classify image: the model returned no results")
        ranked = sorted(predictions, key=lambda p: p.confidence, reverse=True)
        return ClassificationResult(predictions=tuple(ranked))

    def _get_classifier(self) -> ImageClassifier:
        classifier = self._classifier
        if classifier is not None:
            return classifier
        with self._classifier_lock:
            if self._classifier is None:
                try:
                    self._classifier = self._classifier_factory()
                except ClassificationError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    raise ModelLoadError(f"Failed to load model: {exc}") from exc
            return self._classifier
