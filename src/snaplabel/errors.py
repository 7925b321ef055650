"""Classification error taxonomy.

Every failure of a single classification request is one of four kinds. The
pipeline turns these exceptions into ``Failure`` outcomes; none of them is
fatal to the process.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    CONVERSION_ERROR = "conversion_error"
    MODEL_LOAD_ERROR = "model_load_error"
    INFERENCE_ERROR = "inference_error"
    EMPTY_RESULT_ERROR = "empty_result_error"


class ClassificationError(Exception):
    """Base class for errors that terminate one classification request."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message or self.kind.value

    def __str__(self) -> str:
        return self.message


class ImageConversionError(ClassificationError):
    kind = ErrorKind.CONVERSION_ERROR


class ModelLoadError(ClassificationError):
    kind = ErrorKind.MODEL_LOAD_ERROR


class InferenceError(ClassificationError):
    kind = ErrorKind.INFERENCE_ERROR


class EmptyResultError(ClassificationError):
    kind = ErrorKind.EMPTY_RESULT_ERROR


class UploadTooLargeError(ImageConversionError):
    """The uploaded file is larger than the configured limit."""
