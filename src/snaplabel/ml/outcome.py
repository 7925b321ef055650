"""Classification outcomes: exactly one per request, success or failure."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from snaplabel.errors import ClassificationError, ErrorKind
    from snaplabel.ml.image_classifier import ClassificationResult, Prediction


@dataclass(frozen=True)
class Success:
    result: ClassificationResult

    @property
    def top(self) -> Prediction:
        return self.result.top


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @classmethod
    def from_error(cls, error: ClassificationError) -> Failure:
        return cls(kind=error.kind, message=error.message)


ClassificationOutcome = Union[Success, Failure]


def confidence_percent(confidence: float) -> int:
    """Confidence in [0, 1] as a whole percentage."""
    return round(confidence * 100)


def format_outcome(outcome: ClassificationOutcome) -> str:
    """Render an outcome as the single line shown to the user."""
    if isinstance(outcome, Success):
        top = outcome.top
        return f"{top.label} ({confidence_percent(top.confidence)}%)"
    return f"Error: {outcome.message}"
