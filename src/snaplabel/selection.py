"""The user-visible "current result" slot.

Each selected image gets a sequence number. An outcome is applied only if its
sequence number is still the current one, so a slow classification of an
earlier image never overwrites the result for a newer one. Stale computations
are left to finish and their outcomes are dropped.

All methods must be called on the event loop that owns the session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from snaplabel.ml.outcome import ClassificationOutcome, Success, format_outcome

if TYPE_CHECKING:
    from snaplabel.ml.pipeline import ClassificationPipeline
    from snaplabel.ml.preprocessing import ImageInput

logger = logging.getLogger(__name__)

IDLE_MESSAGE = "Select an image to classify"
PENDING_MESSAGE = "Classifying..."


class DisplayStatus(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class DisplayState:
    """What the presentation layer currently shows."""

    sequence: int
    status: DisplayStatus
    message: str
    outcome: ClassificationOutcome | None = None


class SelectionSession:
    """Tracks the current image selection and applies only its outcome."""

    def __init__(self, pipeline: ClassificationPipeline) -> None:
        self._pipeline = pipeline
        self._sequence = 0
        self._state = DisplayState(sequence=0, status=DisplayStatus.IDLE, message=IDLE_MESSAGE)
        self._task: asyncio.Task[ClassificationOutcome] | None = None
        # Every in-flight task, stale ones included, until it finishes.
        self._in_flight: set[asyncio.Task[ClassificationOutcome]] = set()

    @property
    def state(self) -> DisplayState:
        return self._state

    @property
    def sequence(self) -> int:
        return self._sequence

    def select(self, image: ImageInput) -> int:
        """Make ``image`` the current selection and start classifying it."""
        self._sequence += 1
        sequence = self._sequence
        self._state = DisplayState(sequence=sequence, status=DisplayStatus.PENDING, message=PENDING_MESSAGE)
        task = self._pipeline.submit(image, lambda outcome: self._deliver(sequence, outcome))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        self._task = task
        return sequence

    @property
    def in_flight(self) -> int:
        """Number of classifications still running, current and stale."""
        return len(self._in_flight)

    async def wait(self) -> DisplayState:
        """Wait for the current selection's classification, then return the display."""
        while self._task is not None and not self._task.done():
            task = self._task
            await asyncio.shield(task)
            # A newer selection may have replaced the task while we waited.
            if task is self._task:
                break
        return self._state

    def _deliver(self, sequence: int, outcome: ClassificationOutcome) -> bool:
        if sequence != self._sequence:
            logger.debug("Discarding stale outcome for selection %d (current is %d)", sequence, self._sequence)
            return False
        status = DisplayStatus.READY if isinstance(outcome, Success) else DisplayStatus.FAILED
        self._state = DisplayState(
            sequence=sequence,
            status=status,
            message=format_outcome(outcome),
            outcome=outcome,
        )
        return True
