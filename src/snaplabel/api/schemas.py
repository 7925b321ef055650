"""Pydantic request/response schemas for the SnapLabel API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for the one-shot classification endpoint."""

    label: str = Field(description="Top label")
    confidence: float = Field(ge=0.0, le=1.0, description="Top confidence (0.0-1.0)")
    display: str = Field(description="Top label and whole-percent confidence, e.g. 'cat (92%)'")
    tags: list[ImageTag] = Field(description="All ranked predictions, highest confidence first")


class SelectionAccepted(BaseModel):
    """Response when an image becomes the current selection."""

    sequence: int


class SelectionState(BaseModel):
    """The current display for the latest selection."""

    sequence: int
    status: str = Field(description="'idle', 'pending', 'ready', or 'failed'")
    message: str
    kind: str | None = Field(default=None, description="Error kind when status is 'failed'")
    tags: list[ImageTag] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    classifications_completed: int = 0
    classifications_failed: int = 0


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = "image_classification"
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    kind: str | None = None
