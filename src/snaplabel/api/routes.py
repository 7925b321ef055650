"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from snaplabel.api.deps import (
    get_inference_pool,
    get_model_manager,
    get_pipeline,
    get_selection,
    get_settings_dep,
    read_upload_limited,
    verify_api_key,
)
from snaplabel.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    SelectionAccepted,
    SelectionState,
)
from snaplabel.errors import ErrorKind, UploadTooLargeError
from snaplabel.ml.model_manager import MODEL_REGISTRY
from snaplabel.ml.outcome import Failure, Success, format_outcome

if TYPE_CHECKING:
    from snaplabel.ml.image_classifier import ClassificationResult

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.CONVERSION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MODEL_LOAD_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INFERENCE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.EMPTY_RESULT_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
}

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _tags(result: ClassificationResult) -> list[ImageTag]:
    return [ImageTag(label=p.label, confidence=min(max(p.confidence, 0.0), 1.0)) for p in result.predictions]


def _error_response(failure: Failure, status_code: int | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code or _ERROR_STATUS[failure.kind],
        content={"detail": failure.message, "kind": failure.kind.value},
    )


async def _read_image(request: Request, file: UploadFile) -> bytes | JSONResponse:
    settings = get_settings_dep(request)
    try:
        return await read_upload_limited(file, settings.max_file_size)
    except UploadTooLargeError as exc:
        return _error_response(Failure.from_error(exc), status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_ERROR_RESPONSES,
    summary="Classify an image",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return the top label with all ranked tags."""
    data = await _read_image(request, file)
    if isinstance(data, JSONResponse):
        return data

    outcome = await get_pipeline(request).classify(data)
    if isinstance(outcome, Failure):
        return _error_response(outcome)

    top = outcome.top
    return ClassifyImageResponse(
        label=top.label,
        confidence=min(max(top.confidence, 0.0), 1.0),
        display=format_outcome(outcome),
        tags=_tags(outcome.result),
    )


@router.post(
    "/selection",
    response_model=SelectionAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    responses={status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse}},
    summary="Select an image for display",
)
async def select_image(request: Request, file: UploadFile) -> SelectionAccepted | JSONResponse:
    """Make the uploaded image the current selection and classify it in the background."""
    data = await _read_image(request, file)
    if isinstance(data, JSONResponse):
        return data

    sequence = get_selection(request).select(data)
    return SelectionAccepted(sequence=sequence)


@router.get(
    "/selection",
    response_model=SelectionState,
    summary="Current classification display",
)
async def current_selection(request: Request) -> SelectionState:
    """Return what the display shows for the latest selection."""
    state = get_selection(request).state
    outcome = state.outcome
    return SelectionState(
        sequence=state.sequence,
        status=state.status.value,
        message=state.message,
        kind=outcome.kind.value if isinstance(outcome, Failure) else None,
        tags=_tags(outcome.result) if isinstance(outcome, Success) else [],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_dep(request)
    stats = get_inference_pool(request).stats()
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=get_model_manager(request).get_loaded_models(),
        concurrent_requests=stats.active,
        queue_depth=stats.queued,
        classifications_completed=stats.completed,
        classifications_failed=stats.failed,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registry models, marking the configured one as active."""
    settings = get_settings_dep(request)
    models = [
        ModelInfo(
            name=spec.name,
            status="active" if spec.name == settings.model else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
