"""Request dependencies: app-state accessors and API key authentication."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from snaplabel.errors import UploadTooLargeError

if TYPE_CHECKING:
    from snaplabel.config import Settings
    from snaplabel.ml.inference import InferencePool
    from snaplabel.ml.model_manager import ModelManager
    from snaplabel.ml.pipeline import ClassificationPipeline
    from snaplabel.selection import SelectionSession

_bearer_scheme = HTTPBearer(auto_error=False)

UPLOAD_CHUNK_SIZE = 64 * 1024


def get_settings_dep(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_pipeline(request: Request) -> ClassificationPipeline:
    pipeline: ClassificationPipeline = request.app.state.pipeline
    return pipeline


def get_selection(request: Request) -> SelectionSession:
    selection: SelectionSession = request.app.state.selection
    return selection


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (SNAPLABEL_API_KEY not set), all requests pass.
    If configured, requests must include 'Authorization: Bearer <key>'.
    """
    settings = get_settings_dep(request)
    if settings.api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def read_upload_limited(upload: UploadFile, max_bytes: int) -> bytes:
    """Read an upload in chunks, stopping once it exceeds ``max_bytes``.

    Raises:
        UploadTooLargeError: If the upload is larger than ``max_bytes``.
    """
    buf = bytearray()
    while True:
        chunk = await upload.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise UploadTooLargeError(f"Upload exceeds the {max_bytes} byte limit")
    return bytes(buf)
