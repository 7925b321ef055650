"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snaplabel.api.routes import router
from snaplabel.config import Settings, get_settings
from snaplabel.ml.image_classifier import OnnxImageClassifier
from snaplabel.ml.inference import InferencePool
from snaplabel.ml.model_manager import OnnxModelManager, get_spec
from snaplabel.ml.pipeline import ClassificationPipeline
from snaplabel.ml.preprocessing import ImagePreprocessor
from snaplabel.selection import SelectionSession

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Wire settings, model manager, inference pool, pipeline, and selection onto app state."""
    spec = get_spec(settings.model)
    model_manager = OnnxModelManager(settings)
    inference_pool = InferencePool(settings.max_concurrent)
    pipeline = ClassificationPipeline(
        preprocessor=ImagePreprocessor(spec.input, settings.max_image_pixels),
        classifier_factory=partial(OnnxImageClassifier.load, model_manager, spec, settings.top_k),
        pool=inference_pool,
    )

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.pipeline = pipeline
    app.state.selection = SelectionSession(pipeline)


def shutdown_state(app: FastAPI) -> None:
    """Release the inference pool and cached model sessions."""
    app.state.pipeline.shutdown()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting SnapLabel (device=%s, model=%s, max_concurrent=%s, allow_download=%s)",
        settings.device,
        settings.model,
        settings.max_concurrent,
        settings.allow_download,
    )

    init_state(app, settings)

    logger.info("SnapLabel ready; the model loads on the first classification")
    yield

    logger.info("Shutting down SnapLabel")
    shutdown_state(app)
    logger.info("SnapLabel shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="SnapLabel",
        description="Pick or capture a photo and classify it with a bundled image-classification model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
