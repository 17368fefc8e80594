"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fruitcounter.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fruitcounter.api.routes import router
from fruitcounter.config import get_settings
from fruitcounter.ml.inference import InferencePool
from fruitcounter.ml.labels import LabelTable, load_label_table
from fruitcounter.ml.model_manager import ModelManager
from fruitcounter.ml.pipeline import PipelineConfig, RecognitionPipeline

logger = logging.getLogger(__name__)


def load_labels(settings: Settings) -> LabelTable:
    """Load the configured label resource, or number the classes."""
    if settings.labels_path is None:
        logger.warning("FRUITCOUNTER_LABELS_PATH not set, using numbered class labels")
        return LabelTable.numbered(settings.num_classes)
    return load_label_table(settings.labels_path)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the model on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FruitCounter (model=%s, input=%d, postprocess=%s, threshold=%.2f)",
        settings.model_path,
        settings.input_size,
        settings.postprocess,
        settings.confidence_threshold,
    )

    model_manager = ModelManager(settings)
    app.state.model_manager = model_manager
    app.state.pipeline = RecognitionPipeline(
        PipelineConfig.from_settings(settings),
        model_manager.get_engine(),
        load_labels(settings),
    )
    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("FruitCounter ready")
    yield

    logger.info("Shutting down FruitCounter")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FruitCounter shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FruitCounter",
        description="Photo recognition API: resize, run a TFLite model, and count recognized labels",
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


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("fruitcounter.main:app", host=settings.host, port=settings.port)
