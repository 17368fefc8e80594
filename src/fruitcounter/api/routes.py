"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse, PlainTextResponse

from fruitcounter.api.middleware import limit_upload_size, verify_api_key
from fruitcounter.api.schemas import (
    CountResponse,
    ErrorResponse,
    HealthResponse,
    LabelsResponse,
    ModelInfoResponse,
    TallyEntry,
)
from fruitcounter.ml.errors import DecodeError, FruitCounterError

if TYPE_CHECKING:
    from collections.abc import Callable

    from fruitcounter.config import Settings
    from fruitcounter.ml.inference import InferencePool
    from fruitcounter.ml.model_manager import ModelManager
    from fruitcounter.ml.pipeline import RecognitionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_CAPTURE_ERRORS = {
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _get_pipeline(request: Request) -> RecognitionPipeline:
    pipeline: RecognitionPipeline = request.app.state.pipeline
    return pipeline


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def _run_capture(request: Request, file: UploadFile, func: Callable[[bytes], object]) -> object:
    """Read the upload and run one pipeline pass in the pool.

    Returns the pass result, or a JSONResponse describing why it was aborted.
    """
    settings = _get_settings(request)
    image_bytes = await file.read()
    if len(image_bytes) > settings.max_file_size:
        return _error(413, f"Upload exceeds {settings.max_file_size} bytes")

    try:
        return await _get_inference_pool(request).run(func, image_bytes)
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Busy processing another capture, try again")
    except DecodeError as exc:
        logger.warning("Rejected %s: %s", file.filename, exc)
        return _error(422, str(exc))
    except FruitCounterError as exc:
        logger.error("Pass failed for %s: %s", file.filename, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@router.post(
    "/count",
    response_model=CountResponse,
    responses=_CAPTURE_ERRORS,
    dependencies=[Depends(limit_upload_size)],
    summary="Recognize an image and count the best label",
)
async def count(request: Request, file: UploadFile) -> CountResponse | JSONResponse:
    """Run the configured post-processing and return the best label with its tally."""
    pipeline = _get_pipeline(request)
    result = await _run_capture(request, file, pipeline.count)
    if isinstance(result, JSONResponse):
        return result

    return CountResponse(
        label=result.label,
        count=result.count,
        index=result.index,
        score=result.score,
        tally=[TallyEntry(label=label, count=n) for label, n in result.tally.items()],
        text=result.render(),
    )


@router.post(
    "/scores",
    response_model=None,
    response_class=PlainTextResponse,
    responses=_CAPTURE_ERRORS,
    dependencies=[Depends(limit_upload_size)],
    summary="Dump every per-class score for an image",
)
async def scores(request: Request, file: UploadFile) -> PlainTextResponse | JSONResponse:
    """Return the raw model output, one block of scores per class."""
    pipeline = _get_pipeline(request)
    result = await _run_capture(request, file, pipeline.scores)
    if isinstance(result, JSONResponse):
        return result
    return PlainTextResponse(result)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        model_loaded=_get_model_manager(request).is_loaded,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/model",
    response_model=ModelInfoResponse,
    summary="Describe the loaded model",
)
async def model_info(request: Request) -> ModelInfoResponse:
    """Return the model's shapes and post-processing configuration."""
    manager = _get_model_manager(request)
    pipeline = _get_pipeline(request)
    engine = manager.get_engine()
    config = pipeline.config
    return ModelInfoResponse(
        name=manager.model_name,
        input_size=config.input_size,
        input_shape=list(engine.input_shape),
        output_shape=list(engine.output_shape),
        postprocess=config.postprocess,
        confidence_threshold=config.threshold if config.postprocess == "tally" else None,
        num_classes=config.num_classes,
        num_labels=len(pipeline.labels),
    )


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List class labels",
)
async def labels(request: Request) -> LabelsResponse:
    """Return the label table in class index order."""
    return LabelsResponse(labels=list(_get_pipeline(request).labels.labels))
