"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from safelens.api.middleware import verify_api_key
from safelens.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    PredictionOut,
)
from safelens.errors import ClassifierBusyError, DecodeError, InvalidStateError, MalformedGridError
from safelens.ml.model_manager import MODEL_REGISTRY
from safelens.pipeline import ClassificationPipeline, PipelineStatus

if TYPE_CHECKING:
    from safelens.config import Settings
    from safelens.ml.inference import InferencePool
    from safelens.ml.session import ClassifierSession


router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_session(request: Request) -> ClassifierSession:
    session: ClassifierSession = request.app.state.classifier
    return session


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image into content categories",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return ranked content categories."""
    settings = _get_settings(request)
    session = _get_session(request)

    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        return _error(status.HTTP_413_CONTENT_TOO_LARGE, f"File exceeds {settings.max_file_size} bytes")

    pipeline = ClassificationPipeline(session, max_pixels=settings.max_image_pixels)
    result = await pipeline.run_bytes(data)

    if result.status is PipelineStatus.FAILED:
        if isinstance(result.error, InvalidStateError | ClassifierBusyError):
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, result.message)
        if isinstance(result.error, DecodeError | MalformedGridError):
            return _error(status.HTTP_422_UNPROCESSABLE_CONTENT, result.message)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, result.message)

    return ClassifyImageResponse(
        status=result.status.value,
        message=result.message,
        predictions=[PredictionOut(label=p.label, probability=p.probability) for p in result.predictions],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health and classifier state."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    session = _get_session(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        classifier=session.state.value,
        model=session.model_name,
        error=session.error,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered models and which one is configured."""
    settings = _get_settings(request)
    models = [
        ModelInfo(
            name=spec.name,
            labels=list(spec.labels),
            input_size=spec.input_size,
            status="active" if spec.name == settings.model_name else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
