"""Pydantic response schemas for the SafeLens API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PredictionOut(BaseModel):
    """A single category with its probability."""

    label: str
    probability: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for the image classification endpoint."""

    status: str = Field(description="Always 'succeeded'; failed requests return an ErrorResponse")
    message: str
    predictions: list[PredictionOut]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    classifier: str = Field(description="Classifier state: 'uninitialized', 'loading', 'ready', or 'failed'")
    model: str | None = None
    error: str | None = None
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about a registered model."""

    name: str
    labels: list[str]
    input_size: int
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
