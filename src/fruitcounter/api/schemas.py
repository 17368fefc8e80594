"""Pydantic response schemas for the FruitCounter API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class TallyEntry(BaseModel):
    """How many classes qualified under one label."""

    label: str
    count: int = Field(ge=0)


class CountResponse(BaseModel):
    """Result of one recognition pass."""

    label: str = Field(description="Best label, or 'Unknown' when nothing was recognized")
    count: int = Field(ge=0, description="Tally for the best label (1 for single-label models)")
    index: int | None = Field(default=None, description="Lowest class index carrying the best label")
    score: float | None = Field(default=None, description="Highest score among the best label's classes")
    tally: list[TallyEntry]
    text: str = Field(description="Display string, e.g. 'apple: 2'")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfoResponse(BaseModel):
    """Configuration of the loaded model and pipeline."""

    name: str
    input_size: int
    input_shape: list[int]
    output_shape: list[int]
    postprocess: str = Field(description="Post-processing variant: 'argmax' or 'tally'")
    confidence_threshold: float | None = Field(description="Only set for the 'tally' variant")
    num_classes: int
    num_labels: int


class LabelsResponse(BaseModel):
    """The label table, in class index order."""

    labels: list[str]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
