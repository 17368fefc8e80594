"""Environment-based configuration for FruitCounter."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FRUITCOUNTER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FRUITCOUNTER_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Model asset (.tflite or .onnx)
    model_path: str = "models/new_set.tflite"
    model_repo_id: str | None = None
    models_dir: str = "models"

    # Label resource (None = numbered placeholder labels)
    labels_path: str | None = None

    # Pipeline shape
    input_size: int = Field(default=640, ge=1)
    num_classes: int = Field(default=67, ge=1)
    num_anchors: int = Field(default=8400, ge=1)
    postprocess: Literal["argmax", "tally"] = "tally"
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Runtime
    device: Literal["cpu", "cuda"] = "cpu"
    num_threads: int = Field(default=0, ge=0)

    # Concurrency: one capture at a time by default
    max_concurrent: int = Field(default=1, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=50_000_000, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
