"""Model manager: locate, download, load, and hold the model engine.

The model asset is loaded once and held for the application's lifetime.
When the configured file is missing locally and a HuggingFace repository
is configured, the file is fetched from the hub first.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download

from fruitcounter.ml.engines import open_engine

if TYPE_CHECKING:
    from fruitcounter.config import Settings
    from fruitcounter.ml.engines import InferenceEngine

logger = logging.getLogger(__name__)


class ModelManager:
    """Downloads, loads, and caches the inference engine."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._model_path = Path(settings.model_path)
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._engine: InferenceEngine | None = None
        self._resolved_path: Path | None = None

    # -- Public API ---------------------------------------------------------

    @property
    def model_name(self) -> str:
        return self._model_path.name

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._engine is not None

    def ensure_downloaded(self) -> Path:
        """Return the local model path, downloading it from HuggingFace if needed.

        Raises:
            FileNotFoundError: If the file is missing and no repository is configured.
        """
        if self._resolved_path is not None and self._resolved_path.exists():
            return self._resolved_path

        if self._model_path.exists():
            self._resolved_path = self._model_path
            return self._model_path

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise FileNotFoundError(
                f"Model file {self._model_path} not found and FRUITCOUNTER_MODEL_REPO_ID is not set"
            )

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=self._model_path.name,
                local_dir=str(self._models_dir),
            )
        )
        self._resolved_path = downloaded
        logger.info("Downloaded %s from %s to %s", self.model_name, repo_id, downloaded)
        return downloaded

    def get_engine(self) -> InferenceEngine:
        """Return the cached engine, loading the model on first use."""
        with self._lock:
            if self._engine is not None:
                return self._engine

        model_path = self.ensure_downloaded()
        engine = open_engine(model_path, self._settings)

        with self._lock:
            # Another thread may have loaded it while we were opening ours.
            if self._engine is not None:
                engine.close()
                return self._engine
            self._engine = engine
            logger.info("Loaded engine for %s", self.model_name)
            return engine

    def shutdown(self) -> None:
        """Release the engine."""
        with self._lock:
            if self._engine is not None:
                self._engine.close()
                self._engine = None
            logger.info("Model engine released")
