"""The recognition pipeline: decode, preprocess, invoke, post-process.

One pipeline instance is configured by the target tensor dimension, the
output tensor shape, the label table, and the post-processing variant.
Each call is synchronous and independent of every other call.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fruitcounter.ml.engines import output_size
from fruitcounter.ml.errors import DimensionError, ShapeError
from fruitcounter.ml.postprocessing import build_postprocessor, format_score_dump
from fruitcounter.ml.preprocessing import preprocess

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from fruitcounter.config import Settings
    from fruitcounter.ml.engines import InferenceEngine
    from fruitcounter.ml.labels import LabelTable
    from fruitcounter.ml.postprocessing import CountResult, PostprocessKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """Shape and post-processing parameters for one model."""

    input_size: int
    num_classes: int
    num_anchors: int = 1
    threshold: float = 0.5
    postprocess: PostprocessKind = "tally"
    max_image_pixels: int | None = None

    def __post_init__(self) -> None:
        # Single-label outputs have no anchor axis.
        if self.postprocess == "argmax":
            object.__setattr__(self, "num_anchors", 1)

    @property
    def output_size(self) -> int:
        return self.num_classes * self.num_anchors

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            input_size=settings.input_size,
            num_classes=settings.num_classes,
            num_anchors=settings.num_anchors,
            threshold=settings.confidence_threshold,
            postprocess=settings.postprocess,
            max_image_pixels=settings.max_image_pixels,
        )


class RecognitionPipeline:
    """Turns uploaded image bytes into a recognition result."""

    def __init__(self, config: PipelineConfig, engine: InferenceEngine, labels: LabelTable) -> None:
        if config.input_size <= 0:
            raise DimensionError(f"input_size must be a positive integer, got {config.input_size}")

        expected_input = config.input_size * config.input_size * 3
        if output_size(engine) != config.output_size:
            raise ShapeError(
                f"Model output shape {list(engine.output_shape)} does not hold "
                f"{config.output_size} values ({config.postprocess} with "
                f"{config.num_classes} classes)"
            )
        if math.prod(engine.input_shape) != expected_input:
            raise ShapeError(
                f"Model input shape {list(engine.input_shape)} does not match "
                f"a {config.input_size}x{config.input_size} RGB image"
            )
        if len(labels) and len(labels) != config.num_classes:
            logger.warning(
                "Label table has %d entries but model declares %d classes; "
                "missing indices resolve to the unknown label",
                len(labels),
                config.num_classes,
            )

        self._config = config
        self._engine = engine
        self._labels = labels
        self._postprocessor = build_postprocessor(
            config.postprocess,
            num_classes=config.num_classes,
            num_anchors=config.num_anchors,
            threshold=config.threshold,
        )

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def labels(self) -> LabelTable:
        return self._labels

    def count(self, image_bytes: bytes) -> CountResult:
        """Run one pass and summarize the output as a label and count."""
        output = self._infer(image_bytes)
        result = self._postprocessor.apply(output, self._labels)
        logger.debug("Recognized %s (count=%d)", result.label, result.count)
        return result

    def scores(self, image_bytes: bytes) -> str:
        """Run one pass and render every per-class score."""
        output = self._infer(image_bytes)
        return format_score_dump(output, self._config.num_classes, self._config.num_anchors)

    def _infer(self, image_bytes: bytes) -> NDArray[np.float32]:
        tensor = preprocess(
            image_bytes,
            self._config.input_size,
            max_pixels=self._config.max_image_pixels,
        )
        output = self._engine.invoke(tensor)
        if output.size != self._config.output_size:
            raise ShapeError(f"Model returned {output.size} values, expected {self._config.output_size}")
        return output
