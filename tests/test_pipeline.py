"""Tests for the recognition pipeline."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import FakeEngine
from fruitcounter.config import Settings
from fruitcounter.ml.errors import DecodeError, InferenceError, ShapeError
from fruitcounter.ml.labels import UNKNOWN_LABEL, LabelTable
from fruitcounter.ml.pipeline import PipelineConfig, RecognitionPipeline

LABELS = LabelTable(("apple", "banana", "cherry"))


def _tally_output() -> np.ndarray:
    return np.array([[[0.1, 0.2], [0.9, 0.3], [0.4, 0.4]]], dtype=np.float32)


def _tally_pipeline(output: np.ndarray | None = None) -> tuple[RecognitionPipeline, FakeEngine]:
    engine = FakeEngine((1, 8, 8, 3), _tally_output() if output is None else output)
    config = PipelineConfig(input_size=8, num_classes=3, num_anchors=2, threshold=0.5, postprocess="tally")
    return RecognitionPipeline(config, engine, LABELS), engine


class TestPipelineConfig:
    def test_from_settings_tally(self) -> None:
        settings = Settings(input_size=320, num_classes=5, num_anchors=10, confidence_threshold=0.3)
        config = PipelineConfig.from_settings(settings)
        assert config.input_size == 320
        assert config.output_size == 50
        assert config.threshold == 0.3
        assert config.postprocess == "tally"

    def test_from_settings_argmax_ignores_anchors(self) -> None:
        settings = Settings(postprocess="argmax", num_classes=5, num_anchors=10)
        config = PipelineConfig.from_settings(settings)
        assert config.num_anchors == 1
        assert config.output_size == 5

    def test_argmax_config_drops_anchor_axis(self) -> None:
        config = PipelineConfig(input_size=4, num_classes=3, num_anchors=5, postprocess="argmax")
        assert config.num_anchors == 1
        assert config.output_size == 3

    def test_default_settings_match_bundled_model(self) -> None:
        config = PipelineConfig.from_settings(Settings())
        assert config.input_size == 640
        assert config.output_size == 67 * 8400


class TestRecognitionPipeline:
    def test_count(self, png_bytes: bytes) -> None:
        pipeline, engine = _tally_pipeline()
        result = pipeline.count(png_bytes)
        assert result.label == "banana"
        assert result.count == 1
        assert len(engine.calls) == 1
        assert engine.calls[0].shape == (8 * 8 * 3,)

    def test_count_nothing_recognized(self, png_bytes: bytes) -> None:
        pipeline, _ = _tally_pipeline(np.zeros((1, 3, 2), dtype=np.float32))
        result = pipeline.count(png_bytes)
        assert result.label == UNKNOWN_LABEL
        assert result.count == 0

    def test_argmax(self, png_bytes: bytes) -> None:
        engine = FakeEngine((1, 4, 4, 3), np.array([[0.2, 0.1, 0.7]], dtype=np.float32))
        config = PipelineConfig(input_size=4, num_classes=3, postprocess="argmax")
        result = RecognitionPipeline(config, engine, LABELS).count(png_bytes)
        assert result.label == "cherry"
        assert result.count == 1

    def test_argmax_scores_ignore_configured_anchors(self, png_bytes: bytes) -> None:
        engine = FakeEngine((1, 4, 4, 3), np.array([[0.2, 0.1, 0.7]], dtype=np.float32))
        config = PipelineConfig(input_size=4, num_classes=3, num_anchors=5, postprocess="argmax")
        dump = RecognitionPipeline(config, engine, LABELS).scores(png_bytes)
        assert dump == "Class 0:\n0.20 \n\nClass 1:\n0.10 \n\nClass 2:\n0.70 \n\n"

    def test_scores(self, png_bytes: bytes) -> None:
        pipeline, _ = _tally_pipeline()
        dump = pipeline.scores(png_bytes)
        assert dump.startswith("Class 0:\n0.10 0.20 \n\n")
        assert "Class 2:\n0.40 0.40 \n\n" in dump

    def test_decode_error_aborts_before_inference(self) -> None:
        pipeline, engine = _tally_pipeline()
        with pytest.raises(DecodeError):
            pipeline.count(b"not an image")
        assert engine.calls == []

    def test_inference_error_propagates(self, png_bytes: bytes) -> None:
        pipeline, engine = _tally_pipeline()

        def _fail(tensor: np.ndarray) -> np.ndarray:
            raise InferenceError("boom")

        engine.invoke = _fail  # type: ignore[method-assign]
        with pytest.raises(InferenceError, match="boom"):
            pipeline.count(png_bytes)

    def test_output_shape_mismatch_rejected_at_construction(self) -> None:
        engine = FakeEngine((1, 8, 8, 3), np.zeros((1, 4, 2), dtype=np.float32))
        config = PipelineConfig(input_size=8, num_classes=3, num_anchors=2)
        with pytest.raises(ShapeError, match="output shape"):
            RecognitionPipeline(config, engine, LABELS)

    def test_input_shape_mismatch_rejected_at_construction(self) -> None:
        engine = FakeEngine((1, 16, 16, 3), _tally_output())
        config = PipelineConfig(input_size=8, num_classes=3, num_anchors=2)
        with pytest.raises(ShapeError, match="input shape"):
            RecognitionPipeline(config, engine, LABELS)

    def test_short_output_at_runtime_rejected(self, png_bytes: bytes) -> None:
        engine = FakeEngine((1, 8, 8, 3), np.zeros(5, dtype=np.float32), output_shape=(1, 3, 2))
        config = PipelineConfig(input_size=8, num_classes=3, num_anchors=2)
        pipeline = RecognitionPipeline(config, engine, LABELS)
        with pytest.raises(ShapeError, match="returned 5 values"):
            pipeline.count(png_bytes)

    def test_passes_are_independent(self, png_bytes: bytes) -> None:
        pipeline, _ = _tally_pipeline()
        first = pipeline.count(png_bytes)
        second = pipeline.count(png_bytes)
        assert first == second
        assert first.tally is not second.tally
