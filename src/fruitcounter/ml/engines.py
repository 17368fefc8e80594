"""Inference engines: thin wrappers around the TFLite and ONNX runtimes.

Each engine is treated as a pure function ``invoke(InputTensor) -> OutputTensor``
with fixed input and output shapes declared by the model file.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from ai_edge_litert.interpreter import Interpreter
from onnxruntime import ExecutionMode, InferenceSession, SessionOptions

from fruitcounter.ml.errors import InferenceError, ShapeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from fruitcounter.config import Settings

logger = logging.getLogger(__name__)


class InferenceEngine(Protocol):
    """Protocol for a loaded model."""

    @property
    def input_shape(self) -> tuple[int, ...]:
        """Return the declared input tensor shape."""
        ...

    @property
    def output_shape(self) -> tuple[int, ...]:
        """Return the declared output tensor shape."""
        ...

    def invoke(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model on a flat input tensor and return the flat output.

        Raises:
            ShapeError: If the tensor does not fit the declared input shape.
            InferenceError: If the runtime fails.
        """
        ...

    def close(self) -> None:
        """Release runtime resources."""
        ...


def output_size(engine: InferenceEngine) -> int:
    """Number of values in the engine's output tensor."""
    return math.prod(engine.output_shape)


def _to_model_layout(tensor: NDArray[np.float32], shape: tuple[int, ...]) -> NDArray[np.float32]:
    """Reshape a flat HWC tensor into the model's declared input layout."""
    if tensor.size != math.prod(shape):
        raise ShapeError(f"Input tensor has {tensor.size} values, model expects shape {list(shape)}")
    tensor = tensor.astype(np.float32, copy=False)
    if len(shape) == 4 and shape[1] == 3 and shape[3] != 3:
        batch, channels, height, width = shape
        hwc = tensor.reshape(batch, height, width, channels)
        return np.ascontiguousarray(hwc.transpose(0, 3, 1, 2))
    return tensor.reshape(shape)


# ---------------------------------------------------------------------------
# TensorFlow Lite
# ---------------------------------------------------------------------------


class TFLiteEngine:
    """Runs a .tflite model with the LiteRT interpreter."""

    def __init__(self, model_path: str | Path, num_threads: int = 0) -> None:
        self._model_path = Path(model_path)
        self._interpreter = Interpreter(
            model_path=str(self._model_path),
            num_threads=num_threads or None,
        )
        self._interpreter.allocate_tensors()

        input_details = self._interpreter.get_input_details()[0]
        output_details = self._interpreter.get_output_details()[0]
        self._input_index: int = input_details["index"]
        self._output_index: int = output_details["index"]
        self._input_shape = tuple(int(d) for d in input_details["shape"])
        self._output_shape = tuple(int(d) for d in output_details["shape"])
        logger.info(
            "Loaded TFLite model %s (input=%s, output=%s)",
            self._model_path.name,
            list(self._input_shape),
            list(self._output_shape),
        )

    @property
    def input_shape(self) -> tuple[int, ...]:
        return self._input_shape

    @property
    def output_shape(self) -> tuple[int, ...]:
        return self._output_shape

    def invoke(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        model_input = _to_model_layout(tensor, self._input_shape)
        try:
            self._interpreter.set_tensor(self._input_index, model_input)
            self._interpreter.invoke()
            output = self._interpreter.get_tensor(self._output_index)
        except (RuntimeError, ValueError) as exc:
            raise InferenceError(f"TFLite inference failed: {exc}") from exc
        return np.asarray(output, dtype=np.float32).reshape(-1)

    def close(self) -> None:
        del self._interpreter


# ---------------------------------------------------------------------------
# ONNX Runtime
# ---------------------------------------------------------------------------


def _static_shape(shape: list[int | str | None]) -> tuple[int, ...]:
    # Dynamic axes (named or None) are taken as batch size 1.
    return tuple(d if isinstance(d, int) and d > 0 else 1 for d in shape)


class OnnxEngine:
    """Runs a .onnx model with ONNX Runtime."""

    def __init__(self, model_path: str | Path, device: str = "cpu", num_threads: int = 0) -> None:
        self._model_path = Path(model_path)
        self._session = InferenceSession(
            str(self._model_path),
            sess_options=self._build_session_options(num_threads),
            providers=self._build_providers(device),
        )
        model_input = self._session.get_inputs()[0]
        model_output = self._session.get_outputs()[0]
        self._input_name: str = model_input.name
        self._input_shape = _static_shape(model_input.shape)
        self._output_shape = _static_shape(model_output.shape)
        logger.info(
            "Loaded ONNX model %s (input=%s, output=%s)",
            self._model_path.name,
            list(self._input_shape),
            list(self._output_shape),
        )

    @property
    def input_shape(self) -> tuple[int, ...]:
        return self._input_shape

    @property
    def output_shape(self) -> tuple[int, ...]:
        return self._output_shape

    def invoke(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        model_input = _to_model_layout(tensor, self._input_shape)
        try:
            outputs = self._session.run(None, {self._input_name: model_input})
        except Exception as exc:
            raise InferenceError(f"ONNX inference failed: {exc}") from exc
        return np.asarray(outputs[0], dtype=np.float32).reshape(-1)

    def close(self) -> None:
        del self._session

    @staticmethod
    def _build_providers(device: str) -> list[str]:
        if device == "cuda":
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        return ["CPUExecutionProvider"]

    @staticmethod
    def _build_session_options(num_threads: int) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = num_threads
        opts.inter_op_num_threads = 1
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts


def open_engine(model_path: str | Path, settings: Settings) -> InferenceEngine:
    """Open the engine matching the model file's suffix."""
    path = Path(model_path)
    suffix = path.suffix.lower()
    if suffix == ".tflite":
        return TFLiteEngine(path, num_threads=settings.num_threads)
    if suffix == ".onnx":
        return OnnxEngine(path, device=settings.device, num_threads=settings.num_threads)
    raise ValueError(f"Unsupported model format '{suffix}' for {path.name} (expected .tflite or .onnx)")
