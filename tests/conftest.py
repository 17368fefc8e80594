"""Shared test helpers."""

from __future__ import annotations

import io
import math
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray


class FakeEngine:
    """In-memory stand-in for a loaded model.

    Returns a fixed output and records every tensor it was given.
    """

    def __init__(
        self,
        input_shape: tuple[int, ...],
        output: NDArray[np.float32],
        output_shape: tuple[int, ...] | None = None,
    ) -> None:
        self.input_shape = input_shape
        self.output_shape = output_shape or tuple(output.shape)
        self.output = output
        self.calls: list[NDArray[np.float32]] = []
        self.closed = False

    def invoke(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        assert tensor.size == math.prod(self.input_shape)
        self.calls.append(tensor)
        return np.asarray(self.output, dtype=np.float32).reshape(-1)

    def close(self) -> None:
        self.closed = True


def encode_png(size: tuple[int, int] = (32, 24), color: tuple[int, int, int] = (200, 30, 60)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def png_bytes() -> bytes:
    return encode_png()
