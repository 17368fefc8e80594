"""Image preprocessing pipeline.

Handles decoding, EXIF orientation, color space conversion, size
validation, resizing, and conversion to the flat float tensor the model
expects.
"""

from __future__ import annotations

import io
import logging
import numbers
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fruitcounter.ml.errors import DecodeError, DimensionError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> Image.Image:
    """Decode raw image bytes into an RGB image.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on width * height, or None for no limit.

    Returns:
        RGB image with EXIF orientation applied. Alpha is dropped.

    Raises:
        DecodeError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise DecodeError("Empty image data")

    try:
        image = Image.open(io.BytesIO(image_bytes))
        width, height = image.size
        if max_pixels is not None and width * height > max_pixels:
            raise DecodeError(f"Image has {width * height} pixels, limit is {max_pixels}")
        image.load()
        image = ImageOps.exif_transpose(image)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise DecodeError(f"Cannot decode image: {exc}") from exc

    return image.convert("RGB")


def _check_size(size: int) -> int:
    if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size <= 0:
        raise DimensionError(f"Target size must be a positive integer, got {size!r}")
    return int(size)


def resize_image(image: Image.Image, size: int) -> Image.Image:
    """Resize an image to ``size x size`` with bilinear interpolation."""
    size = _check_size(size)
    if image.size == (size, size):
        return image
    return image.resize((size, size), Image.Resampling.BILINEAR)


def to_input_tensor(image: Image.Image, size: int) -> NDArray[np.float32]:
    """Convert an image into the model's flat input tensor.

    Pixels are written row by row (y outer, x inner), each as red, green,
    blue scaled to [0.0, 1.0]. The result has length ``size * size * 3``
    and is read-only.
    """
    resized = resize_image(image.convert("RGB"), size)
    pixels = np.asarray(resized, dtype=np.uint8)
    tensor = (pixels.astype(np.float32) / np.float32(255.0)).reshape(-1)
    tensor.flags.writeable = False
    return tensor


def preprocess(image_bytes: bytes, size: int, max_pixels: int | None = None) -> NDArray[np.float32]:
    """Decode raw bytes and build the input tensor in one step."""
    _check_size(size)
    image = decode_image(image_bytes, max_pixels=max_pixels)
    logger.debug("Decoded %dx%d image, resizing to %dx%d", image.width, image.height, size, size)
    return to_input_tensor(image, size)
