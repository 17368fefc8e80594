"""Error kinds raised by the recognition pipeline.

Every error is terminal for the current pass: the request is aborted and
no partial result is produced.
"""

from __future__ import annotations


class FruitCounterError(Exception):
    """Base class for pipeline errors."""


class DecodeError(FruitCounterError, ValueError):
    """The uploaded image could not be decoded or exceeds size limits."""


class DimensionError(FruitCounterError, ValueError):
    """A target size or tensor dimension is not a positive integer."""


class ShapeError(FruitCounterError):
    """A tensor does not match the declared model shape."""


class InferenceError(FruitCounterError, RuntimeError):
    """The inference runtime failed while invoking the model."""


class LabelTableError(FruitCounterError, ValueError):
    """A label resource is malformed."""
