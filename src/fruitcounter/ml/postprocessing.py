"""Output tensor post-processing.

Two variants, selected by configuration:

    SingleLabelArgmax   output shape [num_classes]; the best-scoring class wins.
    ThresholdedTally    output shape [num_classes, num_anchors]; every class
                        whose best anchor exceeds the threshold is counted
                        once under its label, and the most-counted label wins.

The tally counts qualifying classes, not anchor-level detections. There is
no box decoding and no non-maximum suppression.
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import numpy as np

from fruitcounter.ml.errors import DimensionError, ShapeError
from fruitcounter.ml.labels import UNKNOWN_LABEL

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from fruitcounter.ml.labels import LabelTable

logger = logging.getLogger(__name__)

PostprocessKind = Literal["argmax", "tally"]


@dataclass(frozen=True)
class CountResult:
    """Summary of one recognition pass."""

    label: str
    count: int
    index: int | None = None
    score: float | None = None
    tally: dict[str, int] = field(default_factory=dict)

    @property
    def recognized(self) -> bool:
        return self.count > 0

    def render(self) -> str:
        """Return the display string: the label followed by its count."""
        return f"{self.label}: {self.count}"


def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value <= 0:
        raise DimensionError(f"{name} must be a positive integer, got {value!r}")


def _flatten(output: ArrayLike, expected: int) -> NDArray[np.float32]:
    scores = np.asarray(output, dtype=np.float32).reshape(-1)
    if scores.size != expected:
        raise ShapeError(f"Output tensor has {scores.size} values, expected {expected}")
    return scores


@dataclass(frozen=True)
class SingleLabelArgmax:
    """Pick the highest-scoring class. Ties go to the lowest index."""

    num_classes: int
    kind: Literal["argmax"] = field(default="argmax", init=False)

    def __post_init__(self) -> None:
        _require_positive("num_classes", self.num_classes)

    @property
    def output_size(self) -> int:
        return self.num_classes

    def apply(self, output: ArrayLike, labels: LabelTable) -> CountResult:
        scores = _flatten(output, self.output_size)
        if np.isnan(scores).all():
            return CountResult(label=UNKNOWN_LABEL, count=0)
        # NaN scores are ignored; ties resolve to the first occurrence.
        best = int(np.nanargmax(scores))
        return CountResult(
            label=labels.lookup(best),
            count=1,
            index=best,
            score=float(scores[best]),
            tally={labels.lookup(best): 1},
        )


@dataclass(frozen=True)
class ThresholdedTally:
    """Count classes whose best anchor score exceeds ``threshold``."""

    num_classes: int
    num_anchors: int
    threshold: float
    kind: Literal["tally"] = field(default="tally", init=False)

    def __post_init__(self) -> None:
        _require_positive("num_classes", self.num_classes)
        _require_positive("num_anchors", self.num_anchors)
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")

    @property
    def output_size(self) -> int:
        return self.num_classes * self.num_anchors

    def apply(self, output: ArrayLike, labels: LabelTable) -> CountResult:
        scores = _flatten(output, self.output_size)
        # fmax skips NaN anchors; a row of only NaN stays NaN and never qualifies.
        maxima = np.fmax.reduce(scores.reshape(self.num_classes, self.num_anchors), axis=1)

        tally: dict[str, int] = {}
        first_index: dict[str, int] = {}
        best_score: dict[str, float] = {}
        for class_index in range(self.num_classes):
            peak = float(maxima[class_index])
            if not peak > self.threshold:
                continue
            label = labels.lookup(class_index)
            tally[label] = tally.get(label, 0) + 1
            first_index.setdefault(label, class_index)
            best_score[label] = max(best_score.get(label, peak), peak)

        if not tally:
            return CountResult(label=UNKNOWN_LABEL, count=0)

        # max() keeps the first key on ties, i.e. the lowest class index.
        winner = max(tally, key=tally.__getitem__)
        logger.debug("Tally %s, selected %s", tally, winner)
        return CountResult(
            label=winner,
            count=tally[winner],
            index=first_index[winner],
            score=best_score[winner],
            tally=tally,
        )


Postprocessor = SingleLabelArgmax | ThresholdedTally


def build_postprocessor(
    kind: PostprocessKind,
    num_classes: int,
    num_anchors: int = 1,
    threshold: float = 0.5,
) -> Postprocessor:
    """Select the post-processing variant by configuration."""
    if kind == "argmax":
        return SingleLabelArgmax(num_classes=num_classes)
    if kind == "tally":
        return ThresholdedTally(num_classes=num_classes, num_anchors=num_anchors, threshold=threshold)
    raise ValueError(f"Unknown post-processing variant: {kind}")


def format_score_dump(output: ArrayLike, num_classes: int, num_anchors: int = 1) -> str:
    """Render every per-class score, one block per class.

    Each block is ``Class i:`` on its own line, then the class's scores
    formatted to two decimals and separated by spaces, then a blank line.
    """
    _require_positive("num_classes", num_classes)
    _require_positive("num_anchors", num_anchors)
    scores = _flatten(output, num_classes * num_anchors).reshape(num_classes, num_anchors)

    parts: list[str] = []
    for class_index, row in enumerate(scores):
        parts.append(f"Class {class_index}:\n")
        parts.append("".join(f"{value:.2f} " for value in row))
        parts.append("\n\n")
    return "".join(parts)
