"""Class label tables: static index-to-name lookup data.

Label tables are loaded from a resource file and never mutated. Supported
formats:

    labels.txt   one label per line, blank lines skipped
    labels.json  a JSON list, or an object keyed by stringified index
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from fruitcounter.ml.errors import LabelTableError

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class LabelTable:
    """Immutable ordered mapping from class index to label."""

    labels: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.labels)

    def lookup(self, index: int) -> str:
        """Return the label for ``index``, or ``UNKNOWN_LABEL`` if undeclared."""
        if 0 <= index < len(self.labels):
            return self.labels[index]
        return UNKNOWN_LABEL

    @classmethod
    def numbered(cls, count: int) -> LabelTable:
        """Build a placeholder table ``class_0 .. class_{count-1}``."""
        return cls(tuple(f"class_{i}" for i in range(count)))


def load_label_table(path: str | Path) -> LabelTable:
    """Load a label table from a text or JSON resource.

    Raises:
        FileNotFoundError: If the file does not exist.
        LabelTableError: If the file content is malformed.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    if path.suffix.lower() == ".json":
        labels = _parse_json_labels(text, path)
    else:
        labels = tuple(line.strip() for line in text.splitlines() if line.strip())

    logger.info("Loaded %d labels from %s", len(labels), path)
    return LabelTable(labels)


def _parse_json_labels(text: str, path: Path) -> tuple[str, ...]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LabelTableError(f"Invalid JSON in label file {path}: {exc}") from exc

    if isinstance(data, list):
        if not all(isinstance(item, str) for item in data):
            raise LabelTableError(f"Label list in {path} must contain only strings")
        return tuple(data)

    if isinstance(data, dict):
        try:
            indexed = {int(key): value for key, value in data.items()}
        except ValueError:
            raise LabelTableError(f"Label keys in {path} must be integer indices") from None
        if sorted(indexed) != list(range(len(indexed))):
            raise LabelTableError(f"Label indices in {path} must be contiguous from 0")
        if not all(isinstance(value, str) for value in indexed.values()):
            raise LabelTableError(f"Label values in {path} must be strings")
        return tuple(indexed[i] for i in range(len(indexed)))

    raise LabelTableError(f"Label file {path} must hold a JSON list or object")
