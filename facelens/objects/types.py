from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable

from facelens.face.types import BoundingBox


@dataclass(frozen=True)
class ObjectDetection:
    box: BoundingBox
    label: str
    score: float


def count_labels(detections: Iterable[ObjectDetection]) -> Dict[str, int]:
    """Number of detections per label, in first-seen order."""
    return dict(Counter(d.label for d in detections))
