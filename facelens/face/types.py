from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, xyxy: Sequence[float]) -> "BoundingBox":
        x1, y1, x2, y2 = [float(v) for v in xyxy[:4]]
        return cls(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1))

    def to_xyxy(self) -> List[int]:
        return [int(self.x), int(self.y), int(self.x + self.width), int(self.y + self.height)]

    def clip(self, frame_w: int, frame_h: int) -> "BoundingBox":
        x1, y1, x2, y2 = self.to_xyxy()
        x1 = min(max(0, x1), frame_w)
        y1 = min(max(0, y1), frame_h)
        x2 = min(max(0, x2), frame_w)
        y2 = min(max(0, y2), frame_h)
        return BoundingBox.from_xyxy([x1, y1, x2, y2])


@dataclass
class FaceRecord:
    """One enrolled face. `image` is an opaque thumbnail reference (usually a data URL)."""

    id: int
    name: str
    embedding: np.ndarray
    image: str = ""

    def __post_init__(self) -> None:
        self.embedding = np.asarray(self.embedding, dtype=np.float32).reshape(-1)

    @property
    def matchable(self) -> bool:
        return bool(self.name and self.name.strip())


@dataclass
class ProbeFace:
    """A face detected in the current frame. Never persisted."""

    box: BoundingBox
    embedding: Optional[np.ndarray] = None
    age: Optional[float] = None
    gender: Optional[str] = None
    expressions: Dict[str, float] = field(default_factory=dict)

    @property
    def top_expression(self) -> Optional[str]:
        if not self.expressions:
            return None
        return max(self.expressions.items(), key=lambda kv: kv[1])[0]
