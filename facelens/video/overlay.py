from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from facelens.config import FACE_COLOR, OBJECT_COLOR
from facelens.face.types import BoundingBox, ProbeFace
from facelens.objects.types import ObjectDetection, count_labels
from facelens.utils.draw import draw_texts, measure_text


@dataclass
class LabeledFace:
    probe: ProbeFace
    identity: str


@dataclass
class FaceAnnotation:
    faces: List[LabeledFace] = field(default_factory=list)
    timestamp: float = 0.0


@dataclass
class ObjectAnnotation:
    detections: List[ObjectDetection] = field(default_factory=list)
    timestamp: float = 0.0

    @property
    def counts(self) -> Dict[str, int]:
        return count_labels(self.detections)


def _pick_text_color_for_bg(bg_bgr: Tuple[int, int, int]) -> Tuple[int, int, int]:
    b, g, r = [float(x) for x in bg_bgr]
    y = 0.2126 * r + 0.7152 * g + 0.0722 * b
    return (0, 0, 0) if y >= 140.0 else (255, 255, 255)


def draw_labeled_box(
    image: np.ndarray, box: BoundingBox, label: str, color: Tuple[int, int, int], font_size: int = 14
) -> Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]:
    """Draw a box and its label background; returns the text item for a batched `draw_texts`."""
    x1, y1, x2, y2 = box.to_xyxy()
    overlay = image.copy()
    cv2.rectangle(overlay, (x1, y1), (x2, y2), color, -1)
    cv2.addWeighted(overlay, 0.12, image, 0.88, 0, dst=image)
    cv2.rectangle(image, (x1, y1), (x2, y2), color, 2)

    text_w, text_h = measure_text(label, font_size)
    pad = 5
    bg_y1 = max(0, y1 - text_h - pad * 2)
    cv2.rectangle(image, (x1, bg_y1), (x1 + text_w + pad * 2, bg_y1 + text_h + pad * 2), color, -1)
    return (label, (x1 + pad, bg_y1 + pad), font_size, _pick_text_color_for_bg(color))


def render(
    image: np.ndarray,
    faces: Optional[FaceAnnotation] = None,
    objects: Optional[ObjectAnnotation] = None,
) -> np.ndarray:
    """Draw the latest face/object results onto `image` in place."""
    items = []
    if objects is not None:
        for det in objects.detections:
            items.append(draw_labeled_box(image, det.box, det.label, OBJECT_COLOR))
    if faces is not None:
        for lf in faces.faces:
            items.append(draw_labeled_box(image, lf.probe.box, lf.identity, FACE_COLOR))
    draw_texts(image, items)
    return image


def summary_lines(faces: Optional[FaceAnnotation], objects: Optional[ObjectAnnotation]) -> List[str]:
    """Text for the results panel: per-label object counts, per-face attributes, face total."""
    lines: List[str] = []
    if objects is not None:
        for label, count in objects.counts.items():
            lines.append(f"Detected {label}: {count}")
    face_list: Sequence[LabeledFace] = faces.faces if faces is not None else []
    for lf in face_list:
        parts = [f"name: {lf.identity}"]
        if lf.probe.age is not None:
            parts.append(f"age: {int(lf.probe.age)}")
        if lf.probe.gender:
            parts.append(f"gender: {lf.probe.gender}")
        if lf.probe.top_expression:
            parts.append(f"expression: {lf.probe.top_expression}")
        lines.append(" || ".join(parts))
    lines.append(f"Detected Face: {len(face_list)}")
    return lines


def draw_summary(image: np.ndarray, lines: Sequence[str], font_size: int = 14) -> np.ndarray:
    if not lines:
        return image
    sizes = [measure_text(line, font_size) for line in lines]
    line_h = max(h for _, h in sizes) + 6
    panel_w = max(w for w, _ in sizes) + 16
    panel_h = line_h * len(lines) + 8
    cv2.rectangle(image, (0, 0), (min(image.shape[1], panel_w), min(image.shape[0], panel_h)), (33, 38, 45), -1)
    draw_texts(image, [(line, (8, 4 + i * line_h), font_size, (201, 209, 201)) for i, line in enumerate(lines)])
    return image
