from __future__ import annotations

import base64

import cv2
import numpy as np

from facelens.face.types import BoundingBox


def crop_box(frame: np.ndarray, box: BoundingBox) -> np.ndarray:
    """Crop `box` out of a frame, clipped to the frame bounds."""
    h, w = frame.shape[:2]
    x1, y1, x2, y2 = box.clip(w, h).to_xyxy()
    return frame[y1:y2, x1:x2]


def to_data_url(image: np.ndarray, fmt: str = "png") -> str:
    """Encode a BGR image as a `data:image/...;base64,` URL."""
    if image is None or image.size == 0:
        return ""
    ok, buf = cv2.imencode(f".{fmt}", image)
    if not ok:
        raise ValueError(f"failed to encode image as {fmt}")
    encoded = base64.b64encode(buf.tobytes()).decode("ascii")
    return f"data:image/{fmt};base64,{encoded}"


def thumbnail_data_url(frame: np.ndarray, box: BoundingBox) -> str:
    return to_data_url(crop_box(frame, box))
