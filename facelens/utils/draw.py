from __future__ import annotations

from functools import lru_cache
from typing import Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from facelens.config import FONT_LIST


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """Return a cached font instance that best supports unicode on the current OS."""
    for p in FONT_LIST:
        try:
            return _load_font(p, int(font_size))
        except OSError:
            continue
    return ImageFont.load_default()


def _is_ascii(text: str) -> bool:
    return all(ord(ch) < 128 for ch in text)


def draw_texts(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw several texts onto one frame.

    ASCII-only batches go straight through cv2.putText; anything else is drawn
    with PIL in a single BGR->RGB->BGR round trip.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y) top-left, font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    if all(_is_ascii(str(t)) for (t, _, _, _) in items):
        for text, org, font_size, bgr in items:
            font_scale = max(0.3, int(font_size) / 30.0)
            (_, h), _ = cv2.getTextSize(str(text), cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
            cv2.putText(
                img,
                str(text),
                (int(org[0]), int(org[1]) + h),
                cv2.FONT_HERSHEY_SIMPLEX,
                font_scale,
                (int(bgr[0]), int(bgr[1]), int(bgr[2])),
                1,
                cv2.LINE_AA,
            )
        return

    pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    draw = ImageDraw.Draw(pil_img)
    for text, org, font_size, bgr in items:
        font = _get_best_font(int(font_size))
        # PIL uses RGB
        rgb_color = (int(bgr[2]), int(bgr[1]), int(bgr[0]))
        draw.text((int(org[0]), int(org[1])), str(text), font=font, fill=rgb_color)
    img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


def measure_text(text: str, font_size: int = 14) -> Tuple[int, int]:
    """Pixel size of `text`; called per label per frame, hence the cache."""
    return _measure_text_cached(str(text), int(font_size))


@lru_cache(maxsize=4096)
def _measure_text_cached(text: str, font_size: int) -> Tuple[int, int]:
    if _is_ascii(text):
        font_scale = max(0.3, float(font_size) / 30.0)
        (w, h), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
        return int(w), int(h + baseline)

    font = _get_best_font(int(font_size))
    dummy = Image.new("RGB", (10, 10))
    draw = ImageDraw.Draw(dummy)
    bbox = draw.textbbox((0, 0), text, font=font)
    return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])
