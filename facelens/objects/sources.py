from __future__ import annotations

import asyncio

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import cv2
import httpx
import numpy as np

from facelens.errors import SourceFailure
from facelens.face.types import BoundingBox
from facelens.objects.types import ObjectDetection
from facelens.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)


class ObjectSource(ABC):
    @abstractmethod
    async def detect(self, frame: np.ndarray) -> List[ObjectDetection]:
        """Detect objects in a BGR frame.

        Raises:
            SourceFailure: the detector failed on this frame.
        """

    async def aclose(self) -> None:
        pass


class StaticObjectSource(ObjectSource):
    def __init__(self, detections: Optional[Sequence[ObjectDetection]] = None, error: Optional[Exception] = None):
        self.detections = list(detections or [])
        self.error = error
        self.calls = 0

    async def detect(self, frame: np.ndarray) -> List[ObjectDetection]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.detections)


class UltralyticsObjectSource(ObjectSource):
    """All-class object detector using ultralytics YOLO (COCO weights by default)."""

    def __init__(self, weights_path: str = "yolo11n.pt", device: str = "auto", conf: float = 0.25) -> None:
        from ultralytics import YOLO
        import torch

        with suppress_fds():
            self.model = YOLO(str(weights_path))
        dev = str(device).lower().strip()
        if dev == "auto":
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        elif dev == "gpu":
            self.device = "cuda"
        else:
            self.device = dev
        self.conf = float(conf)
        logger.info(f"Loaded YOLO model: {weights_path} on {self.device}")

    def _to_detections(self, r0) -> List[ObjectDetection]:
        boxes = getattr(r0, "boxes", None)
        if boxes is None:
            return []

        names = getattr(r0, "names", None) or getattr(self.model, "names", {}) or {}
        xyxy = boxes.xyxy.cpu().numpy()
        cls = boxes.cls.cpu().numpy()
        confs = boxes.conf.cpu().numpy()

        out: List[ObjectDetection] = []
        for b, c, s in zip(xyxy, cls, confs):
            label = str(names.get(int(c), int(c))) if isinstance(names, dict) else str(names[int(c)])
            out.append(ObjectDetection(box=BoundingBox.from_xyxy(b.tolist()), label=label, score=float(s)))
        return out

    def detect_sync(self, frame: np.ndarray) -> List[ObjectDetection]:
        try:
            results = self.model.predict(frame, conf=self.conf, device=self.device, verbose=False)
            if not results:
                return []
            return self._to_detections(results[0])
        except Exception as e:
            raise SourceFailure(f"YOLO failed: {e}") from e

    async def detect(self, frame: np.ndarray) -> List[ObjectDetection]:
        return await asyncio.to_thread(self.detect_sync, frame)


def parse_remote_detections(payload: Any) -> List[ObjectDetection]:
    """Parse `[{"bbox": [x, y, w, h], "class": str, "score": float}, ...]`.

    A `{"results": [...]}` wrapper is accepted as well.
    """
    if isinstance(payload, dict) and "results" in payload:
        payload = payload["results"]
    if not isinstance(payload, list):
        raise SourceFailure(f"unexpected inference response: {type(payload).__name__}")

    out: List[ObjectDetection] = []
    for item in payload:
        try:
            x, y, w, h = [float(v) for v in item["bbox"][:4]]
            out.append(
                ObjectDetection(
                    box=BoundingBox(x=x, y=y, width=w, height=h),
                    label=str(item["class"]),
                    score=float(item.get("score", 0.0)),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SourceFailure(f"malformed detection {item!r}: {e}") from e
    return out


class RemoteObjectSource(ObjectSource):
    """Posts each frame as a JPEG to an HTTP inference endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        jpeg_quality: int = 85,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.jpeg_quality = int(jpeg_quality)
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _encode(self, frame: np.ndarray) -> bytes:
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise SourceFailure("failed to encode frame as JPEG")
        return buf.tobytes()

    async def detect(self, frame: np.ndarray) -> List[ObjectDetection]:
        data = self._encode(frame)
        try:
            response = await self._client.post(self.url, files={"file": ("frame.jpg", data, "image/jpeg")})
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise SourceFailure(f"timeout calling {self.url}") from e
        except httpx.HTTPStatusError as e:
            raise SourceFailure(f"HTTP {e.response.status_code} from {self.url}: {e.response.text}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFailure(f"error calling {self.url}: {e}") from e
        return parse_remote_detections(payload)

    async def aclose(self) -> None:
        await self._client.aclose()
