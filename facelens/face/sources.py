"""Embedding sources: anything that turns a frame into `ProbeFace`s.

The face pipeline never talks to a model directly; it awaits an
`EmbeddingSource`. `InsightFaceEmbeddingSource` runs the model in-process,
`StaticEmbeddingSource` replays fixed probes for tests and demos.
"""

from __future__ import annotations

import asyncio
import io

from abc import ABC, abstractmethod
from contextlib import redirect_stderr, redirect_stdout
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from facelens.errors import EmbeddingSourceFailure
from facelens.face.types import BoundingBox, ProbeFace
from facelens.utils.log import get_logger, suppress_fds
from facelens.utils.math import as_embedding, l2_normalize

logger = get_logger(__name__)

# In-process model cache: constructing FaceAnalysis is slow; the key holds
# everything that changes the model's output.
_FACEAPP_CACHE: Dict[Tuple, Any] = {}

_GENDER_NAMES = {"M": "male", "F": "female", 1: "male", 0: "female"}


class EmbeddingSource(ABC):
    @abstractmethod
    async def detect(self, frame: np.ndarray) -> List[ProbeFace]:
        """Detect faces in a BGR frame.

        Raises:
            EmbeddingSourceFailure: the model failed on this frame.
        """

    def close(self) -> None:
        pass


class StaticEmbeddingSource(EmbeddingSource):
    """Returns the same probes for every frame (or raises a configured error)."""

    def __init__(self, probes: Optional[Sequence[ProbeFace]] = None, error: Optional[Exception] = None):
        self.probes = list(probes or [])
        self.error = error
        self.calls = 0

    async def detect(self, frame: np.ndarray) -> List[ProbeFace]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.probes)


def _select_providers(device: str) -> Tuple[List[str], int]:
    if device == "auto":
        try:
            import torch

            device = "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            device = "cpu"
    if device == "gpu":
        return ["CUDAExecutionProvider"], 0
    return ["CPUExecutionProvider"], -1


def face_to_probe(face: Any) -> ProbeFace:
    """Convert an insightface `Face` into a ProbeFace."""
    emb = getattr(face, "normed_embedding", None)
    if emb is None:
        raw = as_embedding(getattr(face, "embedding", None))
        emb = None if raw is None else l2_normalize(raw)

    age = getattr(face, "age", None)
    sex = getattr(face, "sex", None)
    if sex is None:
        sex = getattr(face, "gender", None)

    return ProbeFace(
        box=BoundingBox.from_xyxy(np.asarray(face.bbox, dtype=np.float32).tolist()),
        embedding=as_embedding(emb),
        age=None if age is None else float(age),
        gender=_GENDER_NAMES.get(sex, None if sex is None else str(sex)),
    )


class InsightFaceEmbeddingSource(EmbeddingSource):
    """Face detection, embedding and age/gender via InsightFace `FaceAnalysis`.

    InsightFace does not estimate expressions; `ProbeFace.expressions` stays empty.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        det_size: int = 640,
        device: str = "auto",
        max_faces: int = 0,
    ):
        self.model_name = model_name
        self.det_size = (int(det_size), int(det_size))
        self.max_faces = int(max_faces)
        self.providers, self.ctx_id = _select_providers(device)
        self._app = self._load()

    def _load(self):
        key = (self.model_name, tuple(self.providers), self.ctx_id, self.det_size)
        cached = _FACEAPP_CACHE.get(key)
        if cached is not None:
            return cached

        from insightface.app import FaceAnalysis

        with suppress_fds():
            app = FaceAnalysis(
                name=self.model_name,
                providers=self.providers,
                allowed_modules=["detection", "recognition", "genderage"],
            )
        buf = io.StringIO()
        with redirect_stdout(buf), redirect_stderr(buf):
            app.prepare(ctx_id=self.ctx_id, det_size=self.det_size)
        logger.info(f"Loaded InsightFace model: {self.model_name} ({self.providers[0]})")
        _FACEAPP_CACHE[key] = app
        return app

    def detect_sync(self, frame: np.ndarray) -> List[ProbeFace]:
        try:
            faces = self._app.get(frame) or []
            if self.max_faces > 0:
                faces = faces[: self.max_faces]
            return [face_to_probe(f) for f in faces]
        except Exception as e:
            raise EmbeddingSourceFailure(f"InsightFace failed: {e}") from e

    async def detect(self, frame: np.ndarray) -> List[ProbeFace]:
        return await asyncio.to_thread(self.detect_sync, frame)
