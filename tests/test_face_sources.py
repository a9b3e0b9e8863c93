from __future__ import annotations

import asyncio
import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facelens.errors import EmbeddingSourceFailure
from facelens.face.sources import InsightFaceEmbeddingSource, StaticEmbeddingSource, face_to_probe
from facelens.utils.serializer import serialize_probe


class _DummyFace:
    """Attribute bag shaped like insightface.app.common.Face."""

    def __init__(self, **kw):
        self.__dict__.update(kw)


def test_insightface_face_is_converted():
    emb = np.asarray([3.0, 4.0], dtype=np.float32)
    face = _DummyFace(bbox=np.asarray([10.5, 20.0, 50.5, 80.0]), normed_embedding=emb / 5.0, age=27, sex="F")

    probe = face_to_probe(face)

    assert probe.box.to_xyxy() == [10, 20, 50, 80]
    np.testing.assert_allclose(probe.embedding, [0.6, 0.8], rtol=1e-6)
    assert probe.age == 27.0
    assert probe.gender == "female"
    assert probe.expressions == {}

    out = serialize_probe(probe, "Unknown")
    assert out["identity"] == "Unknown"
    assert out["embedding_norm"] == pytest.approx(1.0)


def test_raw_embedding_is_normalized_when_normed_missing():
    face = _DummyFace(bbox=[0, 0, 4, 4], normed_embedding=None, embedding=[0.0, 2.0], age=None, sex=None)

    probe = face_to_probe(face)

    np.testing.assert_allclose(probe.embedding, [0.0, 1.0])
    assert probe.age is None
    assert probe.gender is None


def test_static_source_replays_or_raises():
    source = StaticEmbeddingSource(error=EmbeddingSourceFailure("boom"))
    with pytest.raises(EmbeddingSourceFailure):
        asyncio.run(source.detect(np.zeros((2, 2, 3), dtype=np.uint8)))
    assert source.calls == 1


class _DummyApp:
    def __init__(self, faces):
        self.faces = faces

    def get(self, frame):
        return self.faces


def test_unconvertible_face_is_reported_as_source_failure(monkeypatch):
    # A face without a bbox cannot be turned into a probe.
    monkeypatch.setattr(InsightFaceEmbeddingSource, "_load", lambda self: _DummyApp([_DummyFace(age=20)]))
    source = InsightFaceEmbeddingSource(device="cpu")

    with pytest.raises(EmbeddingSourceFailure):
        source.detect_sync(np.zeros((4, 4, 3), dtype=np.uint8))
