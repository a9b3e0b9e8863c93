from __future__ import annotations

import asyncio
import sys

from pathlib import Path

import numpy as np

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facelens.errors import EmbeddingSourceFailure, SourceFailure
from facelens.face.matcher import IdentityMatcher
from facelens.face.sources import StaticEmbeddingSource
from facelens.face.store import FaceGalleryStore
from facelens.face.types import BoundingBox, FaceRecord, ProbeFace
from facelens.objects.sources import StaticObjectSource
from facelens.objects.types import ObjectDetection
from facelens.storage import MemoryStorage
from facelens.video.loop import AnnotationLoop
from facelens.video.overlay import render, summary_lines


def _frame():
    return np.zeros((120, 160, 3), dtype=np.uint8)


def _probe(emb, **attrs) -> ProbeFace:
    return ProbeFace(box=BoundingBox(10, 20, 40, 40), embedding=np.asarray(emb, dtype=np.float32), **attrs)


def _store(*records) -> FaceGalleryStore:
    store = FaceGalleryStore(MemoryStorage())
    for rec in records:
        store.append(rec)
    return store


def _loop(face_source=None, object_source=None, store=None, read_frame=_frame, **kwargs) -> AnnotationLoop:
    return AnnotationLoop(
        read_frame=read_frame,
        face_source=face_source,
        object_source=object_source,
        matcher=IdentityMatcher(),
        store=store if store is not None else _store(),
        **kwargs,
    )


def test_faces_are_labelled_against_gallery():
    store = _store(FaceRecord(id=1, name="A", embedding=[0.0, 0.0]))
    source = StaticEmbeddingSource([_probe([0.0, 0.1], age=31.6, gender="female"), _probe([4.0, 4.0])])
    seen = []
    loop = _loop(face_source=source, store=store, on_faces=seen.append)

    asyncio.run(loop.run(max_ticks=3))

    assert source.calls == 3
    assert len(seen) == 3
    assert [lf.identity for lf in seen[-1].faces] == ["A", "Unknown"]
    assert loop.latest_frame is not None
    assert not loop.running


def test_failing_source_does_not_stop_the_loop():
    source = StaticEmbeddingSource(error=EmbeddingSourceFailure("model crashed"))
    loop = _loop(face_source=source)

    asyncio.run(loop.run(max_ticks=4))

    assert source.calls == 4
    assert loop.failed_ticks == 4
    assert loop.latest_faces is None


def test_unexpected_detector_error_is_skipped_per_tick():
    source = StaticEmbeddingSource(error=RuntimeError("detector crashed"))
    loop = _loop(face_source=source)

    asyncio.run(loop.run(max_ticks=3))

    assert source.calls == 3
    assert loop.failed_ticks == 3
    assert not loop.running


def test_raising_sink_does_not_stop_the_loop():
    source = StaticEmbeddingSource([_probe([0.0])])
    objects = StaticObjectSource([ObjectDetection(box=BoundingBox(0, 0, 4, 4), label="cup", score=0.7)])

    def broken_sink(annotation):
        raise KeyError("display gone")

    loop = _loop(face_source=source, object_source=objects, on_faces=broken_sink, on_objects=broken_sink)
    asyncio.run(loop.run(max_ticks=2))

    assert source.calls == 2
    assert objects.calls == 2
    assert loop.failed_ticks == 4
    assert loop.latest_objects.counts == {"cup": 1}


def test_missing_frames_skip_detection():
    source = StaticEmbeddingSource([_probe([0.0])])
    loop = _loop(face_source=source, read_frame=lambda: None)

    asyncio.run(loop.run(max_ticks=2))

    assert source.calls == 0
    assert loop.latest_faces is None


def test_enrollment_between_ticks_is_seen_on_next_tick():
    store = _store()
    source = StaticEmbeddingSource([_probe([1.0, 1.0])])
    seen = []

    def on_faces(annotation):
        seen.append([lf.identity for lf in annotation.faces])
        if len(seen) == 1:
            store.append(FaceRecord(id=1, name="Late", embedding=[1.0, 1.1]))

    loop = _loop(face_source=source, store=store, on_faces=on_faces)
    asyncio.run(loop.run(max_ticks=2))

    assert seen == [["Unknown"], ["Late"]]


def test_object_loop_counts_labels_and_survives_failures():
    dets = [
        ObjectDetection(box=BoundingBox(0, 0, 10, 10), label="person", score=0.9),
        ObjectDetection(box=BoundingBox(5, 5, 10, 10), label="cup", score=0.5),
        ObjectDetection(box=BoundingBox(50, 5, 10, 10), label="person", score=0.8),
    ]
    ok_source = StaticObjectSource(dets)
    loop = _loop(object_source=ok_source)
    asyncio.run(loop.run(max_ticks=1))
    assert loop.latest_objects.counts == {"person": 2, "cup": 1}

    bad_source = StaticObjectSource(error=SourceFailure("endpoint down"))
    loop = _loop(object_source=bad_source)
    asyncio.run(loop.run(max_ticks=2))
    assert bad_source.calls == 2
    assert loop.latest_objects is None


def test_stop_ends_unbounded_run():
    source = StaticEmbeddingSource([])
    loop = _loop(face_source=source)

    async def _run():
        task = asyncio.create_task(loop.run())
        while source.calls < 3:
            await asyncio.sleep(0)
        loop.stop()
        await task

    asyncio.run(asyncio.wait_for(_run(), timeout=5))
    assert not loop.running


def test_annotate_frame_renders_and_summarizes():
    store = _store(FaceRecord(id=1, name="A", embedding=[0.0, 0.0]))
    loop = _loop(
        face_source=StaticEmbeddingSource([_probe([0.0, 0.0], age=31.6, gender="female")]),
        object_source=StaticObjectSource([ObjectDetection(box=BoundingBox(0, 0, 30, 30), label="cup", score=0.7)]),
        store=store,
    )
    frame = _frame()

    faces, objects = asyncio.run(loop.annotate_frame(frame))
    out = render(frame.copy(), faces, objects)

    assert out.shape == frame.shape
    assert out.any()
    assert summary_lines(faces, objects) == [
        "Detected cup: 1",
        "name: A || age: 31 || gender: female",
        "Detected Face: 1",
    ]
