from __future__ import annotations

import json
import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facelens.face.store import FaceGalleryStore, GalleryConfig, RemoveResult
from facelens.face.types import FaceRecord
from facelens.storage import JsonFileStorage, MemoryStorage


def _record(face_id: int, name: str, emb, image: str = "") -> FaceRecord:
    return FaceRecord(id=face_id, name=name, embedding=np.asarray(emb, dtype=np.float32), image=image)


def _assert_same_records(a, b):
    assert len(a) == len(b)
    for ra, rb in zip(a, b):
        assert ra.id == rb.id
        assert ra.name == rb.name
        assert ra.image == rb.image
        np.testing.assert_array_equal(ra.embedding, rb.embedding)


def _always(answer: bool):
    prompts = []

    def confirm(prompt: str) -> bool:
        prompts.append(prompt)
        return answer

    confirm.prompts = prompts
    return confirm


def test_empty_storage_loads_empty_gallery():
    store = FaceGalleryStore(MemoryStorage())
    assert store.snapshot() == ()
    assert len(store) == 0


def test_round_trip_is_lossless():
    storage = MemoryStorage()
    store = FaceGalleryStore(storage)
    rng = np.random.default_rng(0)
    store.append(_record(1, "Alice", rng.normal(size=128), "data:image/png;base64,AAAA"))
    store.append(_record(2, "张泽宇", rng.normal(size=128), "blob:http://localhost/1"))

    reloaded = FaceGalleryStore(storage)
    _assert_same_records(store.snapshot(), reloaded.snapshot())


def test_persisted_layout_uses_descriptor_arrays():
    storage = MemoryStorage()
    store = FaceGalleryStore(storage)
    store.append(_record(1, "A", [0.0, 0.5], "img"))

    data = json.loads(storage.get("trainedFaces"))
    assert data == [{"id": 1, "name": "A", "descriptor": [0.0, 0.5], "image": "img"}]


def test_object_of_indices_descriptor_is_accepted():
    raw = [{"id": 1, "name": "A", "descriptor": {"1": 0.5, "0": 0.25, "2": -1}, "image": "blob:x"}]
    store = FaceGalleryStore(MemoryStorage({"trainedFaces": json.dumps(raw)}))

    (rec,) = store.snapshot()
    np.testing.assert_array_equal(rec.embedding, np.asarray([0.25, 0.5, -1.0], dtype=np.float32))
    assert rec.image == "blob:x"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"id": 1}),
        json.dumps([{"id": 1, "name": "A"}]),
        json.dumps([{"id": "x", "name": "A", "descriptor": [0.1]}]),
        json.dumps([{"id": 1, "name": "A", "descriptor": ["a", "b"]}]),
        json.dumps([3]),
        '[{"id": 1e400, "name": "A", "descriptor": [0.1]}]',
    ],
)
def test_malformed_storage_fails_soft(raw):
    store = FaceGalleryStore(MemoryStorage({"trainedFaces": raw}))
    assert store.snapshot() == ()


@pytest.mark.parametrize("raw", ["1e400", '"seven"', "null"])
def test_malformed_id_counter_is_ignored(raw):
    storage = MemoryStorage({"trainedFaces.nextId": raw})
    store = FaceGalleryStore(storage)
    assert store.next_id() == 1


def test_replace_at_keeps_position():
    store = FaceGalleryStore(MemoryStorage())
    store.append(_record(1, "A", [0.0]))
    store.append(_record(2, "B", [1.0]))

    store.replace_at(0, _record(1, "A2", [0.5]))

    assert [r.name for r in store] == ["A2", "B"]
    with pytest.raises(IndexError):
        store.replace_at(5, _record(9, "X", [0.0]))


def test_remove_confirmed_removes_exactly_one_and_persists():
    storage = MemoryStorage()
    store = FaceGalleryStore(storage)
    for i, name in enumerate(["A", "B", "C"], start=1):
        store.append(_record(i, name, [float(i)]))

    confirm = _always(True)
    result = store.remove_by_id(2, confirm)

    assert result is RemoveResult.REMOVED
    assert bool(result)
    assert confirm.prompts == ["Are you sure you want to delete the face with ID 2?"]
    assert [r.id for r in store] == [1, 3]
    assert [r.id for r in FaceGalleryStore(storage)] == [1, 3]


def test_remove_declined_leaves_gallery_unchanged():
    store = FaceGalleryStore(MemoryStorage())
    store.append(_record(1, "A", [0.0]))

    result = store.remove_by_id(1, _always(False))

    assert result is RemoveResult.CANCELLED
    assert not result
    assert [r.id for r in store] == [1]


def test_remove_missing_id_is_noop_without_prompt():
    store = FaceGalleryStore(MemoryStorage())
    store.append(_record(1, "A", [0.0]))
    confirm = _always(True)

    result = store.remove_by_id(42, confirm)

    assert result is RemoveResult.NOT_FOUND
    assert confirm.prompts == []
    assert len(store) == 1


def test_counter_ids_are_not_reused_after_delete():
    storage = MemoryStorage()
    store = FaceGalleryStore(storage)
    for i in (1, 2, 3):
        assert store.next_id() == i
        store.append(_record(store.next_id(), f"p{i}", [float(i)]))

    store.remove_by_id(3, _always(True))
    assert store.next_id() == 4

    # Counter is durable across sessions.
    assert FaceGalleryStore(storage).next_id() == 4


def test_length_ids_reproduce_legacy_behaviour():
    store = FaceGalleryStore(MemoryStorage(), GalleryConfig(durable_ids=False))
    store.append(_record(1, "A", [0.0]))
    store.append(_record(2, "B", [1.0]))
    store.remove_by_id(1, _always(True))

    assert store.next_id() == 2


def test_json_file_storage_persists_between_instances(tmp_path: Path):
    path = tmp_path / "nested" / "storage.json"
    store = FaceGalleryStore(JsonFileStorage(path))
    store.append(_record(1, "A", [0.1, 0.2], "img"))

    assert path.exists()
    reloaded = FaceGalleryStore(JsonFileStorage(path))
    _assert_same_records(store.snapshot(), reloaded.snapshot())
    assert reloaded.next_id() == 2


def test_corrupt_storage_file_loads_empty_and_is_rewritten(tmp_path: Path):
    path = tmp_path / "storage.json"
    path.write_text("{broken", encoding="utf-8")

    store = FaceGalleryStore(JsonFileStorage(path))
    assert store.snapshot() == ()

    store.append(_record(1, "A", [0.0]))
    assert [r.name for r in FaceGalleryStore(JsonFileStorage(path))] == ["A"]
