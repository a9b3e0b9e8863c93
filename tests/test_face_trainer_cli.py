from __future__ import annotations

import sys

from pathlib import Path

import numpy as np

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import face_trainer

from facelens.face.store import FaceGalleryStore
from facelens.face.types import FaceRecord
from facelens.storage import JsonFileStorage


def _seed(path: Path, names):
    store = FaceGalleryStore(JsonFileStorage(path))
    for name in names:
        store.append(FaceRecord(id=store.next_id(), name=name, embedding=np.zeros(4, dtype=np.float32)))


def test_list_shows_faces(tmp_path: Path, capsys):
    path = tmp_path / "storage.json"
    _seed(path, ["Alice", "Bob"])

    assert face_trainer.main(["--storage", str(path), "list"]) == 0

    out = capsys.readouterr().out
    assert "Alice" in out and "Bob" in out
    assert "2/5 faces (capturing)" in out


def test_delete_yes_removes_face(tmp_path: Path, capsys):
    path = tmp_path / "storage.json"
    _seed(path, ["Alice", "Bob"])

    assert face_trainer.main(["--storage", str(path), "delete", "1", "--yes"]) == 0
    assert capsys.readouterr().out.strip() == "removed"
    assert [r.name for r in FaceGalleryStore(JsonFileStorage(path))] == ["Bob"]


def test_delete_prompt_declined(tmp_path: Path, monkeypatch, capsys):
    path = tmp_path / "storage.json"
    _seed(path, ["Alice"])
    monkeypatch.setattr("builtins.input", lambda prompt: "n")

    assert face_trainer.main(["--storage", str(path), "delete", "1"]) == 1
    assert capsys.readouterr().out.strip() == "cancelled"
    assert len(FaceGalleryStore(JsonFileStorage(path))) == 1


def test_delete_unknown_id(tmp_path: Path, capsys):
    path = tmp_path / "storage.json"
    _seed(path, ["Alice"])

    assert face_trainer.main(["--storage", str(path), "delete", "9", "--yes"]) == 1
    assert capsys.readouterr().out.strip() == "not_found"
