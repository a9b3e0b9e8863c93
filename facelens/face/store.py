from __future__ import annotations

import json
import threading

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Sequence, Tuple

from facelens.config import GALLERY_KEY
from facelens.errors import PersistenceReadFailure
from facelens.face.types import FaceRecord
from facelens.storage import Storage
from facelens.utils.log import get_logger
from facelens.utils.serializer import deserialize_gallery, serialize_record

logger = get_logger(__name__)

Gallery = Tuple[FaceRecord, ...]
ConfirmFn = Callable[[str], bool]


@dataclass
class GalleryConfig:
    # Storage key of the persisted gallery array.
    key: str = GALLERY_KEY
    # Use the durable id counter (True) or len(gallery) + 1 (False).
    durable_ids: bool = True


class RemoveResult(Enum):
    REMOVED = "removed"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"

    def __bool__(self) -> bool:
        return self is RemoveResult.REMOVED


class IdAllocator(ABC):
    @abstractmethod
    def peek(self, gallery: Sequence[FaceRecord]) -> int:
        """Id the next inserted record will get."""

    def commit(self, used_id: int) -> None:
        """Record that `used_id` has been handed out."""


class LengthIdAllocator(IdAllocator):
    """len(gallery) + 1. Ids can repeat once records have been deleted."""

    def peek(self, gallery: Sequence[FaceRecord]) -> int:
        return len(gallery) + 1


class CounterIdAllocator(IdAllocator):
    """Monotonic counter persisted under `<key>.nextId` next to the gallery."""

    def __init__(self, storage: Storage, key: str):
        self.storage = storage
        self.key = key
        self._last = self._read()

    def _read(self) -> int:
        raw = self.storage.get(self.key)
        if raw is None:
            return 0
        try:
            return max(0, int(json.loads(raw)))
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Ignoring malformed id counter {raw!r}")
            return 0

    def peek(self, gallery: Sequence[FaceRecord]) -> int:
        highest = max((int(r.id) for r in gallery), default=0)
        return max(self._last, highest, len(gallery)) + 1

    def commit(self, used_id: int) -> None:
        self._last = max(self._last, int(used_id))
        self.storage.set(self.key, json.dumps(self._last))


class FaceGalleryStore:
    """Owner of the gallery.

    Readers get immutable snapshots; every mutator writes the whole gallery to
    storage before returning.
    """

    def __init__(self, storage: Storage, config: Optional[GalleryConfig] = None):
        self.storage = storage
        self.config = config or GalleryConfig()
        if self.config.durable_ids:
            self.ids: IdAllocator = CounterIdAllocator(storage, f"{self.config.key}.nextId")
        else:
            self.ids = LengthIdAllocator()
        self._lock = threading.RLock()
        self._records: Gallery = ()
        self.load()

    def load(self) -> Gallery:
        """(Re)load from storage. Missing or malformed data yields an empty gallery."""
        records: Gallery = ()
        try:
            raw = self.storage.get(self.config.key)
            if raw is not None:
                try:
                    data = json.loads(raw)
                except ValueError as e:
                    raise PersistenceReadFailure(f"gallery entry is not JSON: {e}") from e
                records = tuple(deserialize_gallery(data))
        except PersistenceReadFailure as e:
            logger.warning(f"Stored gallery is unreadable, starting empty: {e}")
            records = ()

        with self._lock:
            self._records = records
        logger.info(f"Loaded gallery: {len(records)} faces")
        return records

    def snapshot(self) -> Gallery:
        return self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[FaceRecord]:
        return iter(self._records)

    def find_index(self, face_id: int) -> int:
        for i, rec in enumerate(self._records):
            if rec.id == face_id:
                return i
        return -1

    def next_id(self) -> int:
        return self.ids.peek(self._records)

    def _persist(self, records: Gallery) -> None:
        payload = json.dumps([serialize_record(r) for r in records], ensure_ascii=False)
        self.storage.set(self.config.key, payload)
        self._records = records

    def append(self, record: FaceRecord) -> None:
        with self._lock:
            self._persist(self._records + (record,))
            self.ids.commit(record.id)
        logger.info(f"Enrolled face {record.id} ({record.name})")

    def replace_at(self, index: int, record: FaceRecord) -> None:
        with self._lock:
            if not 0 <= index < len(self._records):
                raise IndexError(f"gallery index out of range: {index}")
            records = list(self._records)
            records[index] = record
            self._persist(tuple(records))
        logger.info(f"Updated face {record.id} ({record.name}) at position {index}")

    def remove_by_id(self, face_id: int, confirm: ConfirmFn) -> RemoveResult:
        with self._lock:
            index = self.find_index(face_id)
            if index == -1:
                logger.info(f"Face with ID {face_id} not found.")
                return RemoveResult.NOT_FOUND

            if not confirm(f"Are you sure you want to delete the face with ID {face_id}?"):
                logger.info("Deletion cancelled.")
                return RemoveResult.CANCELLED

            records = self._records[:index] + self._records[index + 1 :]
            self._persist(records)
        logger.info(f"Face with ID {face_id} removed.")
        return RemoveResult.REMOVED
