"""Key-value persistence backends for the face gallery.

Values are strings (JSON documents), mirroring the browser storage the gallery
layout was designed for.
"""

from __future__ import annotations

import json
import os
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from facelens.errors import PersistenceReadFailure
from facelens.utils.log import get_logger

logger = get_logger(__name__)


class Storage(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store `value` durably before returning."""

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage(Storage):
    """All keys in a single JSON object file.

    Every `set`/`remove` rewrites the file through a temp file and `os.replace`,
    so a crash leaves either the old or the new document on disk.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceReadFailure(f"cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceReadFailure(f"{self.path} does not hold a JSON object")
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in data.items()}

    def _read_for_update(self) -> Dict[str, str]:
        try:
            return self._read()
        except PersistenceReadFailure as e:
            logger.warning(f"Discarding unreadable storage file: {e}")
            return {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_for_update()
            data[key] = str(value)
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_for_update()
            if key in data:
                del data[key]
                self._write(data)
