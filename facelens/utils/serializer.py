from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from facelens.errors import PersistenceReadFailure
from facelens.face.types import FaceRecord, ProbeFace


def serialize_record(record: FaceRecord) -> Dict:
    """Serialize a FaceRecord into the persisted JSON layout."""
    return {
        "id": int(record.id),
        "name": str(record.name),
        "descriptor": [float(x) for x in np.asarray(record.embedding, dtype=np.float32).reshape(-1)],
        "image": str(record.image or ""),
    }


def _decode_descriptor(raw: Any) -> np.ndarray:
    # Typed arrays serialize as {"0": v0, "1": v1, ...}; order by index, not by key order.
    if isinstance(raw, Mapping):
        try:
            items = sorted(((int(k), v) for k, v in raw.items()), key=lambda kv: kv[0])
        except (TypeError, ValueError) as e:
            raise PersistenceReadFailure(f"descriptor keys are not indices: {e}") from e
        values = [v for _, v in items]
    elif isinstance(raw, (list, tuple)):
        values = list(raw)
    else:
        raise PersistenceReadFailure(f"descriptor has unsupported type {type(raw).__name__}")

    try:
        return np.asarray([float(v) for v in values], dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise PersistenceReadFailure(f"descriptor is not numeric: {e}") from e


def deserialize_record(data: Any) -> FaceRecord:
    """Inverse of `serialize_record`. Accepts `embedding` as an alias of `descriptor`."""
    if not isinstance(data, Mapping):
        raise PersistenceReadFailure(f"record is not an object: {data!r:.60}")
    if "id" not in data:
        raise PersistenceReadFailure("record has no id")
    raw = data.get("descriptor", data.get("embedding"))
    if raw is None:
        raise PersistenceReadFailure(f"record {data.get('id')!r} has no descriptor")
    try:
        face_id = int(data["id"])
    except (TypeError, ValueError, OverflowError) as e:
        raise PersistenceReadFailure(f"record id is not an integer: {data['id']!r}") from e

    name = data.get("name")
    image = data.get("image")
    return FaceRecord(
        id=face_id,
        name="" if name is None else str(name),
        embedding=_decode_descriptor(raw),
        image="" if image is None else str(image),
    )


def deserialize_gallery(data: Any) -> List[FaceRecord]:
    if not isinstance(data, list):
        raise PersistenceReadFailure(f"gallery is not an array but {type(data).__name__}")
    return [deserialize_record(item) for item in data]


def serialize_probe(probe: ProbeFace, identity: Optional[str] = None) -> Dict:
    """Serialize a detected face into JSON-safe form (embedding replaced by its norm)."""
    out: Dict[str, Any] = {
        "bbox": probe.box.to_xyxy(),
        "age": None if probe.age is None else int(probe.age),
        "gender": probe.gender,
        "expression": probe.top_expression,
    }
    if identity is not None:
        out["identity"] = identity
    if probe.embedding is not None:
        out["embedding_norm"] = float(np.linalg.norm(probe.embedding))
    return out
