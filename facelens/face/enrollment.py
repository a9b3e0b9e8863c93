from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from facelens.config import DEFAULT_SUBMIT_URL
from facelens.errors import NameRequired, SubmitFailure
from facelens.face.matcher import FirstUnderThreshold, ScanPolicy
from facelens.face.store import FaceGalleryStore
from facelens.face.types import FaceRecord, ProbeFace
from facelens.utils.log import get_logger
from facelens.utils.math import as_embedding
from facelens.utils.serializer import serialize_record

logger = get_logger(__name__)


@dataclass
class EnrollmentConfig:
    # A capture closer than this to an enrolled face overwrites it instead of adding a new one.
    similarity_threshold: float = 0.7
    # Gallery size at which capturing stops and the gallery is ready to submit.
    capacity: int = 5
    submit_url: str = DEFAULT_SUBMIT_URL
    submit_timeout: float = 10.0


class EnrollmentStatus(Enum):
    """Outcome of one capture.

    `EnrollmentController.enroll` only returns INSERTED or REPLACED; a blank name
    raises `NameRequired` there. REJECTED, NO_FACE and READY_TO_SUBMIT come from
    `DetectionSession.enroll`, which turns those cases into results for the UI.
    """

    INSERTED = "inserted"
    REPLACED = "replaced"
    REJECTED = "rejected"
    NO_FACE = "no_face"
    READY_TO_SUBMIT = "ready_to_submit"


class CaptureState(Enum):
    CAPTURING = "capturing"
    READY_TO_SUBMIT = "ready_to_submit"


@dataclass(frozen=True)
class EnrollmentResult:
    status: EnrollmentStatus
    index: Optional[int] = None
    record: Optional[FaceRecord] = None
    reason: Optional[str] = None


class EnrollmentController:
    """Inserts or overwrites gallery records from single captures.

    Capacity is not enforced by `enroll`; callers check `is_full` and switch to
    submitting once the gallery holds `capacity` faces.
    """

    def __init__(
        self,
        store: FaceGalleryStore,
        config: Optional[EnrollmentConfig] = None,
        policy: Optional[ScanPolicy] = None,
    ):
        self.store = store
        self.config = config or EnrollmentConfig()
        self.policy = policy or FirstUnderThreshold()

    @property
    def is_full(self) -> bool:
        return len(self.store) >= int(self.config.capacity)

    @property
    def state(self) -> CaptureState:
        return CaptureState.READY_TO_SUBMIT if self.is_full else CaptureState.CAPTURING

    def enroll(self, name: str, probe: ProbeFace, image: str = "") -> EnrollmentResult:
        if name is None or not str(name).strip():
            raise NameRequired("Enter face name first")

        embedding = as_embedding(probe.embedding if probe is not None else None)
        if embedding is None:
            raise ValueError("probe face has no embedding")

        gallery = self.store.snapshot()
        similar = self.policy.select(
            embedding, gallery, float(self.config.similarity_threshold), require_name=False
        )

        if similar is not None:
            logger.info(f"Same face exists as #{similar.record.id} (distance {similar.distance:.3f}), overwriting")
            record = FaceRecord(id=similar.record.id, name=str(name), embedding=embedding, image=image)
            self.store.replace_at(similar.index, record)
            return EnrollmentResult(status=EnrollmentStatus.REPLACED, index=similar.index, record=record)

        record = FaceRecord(id=self.store.next_id(), name=str(name), embedding=embedding, image=image)
        self.store.append(record)
        return EnrollmentResult(status=EnrollmentStatus.INSERTED, index=len(gallery), record=record)

    def submit(self, client: Optional[httpx.Client] = None) -> Any:
        """POST the whole gallery to the training server and return its JSON reply."""
        payload = {"trainedFaces": [serialize_record(r) for r in self.store.snapshot()]}
        own_client = client is None
        if own_client:
            client = httpx.Client(timeout=self.config.submit_timeout)
        try:
            logger.info(f"Submitting {len(payload['trainedFaces'])} faces to {self.config.submit_url}")
            response = client.post(self.config.submit_url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise SubmitFailure(f"server answered {e.response.status_code}: {e.response.text}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SubmitFailure(f"error sending data to server: {e}") from e
        finally:
            if own_client:
                client.close()
