"""User-facing controls over one camera and one gallery.

`DetectionSession` wires camera, sources, gallery store, matcher, enrollment
controller and the live loop together. The CLIs only talk to this class.
"""

from __future__ import annotations

import asyncio

from pathlib import Path
from typing import Optional, Union

import httpx

from facelens.config import DEFAULT_STORAGE_PATH
from facelens.errors import NameRequired
from facelens.face.enrollment import EnrollmentConfig, EnrollmentController, EnrollmentResult, EnrollmentStatus
from facelens.face.matcher import IdentityMatcher, MatcherConfig
from facelens.face.sources import EmbeddingSource
from facelens.face.store import ConfirmFn, FaceGalleryStore, GalleryConfig, RemoveResult
from facelens.objects.sources import ObjectSource
from facelens.storage import JsonFileStorage, Storage
from facelens.utils.image import thumbnail_data_url
from facelens.utils.log import get_logger
from facelens.video.camera import Camera
from facelens.video.loop import AnnotationLoop, LoopConfig

logger = get_logger(__name__)


class DetectionSession:
    def __init__(
        self,
        camera: Camera,
        face_source: Optional[EmbeddingSource],
        object_source: Optional[ObjectSource] = None,
        storage: Union[Storage, str, Path, None] = None,
        gallery_config: Optional[GalleryConfig] = None,
        matcher_config: Optional[MatcherConfig] = None,
        enrollment_config: Optional[EnrollmentConfig] = None,
        loop_config: Optional[LoopConfig] = None,
    ):
        if storage is None:
            storage = DEFAULT_STORAGE_PATH
        if isinstance(storage, (str, Path)):
            storage = JsonFileStorage(storage)

        self.camera = camera
        self.face_source = face_source
        self.object_source = object_source
        self.store = FaceGalleryStore(storage, gallery_config)
        self.matcher = IdentityMatcher(matcher_config)
        self.controller = EnrollmentController(self.store, enrollment_config)
        self.loop = AnnotationLoop(
            read_frame=self.camera.read,
            face_source=face_source,
            object_source=object_source,
            matcher=self.matcher,
            store=self.store,
            config=loop_config,
        )

    async def enroll(self, name: str) -> EnrollmentResult:
        """Capture one frame and enroll its first face under `name`."""
        if self.controller.is_full:
            logger.info(f"Gallery holds {len(self.store)} faces, ready to submit")
            return EnrollmentResult(status=EnrollmentStatus.READY_TO_SUBMIT)
        if name is None or not name.strip():
            logger.warning("Enter face name first")
            return EnrollmentResult(status=EnrollmentStatus.REJECTED, reason="NameRequired")
        if self.face_source is None:
            raise RuntimeError("enrollment needs a face source")

        frame = await asyncio.to_thread(self.camera.read)
        if frame is None:
            return EnrollmentResult(status=EnrollmentStatus.NO_FACE, reason="no frame from camera")
        probes = await self.face_source.detect(frame)
        probes = [p for p in probes if p.embedding is not None]
        if not probes:
            logger.info("No face detected, nothing enrolled")
            return EnrollmentResult(status=EnrollmentStatus.NO_FACE, reason="no face detected")

        probe = probes[0]
        image = thumbnail_data_url(frame, probe.box)
        try:
            return self.controller.enroll(name, probe, image=image)
        except NameRequired as e:
            logger.warning(str(e))
            return EnrollmentResult(status=EnrollmentStatus.REJECTED, reason="NameRequired")

    def delete(self, face_id: int, confirm: ConfirmFn) -> RemoveResult:
        return self.store.remove_by_id(int(face_id), confirm)

    def restart_capture(self) -> None:
        self.camera.reopen()

    def switch_camera(self, index: Optional[int] = None) -> int:
        return self.camera.switch(index)

    def submit(self, client: Optional[httpx.Client] = None):
        return self.controller.submit(client)

    async def aclose(self) -> None:
        self.loop.stop()
        if self.face_source is not None:
            self.face_source.close()
        if self.object_source is not None:
            await self.object_source.aclose()
        self.camera.close()
