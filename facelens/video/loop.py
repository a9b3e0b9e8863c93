"""Live annotation loop.

Two independent asyncio tasks, one per detection surface (faces, objects).
Each task grabs the current frame, awaits its source, publishes the result and
reschedules itself after a fixed delay. The face task reads a fresh gallery
snapshot every tick, so enrollments and deletions made between ticks show up
on the next one without any locking.
"""

from __future__ import annotations

import asyncio
import time

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from facelens.errors import SourceFailure
from facelens.face.matcher import IdentityMatcher
from facelens.face.sources import EmbeddingSource
from facelens.face.store import FaceGalleryStore
from facelens.objects.sources import ObjectSource
from facelens.utils.log import get_logger
from facelens.video.overlay import FaceAnnotation, LabeledFace, ObjectAnnotation

logger = get_logger(__name__)

FrameReader = Callable[[], Optional[np.ndarray]]
FaceSink = Callable[[FaceAnnotation], None]
ObjectSink = Callable[[ObjectAnnotation], None]


@dataclass
class LoopConfig:
    # Delay between ticks in seconds; 0 only yields to the event loop.
    face_interval: float = 0.0
    object_interval: float = 0.0


class AnnotationLoop:
    def __init__(
        self,
        read_frame: FrameReader,
        face_source: Optional[EmbeddingSource],
        object_source: Optional[ObjectSource],
        matcher: IdentityMatcher,
        store: FaceGalleryStore,
        config: Optional[LoopConfig] = None,
        on_faces: Optional[FaceSink] = None,
        on_objects: Optional[ObjectSink] = None,
    ):
        self.read_frame = read_frame
        self.face_source = face_source
        self.object_source = object_source
        self.matcher = matcher
        self.store = store
        self.config = config or LoopConfig()
        self.on_faces = on_faces
        self.on_objects = on_objects

        self.latest_frame: Optional[np.ndarray] = None
        self.latest_faces: Optional[FaceAnnotation] = None
        self.latest_objects: Optional[ObjectAnnotation] = None
        self.failed_ticks = 0

        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def _grab(self) -> Optional[np.ndarray]:
        frame = await asyncio.to_thread(self.read_frame)
        if frame is not None:
            self.latest_frame = frame
        return frame

    def label_faces(self, probes) -> FaceAnnotation:
        gallery = self.store.snapshot()
        faces = [LabeledFace(probe=p, identity=self.matcher.match(p, gallery)) for p in probes]
        return FaceAnnotation(faces=faces, timestamp=time.time())

    async def face_tick(self, frame: Optional[np.ndarray] = None) -> Optional[FaceAnnotation]:
        if self.face_source is None:
            return None
        if frame is None:
            frame = await self._grab()
        if frame is None:
            logger.debug("No frame available for face detection")
            return None
        try:
            probes = await self.face_source.detect(frame)
        except SourceFailure as e:
            self.failed_ticks += 1
            logger.warning(f"Face detection failed, skipping frame: {e}")
            return None

        annotation = self.label_faces(probes)
        self.latest_faces = annotation
        if self.on_faces is not None:
            self.on_faces(annotation)
        return annotation

    async def object_tick(self, frame: Optional[np.ndarray] = None) -> Optional[ObjectAnnotation]:
        if self.object_source is None:
            return None
        if frame is None:
            frame = await self._grab()
        if frame is None:
            logger.debug("No frame available for object detection")
            return None
        try:
            detections = await self.object_source.detect(frame)
        except SourceFailure as e:
            self.failed_ticks += 1
            logger.warning(f"Object detection failed, skipping frame: {e}")
            return None

        annotation = ObjectAnnotation(detections=list(detections), timestamp=time.time())
        self.latest_objects = annotation
        if self.on_objects is not None:
            self.on_objects(annotation)
        return annotation

    async def _repeat(self, tick, interval: float, max_ticks: Optional[int]) -> None:
        done = 0
        while self._running and (max_ticks is None or done < max_ticks):
            try:
                await tick()
            except Exception:
                # CancelledError is not an Exception subclass, so stop() still ends the task.
                self.failed_ticks += 1
                logger.exception(f"Unexpected error in {tick.__name__}, skipping frame")
            done += 1
            await asyncio.sleep(max(0.0, float(interval)))

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """Run both loops until `stop()` (or until each has run `max_ticks` ticks)."""
        self._running = True
        self._tasks = []
        if self.face_source is not None:
            self._tasks.append(asyncio.create_task(self._repeat(self.face_tick, self.config.face_interval, max_ticks)))
        if self.object_source is not None:
            self._tasks.append(
                asyncio.create_task(self._repeat(self.object_tick, self.config.object_interval, max_ticks))
            )
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            self._tasks = []

    def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()

    async def annotate_frame(self, frame: np.ndarray):
        """One face + object pass over a still frame."""
        faces = await self.face_tick(frame)
        objects = await self.object_tick(frame)
        return faces, objects
