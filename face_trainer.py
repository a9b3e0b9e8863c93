"""Face training CLI: enroll faces from the webcam and manage the local gallery."""

from __future__ import annotations

import argparse
import asyncio
import sys

from facelens.errors import MediaAccessDenied, SubmitFailure
from facelens.face.enrollment import EnrollmentConfig, EnrollmentStatus
from facelens.face.store import GalleryConfig
from facelens.session import DetectionSession
from facelens.utils.log import get_logger
from facelens.video.camera import Camera, CameraConfig

logger = get_logger(__name__)


def confirm_on_tty(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def cmd_enroll(session: DetectionSession, args) -> int:
    async def _run():
        try:
            session.camera.open()
            # Webcams often hand out dark frames right after opening.
            for _ in range(max(0, args.warmup_frames)):
                await asyncio.to_thread(session.camera.read)
            return await session.enroll(args.name)
        finally:
            await session.aclose()

    result = asyncio.run(_run())
    if result.status in (EnrollmentStatus.INSERTED, EnrollmentStatus.REPLACED):
        rec = result.record
        logger.info(f"{result.status.value}: #{rec.id} {rec.name} (position {result.index})")
        if session.controller.is_full:
            logger.info("Gallery is full, run `face_trainer.py submit` to send it to the server")
        return 0
    if result.status == EnrollmentStatus.READY_TO_SUBMIT:
        logger.info("Gallery is full, run `face_trainer.py submit` to send it to the server")
        return 0
    logger.warning(f"Nothing enrolled: {result.reason}")
    return 2


def cmd_list(session: DetectionSession, args) -> int:
    records = session.store.snapshot()
    if not records:
        print("No trained faces.")
        return 0
    for rec in records:
        print(f"{rec.id:>4}  {rec.name:<24} dim={rec.embedding.shape[0]}")
    print(f"{len(records)}/{session.controller.config.capacity} faces ({session.controller.state.value})")
    return 0


def cmd_delete(session: DetectionSession, args) -> int:
    confirm = (lambda _prompt: True) if args.yes else confirm_on_tty
    result = session.delete(args.id, confirm)
    print(result.value)
    return 0 if result else 1


def cmd_submit(session: DetectionSession, args) -> int:
    try:
        reply = session.submit()
    except SubmitFailure as e:
        logger.error(str(e))
        return 1
    print(reply)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Register named faces into the local gallery")
    parser.add_argument("--storage", default=None, help="gallery storage file (default ~/.facelens/storage.json)")
    parser.add_argument("--capacity", type=int, default=5, help="faces to collect before submitting")
    parser.add_argument("--similarity-threshold", type=float, default=0.7, help="distance under which a capture overwrites")
    parser.add_argument("--submit-url", default=None, help="training server endpoint")
    parser.add_argument(
        "--legacy-ids", action="store_true", help="assign ids as gallery length + 1 instead of a durable counter"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_enroll = sub.add_parser("enroll", help="capture one face from the webcam")
    p_enroll.add_argument("name")
    p_enroll.add_argument("--camera", type=int, default=0)
    p_enroll.add_argument("--device", default="auto", choices=["auto", "cpu", "gpu"])
    p_enroll.add_argument("--warmup-frames", type=int, default=5)
    p_enroll.set_defaults(func=cmd_enroll)

    p_list = sub.add_parser("list", help="show enrolled faces")
    p_list.set_defaults(func=cmd_list)

    p_delete = sub.add_parser("delete", help="delete a face by id")
    p_delete.add_argument("id", type=int)
    p_delete.add_argument("--yes", "-y", action="store_true", help="skip the confirmation prompt")
    p_delete.set_defaults(func=cmd_delete)

    p_submit = sub.add_parser("submit", help="send the gallery to the training server")
    p_submit.set_defaults(func=cmd_submit)

    args = parser.parse_args(argv)

    enrollment_config = EnrollmentConfig(capacity=args.capacity, similarity_threshold=args.similarity_threshold)
    if args.submit_url:
        enrollment_config.submit_url = args.submit_url

    face_source = None
    camera = Camera(CameraConfig(index=getattr(args, "camera", 0)))
    if args.command == "enroll":
        from facelens.face.sources import InsightFaceEmbeddingSource

        face_source = InsightFaceEmbeddingSource(device=args.device)

    session = DetectionSession(
        camera=camera,
        face_source=face_source,
        storage=args.storage,
        gallery_config=GalleryConfig(durable_ids=not args.legacy_ids),
        enrollment_config=enrollment_config,
    )
    try:
        return args.func(session, args)
    except MediaAccessDenied as e:
        logger.error(f"Error accessing webcam: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
