"""Live face + object detection over a webcam feed.

Keys in the preview window: q quit, r restart capture, c switch camera.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time

import cv2

from facelens.errors import MediaAccessDenied
from facelens.face.matcher import MatcherConfig
from facelens.face.sources import InsightFaceEmbeddingSource
from facelens.objects.sources import RemoteObjectSource, UltralyticsObjectSource
from facelens.session import DetectionSession
from facelens.utils.log import get_logger
from facelens.utils.serializer import serialize_probe
from facelens.video.camera import Camera, CameraConfig
from facelens.video.loop import LoopConfig
from facelens.video.overlay import draw_summary, render, summary_lines

logger = get_logger(__name__)

WINDOW = "Face Detection & Object Detection"


def build_object_source(args):
    if args.object_source == "yolo":
        return UltralyticsObjectSource(weights_path=args.yolo_weights, device=args.device, conf=args.object_conf)
    if args.object_source == "remote":
        if not args.remote_url:
            raise SystemExit("--remote-url is required with --object-source remote")
        return RemoteObjectSource(args.remote_url)
    return None


def build_session(args) -> DetectionSession:
    return DetectionSession(
        camera=Camera(CameraConfig(index=args.camera)),
        face_source=InsightFaceEmbeddingSource(det_size=args.det_size, device=args.device),
        object_source=build_object_source(args),
        storage=args.storage,
        matcher_config=MatcherConfig(threshold=args.threshold),
        loop_config=LoopConfig(face_interval=args.face_interval, object_interval=args.object_interval),
    )


async def display(session: DetectionSession) -> None:
    """Show the latest frame with the latest results until 'q' is pressed."""
    loop = session.loop
    while loop.running:
        frame = loop.latest_frame
        if frame is not None:
            vis = render(frame.copy(), loop.latest_faces, loop.latest_objects)
            draw_summary(vis, summary_lines(loop.latest_faces, loop.latest_objects))
            cv2.imshow(WINDOW, vis)

        key = cv2.waitKey(1) & 0xFF
        if key == ord("q"):
            loop.stop()
            break
        if key == ord("r"):
            await asyncio.to_thread(session.restart_capture)
        elif key == ord("c"):
            try:
                index = await asyncio.to_thread(session.switch_camera)
                logger.info(f"Switched to camera {index}")
            except MediaAccessDenied as e:
                logger.warning(str(e))
        await asyncio.sleep(0.015)
    cv2.destroyAllWindows()


async def run_live(session: DetectionSession) -> None:
    try:
        session.camera.open()
        runner = asyncio.create_task(session.loop.run())
        # let run() flip the running flag before the display task checks it
        await asyncio.sleep(0)
        await display(session)
        await runner
    finally:
        await session.aclose()


async def run_image(session: DetectionSession, image_path: str, output_path: str, output_json: str) -> None:
    image = cv2.imread(image_path)
    if image is None:
        raise ValueError(f"Cannot read image: {image_path}")
    try:
        faces, objects = await session.loop.annotate_frame(image)
    finally:
        await session.aclose()

    vis = render(image.copy(), faces, objects)
    draw_summary(vis, summary_lines(faces, objects))
    if output_path:
        cv2.imwrite(output_path, vis)
        logger.info(f"Annotated image saved to: {output_path}")

    result = {
        "image": image_path,
        "faces": [serialize_probe(lf.probe, lf.identity) for lf in (faces.faces if faces else [])],
        "objects": objects.counts if objects else {},
    }
    if output_json:
        with open(output_json, "w", encoding="utf-8") as f:
            json.dump(result, f, ensure_ascii=False, indent=2)
    for line in summary_lines(faces, objects):
        logger.info(line)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Live face and object detection over a webcam feed")
    parser.add_argument("--camera", type=int, default=0, help="camera index (default 0)")
    parser.add_argument("--storage", default=None, help="gallery storage file (default ~/.facelens/storage.json)")
    parser.add_argument("--threshold", "-t", type=float, default=0.6, help="face match distance threshold")
    parser.add_argument("--det-size", type=int, default=640, help="InsightFace det_size (default 640)")
    parser.add_argument("--device", default="auto", choices=["auto", "cpu", "gpu"], help="compute device")
    parser.add_argument(
        "--object-source", default="yolo", choices=["yolo", "remote", "none"], help="object detector to use"
    )
    parser.add_argument("--remote-url", default=None, help="inference endpoint for --object-source remote")
    parser.add_argument("--yolo-weights", default="yolo11n.pt", help="Ultralytics YOLO weights")
    parser.add_argument("--object-conf", type=float, default=0.25, help="object confidence threshold")
    parser.add_argument("--face-interval", type=float, default=0.0, help="seconds between face detections")
    parser.add_argument("--object-interval", type=float, default=0.0, help="seconds between object detections")
    parser.add_argument("--image", default=None, help="annotate a still image instead of the webcam")
    parser.add_argument("--output", "-o", default=None, help="annotated image path (with --image)")
    parser.add_argument("--output-json", "-j", default=None, help="detection JSON path (with --image)")
    args = parser.parse_args(argv)

    session = build_session(args)
    try:
        if args.image:
            asyncio.run(run_image(session, args.image, args.output, args.output_json))
        else:
            asyncio.run(run_live(session))
    except MediaAccessDenied as e:
        logger.error(f"Error accessing webcam: {e}")
        return 1
    return 0


if __name__ == "__main__":
    st = time.time()
    code = main()
    logger.info(f"Total time: {time.time() - st:.2f}s")
    sys.exit(code)
