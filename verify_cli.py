#!/usr/bin/env python
"""
CLI for inspecting biometric captures offline.

Usage:
    python verify_cli.py quality --image path/to/frame.jpg
    python verify_cli.py liveness --image f1.jpg --image f2.jpg --image f3.jpg
    python verify_cli.py compare --probe probe.json --reference reference.yaml
    python verify_cli.py compare --probe probe.npy --reference ref.npy --threshold 0.6 --json
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


def _setup_django():
    """Initialise Django so threshold settings resolve outside a server."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "attendance_verification.settings")
    import django

    django.setup()


def load_image(image_path: Path):
    import cv2

    frame = cv2.imread(str(image_path))
    if frame is None:
        raise ValueError(f"Unable to decode image: {image_path}")
    return frame


def load_descriptor(path: Path):
    """Load a descriptor from ``.npy`` or a JSON/YAML list (or ``{descriptor: [...]}``)."""
    import numpy as np

    if path.suffix == ".npy":
        return np.load(path, allow_pickle=False)
    with open(path, "r") as f:
        # JSON is a subset of YAML, so one loader covers both.
        return yaml.safe_load(f)


def run_quality(image_path: Path) -> dict:
    from biometrics.detection import HaarFaceDetector
    from biometrics.multi_face import evaluate_detections
    from biometrics.quality import assess, quality_feedback, summarise

    frame = load_image(image_path)
    detections = HaarFaceDetector().detect(frame)
    faces = evaluate_detections(detections)
    primary = max(detections, key=lambda d: d.width * d.height) if detections else None
    metrics = assess(frame, primary)
    return {
        "image_path": str(image_path),
        "faces": faces.count,
        "multiple_faces": faces.multiple_faces,
        "quality": summarise(metrics),
        "feedback": quality_feedback(metrics),
    }


def run_liveness(image_paths) -> dict:
    from biometrics.detection import HaarFaceDetector
    from biometrics.liveness import check_liveness

    frames = [load_image(path) for path in image_paths]
    detections = HaarFaceDetector().detect(frames[-1])
    region = detections[0].as_region() if len(detections) == 1 else None
    result = check_liveness(frames, face_region=region)
    return {"images": [str(path) for path in image_paths], "liveness": result.to_dict()}


def run_compare(probe_path: Path, reference_path: Path, threshold=None) -> dict:
    from biometrics.orchestrator import match_descriptors

    outcome = match_descriptors(
        load_descriptor(probe_path), load_descriptor(reference_path), threshold
    )
    result = outcome.to_dict()
    result.update({"probe": str(probe_path), "reference": str(reference_path)})
    return result


def _format_human(command: str, result: dict) -> str:
    lines = ["=" * 60, f"Biometric {command}", "=" * 60]
    if command == "quality":
        quality = result["quality"]
        lines.extend([
            f"Image: {result['image_path']}",
            f"Faces: {result['faces']}{' (multiple!)' if result['multiple_faces'] else ''}",
            f"Score: {quality['score']:.3f}",
            f"Lighting: {quality['lighting']}  Sharpness: {quality['sharpness']}",
            f"Angle: {quality['angle']}  Size: {quality['size']}  Position: {quality['position']}",
            "",
            f"Feedback: {'; '.join(result['feedback']) or 'Looks good'}",
        ])
    elif command == "liveness":
        liveness = result["liveness"]
        lines.extend([
            f"Frames analysed: {liveness['frames_analyzed']}",
            f"Confidence: {liveness['confidence']:.3f}",
            f"Live (advisory): {'Yes' if liveness['is_live'] else 'No'}",
        ])
    else:
        similarity = result["similarity"]
        lines.extend([
            f"Probe: {result['probe']}",
            f"Reference: {result['reference']}",
            f"Similarity: {similarity:.4f}" if similarity is not None else "Similarity: n/a",
            f"Threshold: {result['threshold']:.4f}",
            "",
            f"Verified: {'Yes' if result['verified'] else 'No'}",
        ])
        if result["reason"]:
            lines.append(f"Reason: {result['reason']}")
    lines.append("=" * 60)
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Offline biometric capture inspection")
    parser.add_argument("--json", action="store_true", help="Output results as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    quality = subparsers.add_parser("quality", help="Assess capture quality of an image")
    quality.add_argument("--image", type=str, required=True, help="Path to input image")

    liveness = subparsers.add_parser("liveness", help="Advisory liveness over a frame burst")
    liveness.add_argument(
        "--image", type=str, action="append", required=True, help="Frame path (repeat, in order)"
    )

    compare = subparsers.add_parser("compare", help="Compare two stored descriptors")
    compare.add_argument("--probe", type=str, required=True, help="Probe descriptor file")
    compare.add_argument("--reference", type=str, required=True, help="Reference descriptor file")
    compare.add_argument(
        "--threshold", type=float, default=None, help="Match threshold (default: settings)"
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    paths = []
    if args.command == "quality":
        paths = [Path(args.image)]
    elif args.command == "liveness":
        paths = [Path(image) for image in args.image]
    else:
        paths = [Path(args.probe), Path(args.reference)]

    for path in paths:
        if not path.exists():
            logger.error("File not found", extra={"event": "file_missing", "path": str(path)})
            return 1

    _setup_django()

    if args.command == "quality":
        result = run_quality(paths[0])
    elif args.command == "liveness":
        result = run_liveness(paths)
    else:
        result = run_compare(paths[0], paths[1], threshold=args.threshold)

    log_context = {"event": f"cli_{args.command}", "format": "json" if args.json else "human"}
    if args.json:
        logger.info(json.dumps(result, indent=2, default=str), extra=log_context)
    else:
        logger.info(_format_human(args.command, result), extra=log_context)

    if args.command == "compare":
        return 0 if result["verified"] else 2
    return 0


if __name__ == "__main__":
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    sys.exit(main())
