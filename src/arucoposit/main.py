"""
Main entry point for arucoposit.

Detects markers in an image file and optionally estimates their pose.

Usage:
    arucoposit frame.png                    # List detected markers
    arucoposit frame.png --pose             # Add best/alternative poses
    arucoposit frame.png --verbose          # Enable debug logging
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import cv2

from .marker_detect import MarkerDetector
from .pose import Pose, Posit, PositConfig, image_to_camera_points
from .utils import get_config, setup_logging, validate_config

LOGGER = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Detect square fiducial markers and estimate their pose",
    )
    parser.add_argument("image", help="Path to the input image")
    parser.add_argument("--config", "-c", help="JSON configuration file")
    parser.add_argument("--model-size", type=float, help="Marker side length (overrides config)")
    parser.add_argument("--focal-length", type=float, help="Focal length in pixels (overrides config)")
    parser.add_argument("--pose", "-p", action="store_true", help="Estimate the pose of every marker")
    parser.add_argument("--verbose", "-V", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _hypothesis_dict(hypothesis) -> dict:
    return {
        "rotation": hypothesis.rotation.tolist(),
        "translation": hypothesis.translation.tolist(),
        "error": {
            "euclidean": hypothesis.error.euclidean,
            "pixels": hypothesis.error.pixels,
            "maximum": hypothesis.error.maximum,
        },
    }


def pose_to_dict(pose: Pose) -> dict:
    """Serialize both hypotheses of a pose."""
    return {
        "best": _hypothesis_dict(pose.best),
        "alternative": _hypothesis_dict(pose.alternative),
    }


def run(args: argparse.Namespace) -> int:
    config = get_config(args.config)
    if args.model_size is not None:
        config["posit"]["model_size"] = args.model_size
    if args.focal_length is not None:
        config["posit"]["focal_length"] = args.focal_length
    if not validate_config(config):
        return 2

    frame = cv2.imread(args.image, cv2.IMREAD_COLOR)
    if frame is None:
        LOGGER.error("Could not read image: %s", args.image)
        return 1

    height, width = frame.shape[:2]
    detector_config = dict(config["detector"], color_order="bgr")
    detector = MarkerDetector(detector_config)
    markers = detector.detect(frame)
    LOGGER.info("Detected %d marker(s) in %s", len(markers), args.image)

    posit = None
    if args.pose:
        posit_config = config["posit"]
        posit = Posit(
            posit_config["model_size"],
            posit_config.get("focal_length") or width,
            config=PositConfig(
                max_iterations=posit_config.get("max_iterations", 100),
                convergence_delta=posit_config.get("convergence_delta", 0.01),
            ),
        )

    for marker in markers:
        record = {"id": marker.id, "corners": marker.as_array().tolist()}
        if posit is not None:
            corners = image_to_camera_points(marker.corners, width, height)
            record["pose"] = pose_to_dict(posit.pose(corners))
        print(json.dumps(record))

    return 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    try:
        status = run(args)
    except Exception as e:
        LOGGER.exception("Application error: %s", e)
        sys.exit(1)

    sys.exit(status)


if __name__ == "__main__":
    main()
