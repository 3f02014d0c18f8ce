"""
arucoposit - square fiducial marker detection and pose estimation.

This package provides functionality for:
- Image operations (grayscale, adaptive/Otsu thresholding, perspective warp)
- Contour extraction and polygon approximation
- Marker candidate selection and ID decoding
- Coplanar POSIT pose estimation with dual hypotheses
"""

from .contours import Contour, Point, find_contours
from .imgproc import adaptive_threshold, grayscale, otsu, stack_box_blur, threshold, warp
from .marker_detect import Detector, DetectorConfig, Marker, MarkerDetector, marker_bits, marker_image
from .polygon import approx_poly_dp, is_contour_convex, min_edge_length, perimeter
from .pose import (
    DegenerateModelError,
    Pose,
    PoseError,
    PoseHypothesis,
    Posit,
    PositConfig,
    image_to_camera_points,
)

__version__ = "0.1.0"

__all__ = [
    # Image operations
    "adaptive_threshold",
    "grayscale",
    "otsu",
    "stack_box_blur",
    "threshold",
    "warp",
    # Contours & polygons
    "Contour",
    "Point",
    "find_contours",
    "approx_poly_dp",
    "is_contour_convex",
    "min_edge_length",
    "perimeter",
    # Markers
    "Detector",
    "DetectorConfig",
    "Marker",
    "MarkerDetector",
    "marker_bits",
    "marker_image",
    # Pose
    "DegenerateModelError",
    "Pose",
    "PoseError",
    "PoseHypothesis",
    "Posit",
    "PositConfig",
    "image_to_camera_points",
]
