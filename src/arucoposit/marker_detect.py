"""
Marker detection module.

Finds square fiducial markers in a frame and decodes their IDs:

1. Grayscale conversion and adaptive thresholding
2. Contour extraction and polygon approximation
3. Candidate selection (convex quads, clockwise winding, duplicate removal)
4. Decoding of the 7x7 cell grid (black border + 5x5 payload) against the
   four-row codebook, resolving the marker rotation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .contours import Contour, Point, find_contours
from .imgproc import adaptive_threshold, count_non_zero, grayscale, otsu, threshold, warp
from .polygon import approx_poly_dp, is_contour_convex, min_edge_length, perimeter

LOGGER = logging.getLogger(__name__)

# Valid payload rows. The two data bits of a row are its columns 1 and 3,
# so row ``CODEBOOK[v]`` encodes the value v.
CODEBOOK = np.array(
    [
        [1, 0, 0, 0, 0],
        [1, 0, 1, 1, 1],
        [0, 1, 0, 0, 1],
        [0, 1, 1, 1, 0],
    ],
    dtype=np.uint8,
)

GRID_CELLS = 7
PAYLOAD_CELLS = 5
MAX_MARKER_ID = (1 << (2 * PAYLOAD_CELLS)) - 1


@dataclass
class Marker:
    """A decoded marker: its ID and corners ordered from its top-left, clockwise."""

    id: int
    corners: List[Point]

    def as_array(self) -> np.ndarray:
        """Return corners as a (4, 2) float array."""
        return np.array(self.corners, dtype=np.float64).reshape(4, 2)


@dataclass
class DetectorConfig:
    """Configuration for marker detection."""

    adaptive_kernel_size: int = 2  # Blur radius of the adaptive threshold
    adaptive_delta: int = 7  # Darkness below local mean to count as foreground
    min_size_fraction: float = 0.20  # Min contour points, as a fraction of image width
    epsilon_fraction: float = 0.05  # Polygon tolerance, as a fraction of contour points
    min_edge_length: float = 10.0  # Pixels
    min_distance: float = 10.0  # Mean corner distance below which candidates are duplicates
    warp_size: int = 49  # Side of the canonical marker image
    color_order: str = "rgb"  # "rgb" or "bgr" (OpenCV frames)


def hamming_distance(bits: np.ndarray) -> int:
    """Sum over rows of the mismatch count against the closest codebook row."""
    bits = np.asarray(bits, dtype=np.uint8)
    mismatches = (bits[:, None, :] != CODEBOOK[None, :, :]).sum(axis=2)
    return int(mismatches.min(axis=1).sum())


def rotate_bits(bits: np.ndarray) -> np.ndarray:
    """Rotate a square bit matrix a quarter turn clockwise."""
    return np.rot90(np.asarray(bits), k=-1).copy()


def bits_to_id(bits: np.ndarray) -> int:
    """Interleave columns 1 and 3 of each row, first row most significant."""
    marker_id = 0
    for row in np.asarray(bits):
        marker_id = (marker_id << 1) | int(row[1])
        marker_id = (marker_id << 1) | int(row[3])
    return marker_id


def rotate_corners(corners: Sequence[Point], rotation: int) -> List[Point]:
    """Cyclically shift corners so that ``corners[rotation]`` comes first."""
    count = len(corners)
    return [corners[(rotation + i) % count] for i in range(count)]


def marker_bits(marker_id: int) -> np.ndarray:
    """Return the 5x5 payload encoding ``marker_id``."""
    if not 0 <= marker_id <= MAX_MARKER_ID:
        raise ValueError(f"Marker ID must be in [0, {MAX_MARKER_ID}], got {marker_id}")

    rows = []
    for i in range(PAYLOAD_CELLS):
        value = (marker_id >> (2 * (PAYLOAD_CELLS - 1 - i))) & 3
        rows.append(CODEBOOK[value])
    return np.array(rows, dtype=np.uint8)


def marker_image(marker_id: int, cell_size: int = 1) -> np.ndarray:
    """Render a marker as a black-bordered 7x7 cell bitmap (0 = black, 255 = white).

    Args:
        marker_id: ID in 0..1023
        cell_size: Side of one cell in pixels

    Returns:
        uint8 image of shape (7 * cell_size, 7 * cell_size)
    """
    cells = np.zeros((GRID_CELLS, GRID_CELLS), dtype=np.uint8)
    cells[1:-1, 1:-1] = marker_bits(marker_id) * 255
    return np.kron(cells, np.ones((cell_size, cell_size), dtype=np.uint8))


class MarkerDetector:
    """Detects and decodes markers in video frames.

    The intermediate results of the last processed frame are kept on the
    instance (``grey``, ``thres``, ``contours``, ``polys``, ``candidates``)
    for debugging; they never influence later calls. An instance must not be
    shared between threads.
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config_dict = config or {}
        self.config: Optional[DetectorConfig] = None
        self.initialized = False

        self.grey: Optional[np.ndarray] = None
        self.thres: Optional[np.ndarray] = None
        self.contours: List[Contour] = []
        self.polys: List[Contour] = []
        self.candidates: List[List[Point]] = []

    def initialize(self) -> bool:
        """Build detection parameters from the configuration dictionary."""
        cfg = self.config_dict
        defaults = DetectorConfig()
        self.config = DetectorConfig(
            adaptive_kernel_size=int(cfg.get("adaptive_kernel_size", defaults.adaptive_kernel_size)),
            adaptive_delta=cfg.get("adaptive_delta", defaults.adaptive_delta),
            min_size_fraction=cfg.get("min_size_fraction", defaults.min_size_fraction),
            epsilon_fraction=cfg.get("epsilon_fraction", defaults.epsilon_fraction),
            min_edge_length=cfg.get("min_edge_length", defaults.min_edge_length),
            min_distance=cfg.get("min_distance", defaults.min_distance),
            warp_size=int(cfg.get("warp_size", defaults.warp_size)),
            color_order=str(cfg.get("color_order", defaults.color_order)).lower(),
        )

        if self.config.color_order not in ("rgb", "bgr"):
            raise ValueError(f"Unknown color order: {self.config.color_order}")
        if self.config.warp_size < GRID_CELLS:
            raise ValueError(f"warp_size must be at least {GRID_CELLS}, got {self.config.warp_size}")

        self.initialized = True
        LOGGER.debug("Marker detector initialized: %s", self.config)
        return True

    def _ensure_initialized(self):
        if not self.initialized or self.config is None:
            self.initialize()

    # ------------------------------------------------------------------ #
    # Detection
    # ------------------------------------------------------------------ #
    def detect(self, frame: np.ndarray) -> List[Marker]:
        """Detect markers in the given frame.

        Args:
            frame: Image of shape (h, w), (h, w, 3) or (h, w, 4)

        Returns:
            Decoded markers; an empty list when none is found
        """
        self._ensure_initialized()
        cfg = self.config
        width = np.asarray(frame).shape[1]

        self.grey = grayscale(frame, bgr=cfg.color_order == "bgr")
        self.thres = adaptive_threshold(self.grey, cfg.adaptive_kernel_size, cfg.adaptive_delta)
        self.contours = find_contours(self.thres)

        candidates = self.find_candidates(
            self.contours,
            width * cfg.min_size_fraction,
            cfg.epsilon_fraction,
            cfg.min_edge_length,
        )
        candidates = self.clockwise_corners(candidates)
        candidates = self.not_too_near(candidates, cfg.min_distance)
        self.candidates = candidates

        markers = self.find_markers(self.grey, candidates, cfg.warp_size)

        LOGGER.debug(
            "contours=%d polys=%d candidates=%d markers=%d",
            len(self.contours),
            len(self.polys),
            len(candidates),
            len(markers),
        )
        return markers

    def find_candidates(
        self,
        contours: Sequence[Contour],
        min_size: float,
        epsilon: float,
        min_length: float,
    ) -> List[List[Point]]:
        """Approximate large contours and keep the convex quadrilaterals."""
        candidates: List[List[Point]] = []
        self.polys = []

        for contour in contours:
            if len(contour.points) < min_size:
                continue

            poly = approx_poly_dp(contour.points, len(contour.points) * epsilon)
            self.polys.append(Contour(points=poly, hole=False, label=contour.label))

            if len(poly) == 4 and is_contour_convex(poly) and min_edge_length(poly) >= min_length:
                candidates.append(poly)

        return candidates

    @staticmethod
    def clockwise_corners(candidates: Sequence[Sequence[Point]]) -> List[List[Point]]:
        """Swap corners 1 and 3 of every counter-clockwise candidate."""
        ordered = []
        for corners in candidates:
            corners = list(corners)
            dx1 = corners[1].x - corners[0].x
            dy1 = corners[1].y - corners[0].y
            dx2 = corners[2].x - corners[0].x
            dy2 = corners[2].y - corners[0].y

            if dx1 * dy2 - dy1 * dx2 < 0:
                corners[1], corners[3] = corners[3], corners[1]
            ordered.append(corners)
        return ordered

    @staticmethod
    def not_too_near(candidates: Sequence[Sequence[Point]], min_dist: float) -> List[List[Point]]:
        """Drop near-duplicate candidates, keeping the one with the smaller perimeter."""
        suppressed = set()
        count = len(candidates)

        for i in range(count):
            for j in range(i + 1, count):
                dist = 0.0
                for a, b in zip(candidates[i], candidates[j]):
                    dx = a.x - b.x
                    dy = a.y - b.y
                    dist += dx * dx + dy * dy

                if dist / 4 < min_dist * min_dist:
                    if perimeter(candidates[i]) > perimeter(candidates[j]):
                        suppressed.add(i)
                    else:
                        suppressed.add(j)

        return [list(c) for k, c in enumerate(candidates) if k not in suppressed]

    # ------------------------------------------------------------------ #
    # Decoding
    # ------------------------------------------------------------------ #
    def find_markers(
        self,
        grey: np.ndarray,
        candidates: Sequence[Sequence[Point]],
        warp_size: int,
    ) -> List[Marker]:
        """Warp, binarize and decode every candidate."""
        markers = []
        for candidate in candidates:
            canonical = warp(grey, candidate, warp_size)
            canonical = threshold(canonical, otsu(canonical))

            marker = self.get_marker(canonical, candidate)
            if marker is not None:
                markers.append(marker)
        return markers

    def get_marker(self, binary: np.ndarray, candidate: Sequence[Point]) -> Optional[Marker]:
        """Decode a canonical binary marker image.

        Args:
            binary: Thresholded square image of the candidate
            candidate: Candidate corners, clockwise

        Returns:
            The decoded marker, or None if the border is not black or no
            rotation matches the codebook exactly
        """
        cell = binary.shape[1] // GRID_CELLS
        min_zero = (cell * cell) >> 1

        for i in range(GRID_CELLS):
            step = 1 if i in (0, GRID_CELLS - 1) else GRID_CELLS - 1
            for j in range(0, GRID_CELLS, step):
                if count_non_zero(binary, j * cell, i * cell, cell, cell) > min_zero:
                    return None

        bits = np.zeros((PAYLOAD_CELLS, PAYLOAD_CELLS), dtype=np.uint8)
        for i in range(PAYLOAD_CELLS):
            for j in range(PAYLOAD_CELLS):
                nonzero = count_non_zero(binary, (j + 1) * cell, (i + 1) * cell, cell, cell)
                bits[i, j] = 1 if nonzero > min_zero else 0

        rotations = [bits]
        best_distance = hamming_distance(bits)
        best_rotation = 0
        for r in range(1, 4):
            rotations.append(rotate_bits(rotations[-1]))
            distance = hamming_distance(rotations[r])
            if distance < best_distance:
                best_distance = distance
                best_rotation = r

        if best_distance != 0:
            return None

        return Marker(
            id=bits_to_id(rotations[best_rotation]),
            corners=rotate_corners(list(candidate), 4 - best_rotation),
        )


Detector = MarkerDetector
