"""
Contour extraction from binary images.

Implements Suzuki-style border following: the binary image is padded with a
one pixel background border, scanned row by row, and every outer or hole
border found is traced with an 8-connected neighbour search. Traced pixels
are relabelled so that no border is followed twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, NamedTuple, Sequence

import numpy as np

LOGGER = logging.getLogger(__name__)

# Pixel states of the padded label image.
BACKGROUND = 0
UNVISITED = 1
VISITED = 2  # traced; can still start a hole border
CLOSED = -1  # traced with background to its east; starts nothing

# Neighbour offsets (dx, dy), counter-clockwise starting east.
NEIGHBORHOOD = ((1, 0), (1, -1), (0, -1), (-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1))


class Point(NamedTuple):
    """2D point in image coordinates."""

    x: float
    y: float


@dataclass
class Contour:
    """Ordered boundary of a foreground blob or of a hole inside one."""

    points: List[Point] = field(default_factory=list)
    hole: bool = False
    label: int = 0

    def __len__(self) -> int:
        return len(self.points)


def binary_border(image: np.ndarray) -> np.ndarray:
    """Pad a binary image with a background border and map it to {0, 1}."""
    image = np.asarray(image)
    if image.ndim != 2:
        raise ValueError(f"find_contours expects a single channel image, got {image.shape}")

    height, width = image.shape
    labels = np.zeros((height + 2, width + 2), dtype=np.int64)
    labels[1:-1, 1:-1] = np.where(image != 0, UNVISITED, BACKGROUND)
    return labels


def neighborhood_deltas(stride: int) -> List[int]:
    """Flat index offsets of the 8 neighbours, repeated twice for wrap-free lookup."""
    deltas = [dx + dy * stride for dx, dy in NEIGHBORHOOD]
    return deltas + deltas


def find_contours(image: np.ndarray) -> List[Contour]:
    """Trace every outer and hole border of a binary image.

    Args:
        image: Single channel image; any non-zero pixel is foreground

    Returns:
        Contours in raster discovery order
    """
    labels = binary_border(image)
    stride = labels.shape[1]
    deltas = neighborhood_deltas(stride)

    # Only foreground pixels with background on the left or right can start
    # a border; their state is re-checked when the scan reaches them.
    inner = labels[1:-1, 1:-1]
    starts = (inner != BACKGROUND) & (
        (labels[1:-1, :-2] == BACKGROUND) | (labels[1:-1, 2:] == BACKGROUND)
    )
    rows, cols = np.nonzero(starts)

    state = labels.ravel().tolist()
    contours: List[Contour] = []
    nbd = 1

    for y, x in zip(rows.tolist(), cols.tolist()):
        pos = (y + 1) * stride + (x + 1)
        pix = state[pos]

        if pix == UNVISITED and state[pos - 1] == BACKGROUND:
            hole = False
        elif pix >= UNVISITED and state[pos + 1] == BACKGROUND:
            hole = True
        else:
            continue

        nbd += 1
        contours.append(_follow_border(state, pos, nbd, x, y, hole, deltas))

    LOGGER.debug("Traced %d contours", len(contours))
    return contours


def _follow_border(
    state: List[int],
    pos: int,
    label: int,
    x: int,
    y: int,
    hole: bool,
    deltas: Sequence[int],
) -> Contour:
    contour = Contour(hole=hole, label=label)

    s = s_end = 0 if hole else 4
    while True:
        s = (s - 1) & 7
        pos1 = pos + deltas[s]
        if state[pos1] != BACKGROUND or s == s_end:
            break

    if s == s_end:
        # Isolated pixel.
        state[pos] = CLOSED
        contour.points.append(Point(x, y))
        return contour

    pos3 = pos
    while True:
        s_end = s

        s += 1
        pos4 = pos3 + deltas[s]
        while state[pos4] == BACKGROUND:
            s += 1
            pos4 = pos3 + deltas[s]

        s &= 7

        if 0 < s <= s_end:
            state[pos3] = CLOSED
        elif state[pos3] == UNVISITED:
            state[pos3] = VISITED

        contour.points.append(Point(x, y))

        dx, dy = NEIGHBORHOOD[s]
        x += dx
        y += dy

        if pos4 == pos and pos3 == pos1:
            break

        pos3 = pos4
        s = (s + 4) & 7

    return contour
