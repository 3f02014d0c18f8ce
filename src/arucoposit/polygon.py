"""
Polygon approximation and polygon geometry helpers.
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from .contours import Point


def approx_poly_dp(contour: Sequence[Point], epsilon: float) -> List[Point]:
    """Simplify a closed contour with the Douglas-Peucker algorithm.

    The recursion is unrolled onto an explicit stack of index slices. Slice
    end indices may run past the contour length and are taken modulo it.

    Args:
        contour: Closed sequence of points (at least one)
        epsilon: Maximum allowed distance of dropped points from the chord

    Returns:
        Vertices of the simplified polygon, in contour order
    """
    length = len(contour)
    epsilon *= epsilon
    poly: List[Point] = []
    stack: List[Tuple[int, int]] = []

    # Bootstrap the first chord: three rounds of "farthest point from the
    # current start", each round starting from the previous farthest point.
    k = 0
    farthest = 0
    max_dist = 0.0
    start_pt = contour[0]
    for _ in range(3):
        max_dist = 0.0
        k = (k + farthest) % length
        start_pt = contour[k]
        k = (k + 1) % length

        for j in range(1, length):
            pt = contour[k]
            k = (k + 1) % length

            dx = pt.x - start_pt.x
            dy = pt.y - start_pt.y
            dist = dx * dx + dy * dy

            if dist > max_dist:
                max_dist = dist
                farthest = j

    if max_dist <= epsilon:
        poly.append(Point(start_pt.x, start_pt.y))
    else:
        slice_start = k
        slice_end = farthest + slice_start

        right_start = slice_end - length if slice_end >= length else slice_end
        right_end = slice_start
        if right_end < right_start:
            right_end += length

        stack.append((right_start, right_end))
        stack.append((slice_start, slice_end))

    while stack:
        slice_start, slice_end = stack.pop()

        end_pt = contour[slice_end % length]
        k = slice_start % length
        start_pt = contour[k]
        k = (k + 1) % length

        if slice_end <= slice_start + 1:
            within = True
        else:
            max_dist = 0.0
            split = slice_start
            dx = end_pt.x - start_pt.x
            dy = end_pt.y - start_pt.y

            for i in range(slice_start + 1, slice_end):
                pt = contour[k]
                k = (k + 1) % length

                # |cross product| = distance to the chord * chord length
                dist = abs((pt.y - start_pt.y) * dx - (pt.x - start_pt.x) * dy)

                if dist > max_dist:
                    max_dist = dist
                    split = i

            within = max_dist * max_dist <= epsilon * (dx * dx + dy * dy)

        if within:
            poly.append(Point(start_pt.x, start_pt.y))
        else:
            stack.append((split, slice_end))
            stack.append((slice_start, split))

    return poly


def is_contour_convex(contour: Sequence[Point]) -> bool:
    """True when every turn around the closed polygon has the same direction.

    Collinear consecutive edges count as a conflict.
    """
    length = len(contour)
    orientation = 0

    prev_pt = contour[length - 1]
    cur_pt = contour[0]
    dx0 = cur_pt.x - prev_pt.x
    dy0 = cur_pt.y - prev_pt.y

    for i in range(length):
        prev_pt = cur_pt
        cur_pt = contour[(i + 1) % length]

        dx = cur_pt.x - prev_pt.x
        dy = cur_pt.y - prev_pt.y
        dxdy0 = dx * dy0
        dydx0 = dy * dx0

        if dydx0 > dxdy0:
            orientation |= 1
        elif dydx0 < dxdy0:
            orientation |= 2
        else:
            orientation |= 3

        if orientation == 3:
            return False

        dx0 = dx
        dy0 = dy

    return True


def perimeter(poly: Sequence[Point]) -> float:
    """Length of the closed polygon."""
    total = 0.0
    j = len(poly) - 1
    for i in range(len(poly)):
        total += math.hypot(poly[i].x - poly[j].x, poly[i].y - poly[j].y)
        j = i
    return total


def min_edge_length(poly: Sequence[Point]) -> float:
    """Length of the shortest edge of the closed polygon."""
    shortest = math.inf
    j = len(poly) - 1
    for i in range(len(poly)):
        dx = poly[i].x - poly[j].x
        dy = poly[i].y - poly[j].y
        shortest = min(shortest, dx * dx + dy * dy)
        j = i
    return math.sqrt(shortest)
