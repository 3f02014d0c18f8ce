"""
Tests for contour extraction and polygon approximation.
"""

import os
import sys
import unittest

import cv2
import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from arucoposit.contours import Point, find_contours  # type: ignore
from arucoposit.marker_detect import MarkerDetector  # type: ignore
from arucoposit.polygon import (  # type: ignore
    approx_poly_dp,
    is_contour_convex,
    min_edge_length,
    perimeter,
)


def rectangle_border(x0, y0, x1, y1):
    """Pixels on the boundary of the filled rectangle [x0, x1] x [y0, y1]."""
    pixels = set()
    for x in range(x0, x1 + 1):
        pixels.add((x, y0))
        pixels.add((x, y1))
    for y in range(y0, y1 + 1):
        pixels.add((x0, y))
        pixels.add((x1, y))
    return pixels


def filled_polygon(vertices, shape=(300, 300)):
    image = np.zeros(shape, dtype=np.uint8)
    cv2.fillPoly(image, [np.array(vertices, dtype=np.int32)], 255)
    return image


class TestFindContours(unittest.TestCase):
    """Border following on binary images."""

    def test_empty_image(self):
        self.assertEqual(find_contours(np.zeros((8, 8), dtype=np.uint8)), [])

    def test_filled_rectangle(self):
        image = np.zeros((10, 10), dtype=np.uint8)
        image[3:7, 2:7] = 255

        contours = find_contours(image)
        self.assertEqual(len(contours), 1)

        contour = contours[0]
        self.assertFalse(contour.hole)
        self.assertEqual(contour.label, 2)
        self.assertEqual(contour.points[0], Point(2, 3))
        self.assertEqual(len(contour), 14)
        self.assertEqual({(p.x, p.y) for p in contour.points}, rectangle_border(2, 3, 6, 6))

    def test_ring_has_outer_and_hole_border(self):
        image = np.zeros((10, 10), dtype=np.uint8)
        image[1:8, 1:8] = 1
        image[3:6, 3:6] = 0

        contours = find_contours(image)
        self.assertEqual([c.hole for c in contours], [False, True])
        self.assertEqual([c.label for c in contours], [2, 3])

        outer, hole = contours
        self.assertEqual({(p.x, p.y) for p in outer.points}, rectangle_border(1, 1, 7, 7))
        for p in hole.points:
            self.assertEqual(image[p.y, p.x], 1)
            window = image[p.y - 1:p.y + 2, p.x - 1:p.x + 2]
            self.assertIn(0, window)
        self.assertEqual(hole.points[0], Point(2, 3))

    def test_isolated_pixel(self):
        image = np.zeros((5, 5), dtype=np.uint8)
        image[2, 3] = 255

        contours = find_contours(image)
        self.assertEqual(len(contours), 1)
        self.assertEqual(contours[0].points, [Point(3, 2)])

    def test_blobs_in_raster_order(self):
        image = np.zeros((20, 20), dtype=np.uint8)
        image[10:14, 2:6] = 255
        image[2:5, 12:18] = 255

        contours = find_contours(image)
        self.assertEqual(len(contours), 2)
        self.assertEqual(contours[0].points[0], Point(12, 2))
        self.assertEqual(contours[1].points[0], Point(2, 10))

    def test_foreground_touching_image_edge(self):
        image = np.full((6, 6), 255, dtype=np.uint8)
        contours = find_contours(image)
        self.assertEqual(len(contours), 1)
        self.assertEqual({(p.x, p.y) for p in contours[0].points}, rectangle_border(0, 0, 5, 5))

    def test_rejects_color_image(self):
        with self.assertRaises(ValueError):
            find_contours(np.zeros((4, 4, 3), dtype=np.uint8))


class TestPolygon(unittest.TestCase):
    """Douglas-Peucker simplification and polygon helpers."""

    def test_square_reduces_to_corners(self):
        image = np.zeros((40, 40), dtype=np.uint8)
        image[5:25, 5:25] = 255
        contour = find_contours(image)[0]

        poly = approx_poly_dp(contour.points, len(contour) * 0.05)
        self.assertEqual(len(poly), 4)
        self.assertEqual(
            {(p.x, p.y) for p in poly},
            {(5, 5), (24, 5), (24, 24), (5, 24)},
        )
        self.assertEqual(poly[0], Point(5, 5))

    def test_single_point(self):
        self.assertEqual(approx_poly_dp([Point(4, 7)], 1.0), [Point(4, 7)])

    def test_convexity(self):
        square = [Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10)]
        self.assertTrue(is_contour_convex(square))
        self.assertTrue(is_contour_convex(square[::-1]))

        dart = [Point(0, 0), Point(20, 10), Point(0, 20), Point(6, 10)]
        self.assertFalse(is_contour_convex(dart))

        collinear = [Point(0, 0), Point(5, 0), Point(10, 0), Point(5, 8)]
        self.assertFalse(is_contour_convex(collinear))

    def test_perimeter_and_min_edge(self):
        triangle = [Point(0, 0), Point(3, 0), Point(3, 4)]
        self.assertAlmostEqual(perimeter(triangle), 12.0)
        self.assertAlmostEqual(min_edge_length(triangle), 3.0)


class TestCandidateShapes(unittest.TestCase):
    """Only large convex quadrilaterals become marker candidates."""

    def setUp(self):
        self.detector = MarkerDetector()
        self.detector.initialize()

    def candidates_for(self, vertices):
        contours = find_contours(filled_polygon(vertices))
        return self.detector.find_candidates(contours, 0, 0.05, 10.0)

    def test_convex_quad_is_candidate(self):
        candidates = self.candidates_for([(50, 50), (200, 60), (190, 210), (40, 190)])
        self.assertEqual(len(candidates), 1)
        self.assertEqual(len(candidates[0]), 4)

    def test_triangle_is_rejected(self):
        self.assertEqual(self.candidates_for([(150, 20), (270, 250), (30, 250)]), [])

    def test_pentagon_is_rejected(self):
        angles = np.radians(-90 + 72 * np.arange(5))
        vertices = np.column_stack((150 + 100 * np.cos(angles), 150 + 100 * np.sin(angles)))
        self.assertEqual(self.candidates_for(vertices.round()), [])

    def test_concave_quad_is_rejected(self):
        self.assertEqual(self.candidates_for([(20, 20), (220, 120), (20, 220), (80, 120)]), [])

    def test_short_edges_are_rejected(self):
        self.assertEqual(self.candidates_for([(100, 100), (107, 100), (107, 107), (100, 107)]), [])
        self.assertEqual(len(self.detector.polys), 1)


if __name__ == "__main__":
    unittest.main()
