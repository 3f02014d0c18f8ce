"""
Tests for marker detection functionality.
"""

import os
import sys
import unittest

import numpy as np

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from arucoposit.contours import Point  # type: ignore
from arucoposit.marker_detect import (  # type: ignore
    CODEBOOK,
    MarkerDetector,
    bits_to_id,
    hamming_distance,
    marker_bits,
    marker_image,
    rotate_bits,
    rotate_corners,
)

CELL = 20
ORIGIN = (170, 90)
SIDE = 7 * CELL


def synthetic_frame(marker_id, rotation=0, channels=4):
    """White 480x320 frame with one axis-aligned marker, rotated ``rotation`` quarter turns clockwise."""
    grey = np.full((320, 480), 255, dtype=np.uint8)
    x0, y0 = ORIGIN
    grey[y0:y0 + SIDE, x0:x0 + SIDE] = np.rot90(marker_image(marker_id, CELL), k=-rotation)

    if channels == 1:
        return grey
    frame = np.dstack([grey] * 3)
    if channels == 4:
        frame = np.dstack([frame, np.full_like(grey, 255)])
    return frame


def expected_quad():
    x0, y0 = ORIGIN
    x1, y1 = x0 + SIDE - 1, y0 + SIDE - 1
    return np.array([(x0, y0), (x1, y0), (x1, y1), (x0, y1)], dtype=np.float64)


def square(x0, y0, size):
    return [Point(x0, y0), Point(x0 + size, y0), Point(x0 + size, y0 + size), Point(x0, y0 + size)]


class TestCodebook(unittest.TestCase):
    """Payload encoding helpers."""

    def test_marker_bits_rows_come_from_codebook(self):
        bits = marker_bits(0b1001110010)
        expected = [CODEBOOK[v] for v in (0b10, 0b01, 0b11, 0b00, 0b10)]
        np.testing.assert_array_equal(bits, expected)
        self.assertEqual(hamming_distance(bits), 0)

    def test_bits_to_id(self):
        for marker_id in (0, 1, 108, 513, 1023):
            with self.subTest(marker_id=marker_id):
                self.assertEqual(bits_to_id(marker_bits(marker_id)), marker_id)

    def test_marker_id_out_of_range(self):
        with self.assertRaises(ValueError):
            marker_bits(1024)
        with self.assertRaises(ValueError):
            marker_image(-1)

    def test_hamming_distance_counts_row_mismatches(self):
        bits = marker_bits(0)
        bits[2, 4] ^= 1
        self.assertEqual(hamming_distance(bits), 1)
        self.assertEqual(hamming_distance(np.ones((5, 5), dtype=np.uint8)), 5)

    def test_rotate_bits_clockwise(self):
        bits = np.zeros((5, 5), dtype=np.uint8)
        bits[0, 0] = 1
        rotated = rotate_bits(bits)
        self.assertEqual(rotated[0, 4], 1)
        self.assertEqual(int(rotated.sum()), 1)

    def test_rotate_corners(self):
        self.assertEqual(rotate_corners(["a", "b", "c", "d"], 1), ["b", "c", "d", "a"])
        self.assertEqual(rotate_corners(["a", "b", "c", "d"], 4), ["a", "b", "c", "d"])

    def test_marker_image_layout(self):
        image = marker_image(108, 3)
        self.assertEqual(image.shape, (21, 21))
        self.assertEqual(image.dtype, np.uint8)
        self.assertTrue(np.all(image[:3, :] == 0))
        self.assertTrue(np.all(image[:, -3:] == 0))
        self.assertEqual(image[4, 4], 255 * marker_bits(108)[0, 0])


class TestCandidateSelection(unittest.TestCase):
    """Corner winding and duplicate suppression."""

    def test_counter_clockwise_candidate_is_reordered(self):
        ccw = [Point(0, 0), Point(0, 10), Point(10, 10), Point(10, 0)]
        result = MarkerDetector.clockwise_corners([ccw])
        self.assertEqual(result, [[Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10)]])

    def test_clockwise_candidate_is_unchanged(self):
        cw = square(0, 0, 10)
        self.assertEqual(MarkerDetector.clockwise_corners([cw]), [cw])

    def test_near_duplicates_keep_smaller_perimeter(self):
        outer = square(0, 0, 100)
        inner = square(2, 2, 96)
        far = square(300, 300, 50)

        result = MarkerDetector.not_too_near([outer, inner, far], 10.0)
        self.assertEqual(result, [inner, far])

        result = MarkerDetector.not_too_near([inner, outer], 10.0)
        self.assertEqual(result, [inner])

    def test_distinct_candidates_survive(self):
        a = square(0, 0, 100)
        b = square(30, 0, 100)
        self.assertEqual(MarkerDetector.not_too_near([a, b], 10.0), [a, b])


class TestMarkerDecoding(unittest.TestCase):
    """Decoding of canonical binary marker images."""

    def setUp(self):
        self.detector = MarkerDetector()
        self.candidate = [Point(0, 0), Point(48, 0), Point(48, 48), Point(0, 48)]

    def test_upright_marker(self):
        marker = self.detector.get_marker(marker_image(421, 7), self.candidate)
        self.assertIsNotNone(marker)
        self.assertEqual(marker.id, 421)
        self.assertEqual(marker.corners, self.candidate)

    def test_rotated_marker(self):
        for marker_id in (0, 108):
            for k in range(4):
                with self.subTest(marker_id=marker_id, rotation=k):
                    binary = np.rot90(marker_image(marker_id, 7), k=-k)
                    marker = self.detector.get_marker(binary, self.candidate)
                    self.assertIsNotNone(marker)
                    self.assertEqual(marker.id, marker_id)
                    expected = [self.candidate[(i + k) % 4] for i in range(4)]
                    self.assertEqual(marker.corners, expected)

    def test_white_border_cell_is_rejected(self):
        binary = marker_image(108, 7)
        binary[0:7, 21:28] = 255
        self.assertIsNone(self.detector.get_marker(binary, self.candidate))

    def test_invalid_payload_is_rejected(self):
        binary = marker_image(108, 7)
        binary[7:42, 7:42] = 255
        self.assertIsNone(self.detector.get_marker(binary, self.candidate))


class TestMarkerDetector(unittest.TestCase):
    """Full detection on synthetic frames."""

    def setUp(self):
        self.detector = MarkerDetector()

    def assert_corners_near(self, corners, expected, tolerance=3.0):
        distances = np.linalg.norm(np.asarray(corners, dtype=np.float64) - expected, axis=1)
        self.assertTrue(np.all(distances <= tolerance), f"corner distances {distances}")

    def test_detector_initialization(self):
        self.assertTrue(self.detector.initialize())
        self.assertEqual(self.detector.config.warp_size, 49)
        self.assertEqual(self.detector.config.color_order, "rgb")

    def test_invalid_config(self):
        with self.assertRaises(ValueError):
            MarkerDetector({"color_order": "hsv"}).initialize()
        with self.assertRaises(ValueError):
            MarkerDetector({"warp_size": 5}).initialize()

    def test_marker_detection_in_frame(self):
        markers = self.detector.detect(synthetic_frame(108))

        self.assertEqual([m.id for m in markers], [108])
        self.assert_corners_near(markers[0].corners, expected_quad())
        self.assertIsNotNone(self.detector.grey)
        self.assertIsNotNone(self.detector.thres)
        self.assertGreater(len(self.detector.contours), 0)
        self.assertGreaterEqual(len(self.detector.polys), len(self.detector.candidates))

    def test_rotated_marker_in_frame(self):
        quad = expected_quad()
        for k in (1, 2, 3):
            with self.subTest(rotation=k):
                markers = self.detector.detect(synthetic_frame(108, rotation=k))
                self.assertEqual([m.id for m in markers], [108])
                self.assert_corners_near(markers[0].corners, np.roll(quad, -k, axis=0))

    def test_grey_and_bgr_frames(self):
        markers = self.detector.detect(synthetic_frame(0, channels=1))
        self.assertEqual([m.id for m in markers], [0])

        bgr_detector = MarkerDetector({"color_order": "bgr"})
        markers = bgr_detector.detect(synthetic_frame(0, channels=3))
        self.assertEqual([m.id for m in markers], [0])

    def test_blank_frame(self):
        self.assertEqual(self.detector.detect(np.full((120, 160, 4), 255, dtype=np.uint8)), [])

    def test_detection_is_repeatable(self):
        frame = synthetic_frame(108)
        first = self.detector.detect(frame)
        second = self.detector.detect(frame)
        self.assertEqual(first, second)
        self.assertEqual(MarkerDetector().detect(frame), first)


if __name__ == "__main__":
    unittest.main()
