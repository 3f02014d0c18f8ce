"""
Image operations used by the marker detector.

Grayscale conversion, stack box blur, adaptive and global (Otsu)
thresholding, and perspective warping with bilinear sampling. All functions
take and return numpy ``uint8`` arrays; single channel images have shape
``(height, width)``.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


# Integer approximations of 1 / (2k + 1) as (sum * mult) >> shift, indexed by k.
STACK_BOX_BLUR_MULT = (1, 171, 205, 293, 57, 373, 79, 137, 241, 27, 391, 357, 41, 19, 283, 265)
STACK_BOX_BLUR_SHIFT = (0, 9, 10, 11, 9, 12, 10, 11, 12, 9, 13, 13, 10, 9, 13, 13)

LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def grayscale(src: np.ndarray, bgr: bool = False) -> np.ndarray:
    """Convert an RGB(A) frame to 8-bit luma.

    Args:
        src: Image of shape (h, w), (h, w, 3) or (h, w, 4)
        bgr: Set when channels are ordered blue-green-red (OpenCV frames)

    Returns:
        Single channel uint8 image of shape (h, w)
    """
    src = np.asarray(src)
    if src.ndim == 2:
        return src.astype(np.uint8, copy=True)
    if src.ndim != 3 or src.shape[2] not in (3, 4):
        raise ValueError(f"Unsupported image shape for grayscale: {src.shape}")

    wr, wg, wb = LUMA_WEIGHTS
    if bgr:
        wr, wb = wb, wr
    channels = src[..., :3].astype(np.float64)
    luma = channels[..., 0] * wr + channels[..., 1] * wg + channels[..., 2] * wb + 0.5
    return (luma.astype(np.int64) & 0xFF).astype(np.uint8)


def threshold(src: np.ndarray, value: float) -> np.ndarray:
    """Binarize: 0 where pixel <= value, 255 elsewhere."""
    return np.where(np.asarray(src) <= value, 0, 255).astype(np.uint8)


def _blur_rows(data: np.ndarray, kernel_size: int) -> np.ndarray:
    size = kernel_size + kernel_size + 1
    mult = STACK_BOX_BLUR_MULT[kernel_size]
    shift = STACK_BOX_BLUR_SHIFT[kernel_size]

    # Edge padding clamps the window to the first/last column.
    padded = np.pad(data.astype(np.int64), ((0, 0), (kernel_size, kernel_size)), mode="edge")
    cumulative = np.zeros((padded.shape[0], padded.shape[1] + 1), dtype=np.int64)
    np.cumsum(padded, axis=1, out=cumulative[:, 1:])
    window = cumulative[:, size:] - cumulative[:, :-size]

    return np.clip((window * mult) >> shift, 0, 255)


def stack_box_blur(src: np.ndarray, kernel_size: int) -> np.ndarray:
    """Box blur of radius ``kernel_size``, horizontal pass then vertical pass.

    Each output sample is the sum of the ``2 * kernel_size + 1`` clamped
    neighbours scaled by the precomputed multiply/shift pair, so results are
    identical to the classic stack blur.

    Args:
        src: Single channel image
        kernel_size: Blur radius, 0..15

    Returns:
        Blurred uint8 image of the same shape
    """
    if not 0 <= kernel_size < len(STACK_BOX_BLUR_MULT):
        raise ValueError(
            f"kernel_size must be in [0, {len(STACK_BOX_BLUR_MULT) - 1}], got {kernel_size}"
        )
    src = np.asarray(src)
    if src.ndim != 2:
        raise ValueError(f"stack_box_blur expects a single channel image, got {src.shape}")

    horizontal = _blur_rows(src, kernel_size)
    vertical = _blur_rows(horizontal.T, kernel_size).T
    return np.ascontiguousarray(vertical, dtype=np.uint8)


def adaptive_threshold(src: np.ndarray, kernel_size: int, delta: float) -> np.ndarray:
    """Locally adaptive binarization.

    A pixel becomes 255 when it is darker than its blurred neighbourhood by at
    least ``delta``, 0 otherwise.
    """
    src = np.asarray(src)
    blurred = stack_box_blur(src, kernel_size)
    difference = src.astype(np.int64) - blurred.astype(np.int64)
    return np.where(difference <= -delta, 255, 0).astype(np.uint8)


def otsu(src: np.ndarray) -> int:
    """Return the global threshold maximizing between-class variance.

    Args:
        src: Single channel uint8 image

    Returns:
        Threshold in 0..255 (0 for a uniform image)
    """
    src = np.asarray(src, dtype=np.uint8)
    total = src.size
    hist = np.bincount(src.ravel(), minlength=256).astype(np.float64)
    levels = np.arange(256, dtype=np.float64)

    weight_back = np.cumsum(hist)
    weight_fore = total - weight_back
    sum_back = np.cumsum(hist * levels)
    sum_all = sum_back[-1]

    valid = (weight_back > 0) & (weight_fore > 0)
    between = np.zeros(256, dtype=np.float64)
    wb = weight_back[valid]
    wf = weight_fore[valid]
    mu = sum_back[valid] / wb - (sum_all - sum_back[valid]) / wf
    between[valid] = wb * wf * mu * mu

    best = int(np.argmax(between))
    if between[best] <= 0.0:
        return 0
    return best


def count_non_zero(src: np.ndarray, x: int, y: int, width: int, height: int) -> int:
    """Count non-zero samples inside the rectangle at (x, y)."""
    return int(np.count_nonzero(src[y:y + height, x:x + width]))


def square_to_quad(quad: Sequence) -> np.ndarray:
    """Projective transform mapping the unit square onto ``quad``.

    Corner 0 of the quad is the image of (0, 0), corner 1 of (1, 0), corner 2
    of (1, 1) and corner 3 of (0, 1). The returned 3x3 matrix ``m`` maps
    (u, v) to (m00 u + m01 v + m02, m10 u + m11 v + m12) divided by
    (m20 u + m21 v + m22).
    """
    (x0, y0), (x1, y1), (x2, y2), (x3, y3) = np.asarray(quad, dtype=np.float64).reshape(4, 2)

    px = x0 - x1 + x2 - x3
    py = y0 - y1 + y2 - y3

    if px == 0.0 and py == 0.0:
        # Parallelogram: the transform is affine.
        return np.array(
            [
                [x1 - x0, x2 - x1, x0],
                [y1 - y0, y2 - y1, y0],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    dx1 = x1 - x2
    dx2 = x3 - x2
    dy1 = y1 - y2
    dy2 = y3 - y2
    den = dx1 * dy2 - dx2 * dy1

    g = (px * dy2 - dx2 * py) / den
    h = (dx1 * py - px * dy1) / den

    return np.array(
        [
            [x1 - x0 + g * x1, x3 - x0 + h * x3, x0],
            [y1 - y0 + g * y1, y3 - y0 + h * y3, y0],
            [g, h, 1.0],
        ],
        dtype=np.float64,
    )


def warp(src: np.ndarray, quad: Sequence, size: int) -> np.ndarray:
    """Resample the region bounded by ``quad`` into a ``size`` x ``size`` image.

    Every destination pixel is inverse-mapped through the square-to-quad
    transform and bilinearly interpolated from the four nearest source
    pixels.

    Args:
        src: Single channel source image
        quad: Four corner points (anything convertible to a (4, 2) array)
        size: Output side length in pixels

    Returns:
        Warped uint8 image of shape (size, size)
    """
    src = np.asarray(src)
    height, width = src.shape[:2]
    m = square_to_quad(quad)

    grid = np.arange(size, dtype=np.float64) / max(size - 1, 1)
    u, v = np.meshgrid(grid, grid)

    den = m[2, 0] * u + m[2, 1] * v + m[2, 2]
    x = (m[0, 0] * u + m[0, 1] * v + m[0, 2]) / den
    y = (m[1, 0] * u + m[1, 1] * v + m[1, 2]) / den

    x = np.clip(x, 0.0, width - 1)
    y = np.clip(y, 0.0, height - 1)

    sx1 = x.astype(np.int64)
    sy1 = y.astype(np.int64)
    sx2 = np.minimum(sx1 + 1, width - 1)
    sy2 = np.minimum(sy1 + 1, height - 1)

    dx1 = x - sx1
    dx2 = 1.0 - dx1
    dy1 = y - sy1
    dy2 = 1.0 - dy1

    data = src.astype(np.float64)
    value = (
        dy2 * (dx2 * data[sy1, sx1] + dx1 * data[sy1, sx2])
        + dy1 * (dx2 * data[sy2, sx1] + dx1 * data[sy2, sx2])
    )
    return np.clip(value, 0, 255).astype(np.uint8)
