"""
Marker pose estimation module.

Recovers the pose of a planar square marker from its four image corners with
coplanar POSIT (Pose from Orthography and Scaling with ITerations, after
Oberkampf, DeMenthon and Davis). Coplanar points admit two orthographic
solutions; both are refined and returned, ranked by reprojection error.

Image points are expected in a centred camera frame: origin at the
principal point, x to the right and y up (see ``image_to_camera_points``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)

MODEL_POINT_COUNT = 4
SINGULAR_VALUE_CUTOFF = 0.01  # Relative to the largest singular value
COPLANARITY_TOLERANCE = 1e-6  # Relative to the largest model vector component


class DegenerateModelError(ValueError):
    """Raised when the object points do not span a plane."""


@dataclass
class PoseError:
    """Reprojection error of a pose hypothesis.

    ``euclidean`` is the mean per-point pixel distance, ``pixels`` the summed
    per-axis difference of rounded coordinates and ``maximum`` the largest
    per-axis deviation. All three are -1 for an invalid pose.
    """

    euclidean: float
    pixels: float
    maximum: float

    @classmethod
    def invalid(cls) -> PoseError:
        return cls(euclidean=-1.0, pixels=-1.0, maximum=-1.0)

    @property
    def is_valid(self) -> bool:
        return self.euclidean >= 0.0


@dataclass
class PoseHypothesis:
    """One rotation/translation solution with its reprojection error."""

    rotation: np.ndarray
    translation: np.ndarray
    error: PoseError

    def as_matrix(self) -> np.ndarray:
        """Return the 4x4 transformation matrix."""
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = self.rotation
        transform[:3, 3] = self.translation
        return transform

    def rotation_vector(self) -> np.ndarray:
        """Return the rotation as a Rodrigues vector of shape (3, 1)."""
        rvec, _ = cv2.Rodrigues(np.ascontiguousarray(self.rotation, dtype=np.float64))
        return rvec


@dataclass
class Pose:
    """Best and alternative solutions for one marker."""

    best: PoseHypothesis
    alternative: PoseHypothesis

    @property
    def best_rotation(self) -> np.ndarray:
        return self.best.rotation

    @property
    def best_translation(self) -> np.ndarray:
        return self.best.translation

    @property
    def best_error(self) -> PoseError:
        return self.best.error

    @property
    def alternative_rotation(self) -> np.ndarray:
        return self.alternative.rotation

    @property
    def alternative_translation(self) -> np.ndarray:
        return self.alternative.translation

    @property
    def alternative_error(self) -> PoseError:
        return self.alternative.error


@dataclass
class PositConfig:
    """Configuration for the iterative refinement."""

    max_iterations: int = 100
    convergence_delta: float = 0.01  # Change of total image point displacement


def build_model(model_size: float) -> np.ndarray:
    """Corners of a centred square in the z = 0 plane, top-left first, clockwise."""
    half = model_size / 2.0
    return np.array(
        [
            [-half, half, 0.0],
            [half, half, 0.0],
            [half, -half, 0.0],
            [-half, -half, 0.0],
        ],
        dtype=np.float64,
    )


def pseudo_inverse(matrix: np.ndarray, cutoff: float = SINGULAR_VALUE_CUTOFF) -> np.ndarray:
    """Moore-Penrose inverse via SVD, ignoring singular values below ``cutoff * max``."""
    u, singular_values, vt = np.linalg.svd(matrix, full_matrices=False)
    keep = singular_values >= singular_values.max() * cutoff
    return (vt[keep].T / singular_values[keep]) @ u[:, keep].T


def image_to_camera_points(corners: Sequence, width: float, height: float) -> np.ndarray:
    """Convert image pixel coordinates (y down) to the centred, y-up frame."""
    points = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    return np.column_stack((points[:, 0] - width / 2.0, height / 2.0 - points[:, 1]))


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def _ranking_key(hypothesis: PoseHypothesis) -> float:
    if not hypothesis.error.is_valid:
        return np.inf
    return hypothesis.error.euclidean


class Posit:
    """
    Coplanar POSIT estimator for a square marker.

    The object model (point vectors, plane normal and pseudo-inverse) depends
    only on the marker size and is computed once, so one instance should be
    reused across frames.
    """

    def __init__(
        self,
        model_size: float,
        focal_length: float,
        object_points: Optional[Sequence[Sequence[float]]] = None,
        config: Optional[PositConfig] = None,
    ):
        if model_size <= 0:
            raise ValueError(f"Model size must be positive, got {model_size}")
        if focal_length <= 0:
            raise ValueError(f"Focal length must be positive, got {focal_length}")

        self.model_size = float(model_size)
        self.focal_length = float(focal_length)
        self.config = config or PositConfig()

        if object_points is None:
            self.object_points = build_model(self.model_size)
        else:
            self.object_points = np.asarray(object_points, dtype=np.float64).reshape(MODEL_POINT_COUNT, 3)

        self.object_vectors = self.object_points - self.object_points[0]
        self.object_normal = self._plane_normal(self.object_vectors)

        extent = np.abs(self.object_vectors).max()
        off_plane = np.abs(self.object_vectors @ self.object_normal).max()
        if off_plane > COPLANARITY_TOLERANCE * extent:
            raise DegenerateModelError(
                f"Object points are not coplanar (off-plane distance {off_plane:.6g})"
            )

        self.object_matrix = pseudo_inverse(self.object_vectors)

        LOGGER.debug(
            "POSIT model initialized (size=%.3f, focal=%.3f, normal=%s)",
            self.model_size,
            self.focal_length,
            self.object_normal,
        )

    @staticmethod
    def _plane_normal(vectors: np.ndarray) -> np.ndarray:
        for first, second in ((1, 2), (1, 3), (2, 3)):
            normal = np.cross(vectors[first], vectors[second])
            length = np.linalg.norm(normal)
            if length > 0.0:
                return normal / length
        raise DegenerateModelError("Object points are collinear; no plane normal exists")

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def pose(self, image_points: Sequence) -> Pose:
        """Estimate both pose hypotheses for four image points.

        Args:
            image_points: Four (x, y) points in the centred camera frame,
                matching the model corners in order

        Returns:
            Pose with the lower-error hypothesis as ``best``. Hypotheses whose
            initial estimate puts a model point behind the camera carry the
            invalid error sentinel and rank last.
        """
        points = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        if points.shape[0] != MODEL_POINT_COUNT:
            raise ValueError(f"Expected {MODEL_POINT_COUNT} image points, got {points.shape[0]}")

        rotation1, rotation2, translation = self.pos(points)

        hypotheses = []
        for rotation in (rotation1, rotation2):
            if self.is_valid(rotation, translation):
                error, refined_rotation, refined_translation = self.iterate(points, rotation, translation)
            else:
                error, refined_rotation, refined_translation = PoseError.invalid(), rotation, translation
            hypotheses.append(
                PoseHypothesis(
                    rotation=refined_rotation,
                    translation=refined_translation - refined_rotation @ self.object_points[0],
                    error=error,
                )
            )

        first, second = hypotheses
        if _ranking_key(first) < _ranking_key(second):
            return Pose(best=first, alternative=second)
        return Pose(best=second, alternative=first)

    # ------------------------------------------------------------------ #
    # Algorithm steps
    # ------------------------------------------------------------------ #
    def pos(self, image_points: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Scaled orthographic estimate.

        Returns:
            (rotation1, rotation2, translation) where the translation locates
            object point 0 and is shared by both rotations
        """
        image_vectors = image_points - image_points[0]

        i0 = self.object_matrix @ image_vectors[:, 0]
        j0 = self.object_matrix @ image_vectors[:, 1]

        i0i0 = i0 @ i0
        j0j0 = j0 @ j0
        i0j0 = i0 @ j0

        delta = (j0j0 - i0i0) ** 2 + 4.0 * i0j0 * i0j0
        if j0j0 - i0i0 >= 0.0:
            q = (j0j0 - i0i0 + np.sqrt(delta)) / 2.0
        else:
            q = (j0j0 - i0i0 - np.sqrt(delta)) / 2.0

        if q >= 0.0:
            lam = np.sqrt(q)
            mu = 0.0 if lam == 0.0 else -i0j0 / lam
        else:
            lam = np.sqrt(-(i0j0 * i0j0) / q)
            mu = np.sqrt(i0i0 - j0j0) if lam == 0.0 else -i0j0 / lam

        normal = self.object_normal
        scale = np.linalg.norm(i0 + lam * normal)
        if scale == 0.0:
            # Coincident image points; NaN depths fail the validity check.
            LOGGER.debug("Scaled orthographic estimate has zero scale")
            return np.full((3, 3), np.nan), np.full((3, 3), np.nan), np.full(3, np.nan)

        rotation1 = self._rotation_from_rows(i0 + lam * normal, j0 + mu * normal, scale)
        rotation2 = self._rotation_from_rows(i0 - lam * normal, j0 - mu * normal, scale)

        translation = np.array(
            [image_points[0, 0] / scale, image_points[0, 1] / scale, self.focal_length / scale],
            dtype=np.float64,
        )
        return rotation1, rotation2, translation

    @staticmethod
    def _rotation_from_rows(ivec: np.ndarray, jvec: np.ndarray, scale: float) -> np.ndarray:
        row1 = ivec / scale
        row2 = jvec / scale
        return np.vstack((row1, row2, np.cross(row1, row2)))

    def is_valid(
        self,
        rotation: np.ndarray,
        translation: np.ndarray,
        points: Optional[np.ndarray] = None,
    ) -> bool:
        """True when every model point lies at non-negative depth.

        Args:
            rotation: 3x3 rotation
            translation: Translation of the origin ``points`` are given in
            points: Model points; defaults to the vectors from object point 0,
                matching the translation produced by ``pos``
        """
        if points is None:
            points = self.object_vectors
        depths = translation[2] + points @ rotation[2]
        return bool(depths.min() >= 0.0)

    def iterate(
        self,
        image_points: np.ndarray,
        pos_rotation: np.ndarray,
        pos_translation: np.ndarray,
    ) -> Tuple[PoseError, np.ndarray, np.ndarray]:
        """Refine a hypothesis by repeated scaled orthographic corrections.

        Returns:
            (error, rotation, translation of object point 0)
        """
        rotation = pos_rotation.copy()
        translation = pos_translation.copy()
        origin = self.object_points[0]

        old_sop_points = image_points.copy()
        sop_points = self._sop_points(image_points, rotation, translation)
        image_difference = np.abs(sop_points - old_sop_points).sum()

        error = self.error(image_points, rotation, translation - rotation @ origin)
        converged = error.pixels == 0.0 or image_difference < self.config.convergence_delta

        iteration = 0
        while iteration < self.config.max_iterations and not converged:
            iteration += 1
            old_sop_points = sop_points

            rotation1, rotation2, translation = self.pos(sop_points)
            error1 = self.error(image_points, rotation1, translation - rotation1 @ origin)
            error2 = self.error(image_points, rotation2, translation - rotation2 @ origin)

            if error1.is_valid and error2.is_valid:
                if error2.euclidean < error1.euclidean:
                    error, rotation = error2, rotation2
                else:
                    error, rotation = error1, rotation1
            elif error2.is_valid:
                error, rotation = error2, rotation2
            elif error1.is_valid:
                error, rotation = error1, rotation1

            sop_points = self._sop_points(image_points, rotation, translation)

            old_difference = image_difference
            image_difference = np.abs(sop_points - old_sop_points).sum()

            converged = (
                error.pixels == 0.0
                or abs(image_difference - old_difference) < self.config.convergence_delta
            )

        LOGGER.debug("POSIT stopped after %d iterations (error=%s)", iteration, error)
        return error, rotation, translation

    def _sop_points(self, image_points: np.ndarray, rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
        factors = 1.0 + (self.object_vectors @ rotation[2]) / translation[2]
        return image_points * factors[:, None]

    def error(self, image_points: Sequence, rotation: np.ndarray, translation: np.ndarray) -> PoseError:
        """Perspective reprojection error of a pose.

        Args:
            image_points: Observed points in the centred camera frame
            rotation: 3x3 rotation
            translation: Translation of the model centre

        Returns:
            PoseError, or the invalid sentinel if a model point has negative depth
        """
        if not self.is_valid(rotation, translation, self.object_points):
            return PoseError.invalid()

        image_points = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        moved = self.object_points @ rotation.T + translation
        projection = self.focal_length * moved[:, :2] / moved[:, 2:3]
        residuals = projection - image_points

        euclidean = np.sqrt((residuals ** 2).sum(axis=1)).mean()
        pixels = np.abs(_round_half_up(projection) - _round_half_up(image_points)).sum()
        maximum = np.abs(residuals).max()

        return PoseError(euclidean=float(euclidean), pixels=float(pixels), maximum=float(maximum))
