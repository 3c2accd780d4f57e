"""
DocQuad Aspect Ratio - True document proportions from one view

The quad seen by the camera is foreshortened; its edge ratio is not the
paper's ratio. Two regimes recover it:

- Angular (near-frontal views): each dimension is stretched by the
  half-angle its opposite edges make with each other.
- Projective (steep views, needs intrinsics): decompose K^-1 H of the
  unit square into rotation columns; their norm ratio is width / height.

The estimate is then optionally snapped to a known paper format.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .geometry import Quad, as_points, interior_angles


@dataclass(frozen=True)
class KnownFormat:
    """A standard document size, ratio = short / long."""
    name: str
    ratio: float


KNOWN_FORMATS: Tuple[KnownFormat, ...] = (
    KnownFormat("A4", 1.0 / 1.414),
    KnownFormat("US Letter", 1.0 / 1.294),
    KnownFormat("ID Card", 1.0 / 1.586),
    KnownFormat("Business Card", 1.0 / 1.75),
    KnownFormat("Receipt", 1.0 / 3.0),
    KnownFormat("Square", 1.0),
)


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics in pixels of the frame the corners live in."""
    fx: float
    fy: float
    cx: float
    cy: float

    @property
    def matrix(self) -> np.ndarray:
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    def for_rotation(self, degrees: int, width: int, height: int) -> "CameraIntrinsics":
        """
        Intrinsics for a frame rotated clockwise by `degrees` from the sensor.

        Args:
            degrees: 0, 90, 180 or 270
            width: Sensor frame width (before rotation)
            height: Sensor frame height (before rotation)
        """
        degrees = degrees % 360
        if degrees == 0:
            return self
        if degrees == 90:
            return CameraIntrinsics(self.fy, self.fx, height - self.cy, self.cx)
        if degrees == 180:
            return CameraIntrinsics(self.fx, self.fy, width - self.cx, height - self.cy)
        if degrees == 270:
            return CameraIntrinsics(self.fy, self.fx, self.cy, width - self.cx)
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {degrees}")


class AspectRegime(Enum):
    """Which estimator produced the ratio."""
    ANGULAR = "angular"
    PROJECTIVE = "projective"
    BLENDED = "blended"
    FALLBACK = "fallback"
    MULTI_FRAME = "multi_frame"


@dataclass
class AspectEstimate:
    ratio: float                        # short / long, in (0, 1]
    confidence: float
    regime: AspectRegime
    severity: float
    format: Optional[KnownFormat] = None
    snap_confidence: float = 0.0
    verified_by_homography: bool = False

    SNAP_ACCEPT = 0.5

    @property
    def best_ratio(self) -> float:
        """Snapped format ratio when the snap is trustworthy, else the estimate."""
        if self.format is not None and self.snap_confidence >= self.SNAP_ACCEPT:
            return self.format.ratio
        return self.ratio


def _four(corners: Sequence) -> np.ndarray:
    pts = as_points(corners)
    if len(pts) != 4:
        raise ValueError(f"Expected 4 corners, got {len(pts)}")
    return pts


def _edge_lengths(pts: np.ndarray) -> np.ndarray:
    return np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)


def compute_raw_ratio(corners: Sequence) -> float:
    """min / max of the averaged opposite edge lengths."""
    pts = _four(corners)
    edges = _edge_lengths(pts)
    side1 = (edges[0] + edges[2]) / 2.0
    side2 = (edges[1] + edges[3]) / 2.0
    if side1 <= 0.0 or side2 <= 0.0:
        return 1.0
    return float(min(side1, side2) / max(side1, side2))


def perspective_severity(corners: Sequence) -> float:
    """Largest deviation (degrees) of any interior angle from 90."""
    return float(np.max(np.abs(interior_angles(_four(corners)) - 90.0)))


def _angle_between(v1: np.ndarray, v2: np.ndarray) -> float:
    """Unsigned angle between two undirected edges, in radians [0, pi/2]."""
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 == 0 or n2 == 0:
        return 0.0
    cos_a = abs(float(np.dot(v1, v2)) / (n1 * n2))
    return math.acos(min(1.0, cos_a))


def angular_corrected_ratio(corners: Sequence) -> float:
    """
    Foreshortening-corrected ratio for mild perspective.

    The height is divided by cos(half the angle between the left and right
    edges), the width by cos(half the angle between top and bottom). For an
    undistorted rectangle both angles are 0 and this equals the raw ratio.
    """
    pts = _four(corners)
    tl, tr, br, bl = pts
    edges = _edge_lengths(pts)

    width = (edges[0] + edges[2]) / 2.0
    height = (edges[1] + edges[3]) / 2.0
    if width <= 0.0 or height <= 0.0:
        return 1.0

    vertical_angle = _angle_between(bl - tl, br - tr)
    horizontal_angle = _angle_between(tr - tl, br - bl)

    height /= math.cos(vertical_angle / 2.0)
    width /= math.cos(horizontal_angle / 2.0)
    return float(min(width, height) / max(width, height))


class AspectRatioEstimator:
    """
    Single-frame aspect ratio estimation with format snapping.

    Usage:
        estimator = AspectRatioEstimator()
        estimate = estimator.estimate(corners, intrinsics)
        warped = rectify_with_aspect_ratio(frame, corners, estimate.best_ratio)
    """

    ANGULAR_MAX_SEVERITY = 5.0
    PROJECTIVE_MIN_SEVERITY = 10.0

    ANGULAR_CONFIDENCE = 0.85
    PROJECTIVE_CONFIDENCE = 0.75
    FALLBACK_CONFIDENCE = 0.4

    # Projective instability guards
    MIN_NORM_RATIO = 0.2
    MAX_NORM_RATIO = 5.0
    MAX_ORTHOGONALITY = 0.3

    # Snapping
    SNAP_THRESHOLD = 0.035
    SNAP_SIGMA = 0.025
    CLEAR_WINNER_FACTOR = 2.0
    UNVERIFIED_PENALTY = 0.8
    VERIFY_LONG_SIDE = 1000.0

    def __init__(self, formats: Sequence[KnownFormat] = KNOWN_FORMATS):
        self.formats = tuple(formats)
        self.logger = logging.getLogger("AspectRatioEstimator")

    def estimate(
        self,
        corners: Sequence,
        intrinsics: Optional[CameraIntrinsics] = None
    ) -> AspectEstimate:
        """
        Estimate the physical short/long ratio of the document.

        Args:
            corners: TL, TR, BR, BL in capture-frame pixels
            intrinsics: Camera intrinsics for that frame, None = angular only

        Returns:
            AspectEstimate with regime, confidence and optional snapped format
        """
        pts = _four(corners)
        severity = perspective_severity(pts)
        angular = angular_corrected_ratio(pts)

        if severity < self.ANGULAR_MAX_SEVERITY:
            ratio, confidence, regime = angular, self.ANGULAR_CONFIDENCE, AspectRegime.ANGULAR
        else:
            projective = self.projective_ratio(pts, intrinsics) if intrinsics is not None else None

            if severity > self.PROJECTIVE_MIN_SEVERITY:
                if projective is not None:
                    ratio, confidence, regime = (
                        projective, self.PROJECTIVE_CONFIDENCE, AspectRegime.PROJECTIVE
                    )
                else:
                    ratio, confidence, regime = (
                        angular, self.FALLBACK_CONFIDENCE, AspectRegime.FALLBACK
                    )
            else:
                w = (severity - self.ANGULAR_MAX_SEVERITY) / (
                    self.PROJECTIVE_MIN_SEVERITY - self.ANGULAR_MAX_SEVERITY
                )
                if projective is not None:
                    ratio = (1.0 - w) * angular + w * projective
                    confidence = (1.0 - w) * self.ANGULAR_CONFIDENCE + w * self.PROJECTIVE_CONFIDENCE
                    regime = AspectRegime.BLENDED
                else:
                    ratio = angular
                    confidence = (1.0 - w) * self.ANGULAR_CONFIDENCE + w * self.FALLBACK_CONFIDENCE
                    regime = AspectRegime.FALLBACK

        result = AspectEstimate(
            ratio=float(ratio),
            confidence=float(confidence),
            regime=regime,
            severity=severity,
        )
        self.snap_to_format(result, pts, intrinsics)

        self.logger.debug(
            f"Aspect: ratio={result.ratio:.4f} regime={regime.value} severity={severity:.1f} "
            f"format={result.format.name if result.format else None} "
            f"snap={result.snap_confidence:.2f}"
        )
        return result

    # =========================================================================
    # PROJECTIVE
    # =========================================================================

    def projective_ratio(self, corners: Sequence, intrinsics: CameraIntrinsics) -> Optional[float]:
        """
        Ratio from the homography decomposition, None when numerically unreliable.
        """
        pts = _four(corners).astype(np.float32)
        unit = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=np.float32)
        H = cv2.getPerspectiveTransform(unit, pts)
        r1, r2 = self._rotation_columns(H, intrinsics)

        n1 = float(np.linalg.norm(r1))
        n2 = float(np.linalg.norm(r2))
        if n1 == 0.0 or n2 == 0.0:
            return None

        norm_ratio = n1 / n2
        if not (self.MIN_NORM_RATIO <= norm_ratio <= self.MAX_NORM_RATIO):
            self.logger.debug(f"Projective rejected: norm ratio {norm_ratio:.3f}")
            return None

        orthogonality = abs(float(np.dot(r1, r2))) / (n1 * n2)
        if orthogonality > self.MAX_ORTHOGONALITY:
            self.logger.debug(f"Projective rejected: orthogonality {orthogonality:.3f}")
            return None

        return min(norm_ratio, 1.0 / norm_ratio)

    def homography_error(
        self,
        corners: Sequence,
        candidate_ratio: float,
        intrinsics: CameraIntrinsics
    ) -> float:
        """
        How badly a candidate ratio fits a calibrated planar view.

        0 means the rectangle of that ratio maps onto the corners through a
        pure rotation + translation; larger is worse.
        """
        if not (0.0 < candidate_ratio <= 1.0):
            raise ValueError(f"Ratio must be in (0, 1], got {candidate_ratio}")
        pts = _four(corners)
        tl, tr, br, bl = pts

        quad_w = (np.linalg.norm(tr - tl) + np.linalg.norm(br - bl)) / 2.0
        quad_h = (np.linalg.norm(bl - tl) + np.linalg.norm(br - tr)) / 2.0
        long_side = self.VERIFY_LONG_SIDE
        short_side = long_side * candidate_ratio
        dst_w, dst_h = (long_side, short_side) if quad_w >= quad_h else (short_side, long_side)

        rect = np.array([
            [0.0, 0.0],
            [dst_w - 1.0, 0.0],
            [dst_w - 1.0, dst_h - 1.0],
            [0.0, dst_h - 1.0],
        ], dtype=np.float32)
        H = cv2.getPerspectiveTransform(rect, pts.astype(np.float32))
        r1, r2 = self._rotation_columns(H, intrinsics)

        n1 = float(np.linalg.norm(r1))
        n2 = float(np.linalg.norm(r2))
        if n1 == 0.0 or n2 == 0.0:
            return float("inf")
        return abs(1.0 - n1 / n2) + abs(float(np.dot(r1, r2))) / (n1 * n2)

    @staticmethod
    def _rotation_columns(H: np.ndarray, intrinsics: CameraIntrinsics) -> Tuple[np.ndarray, np.ndarray]:
        M = np.linalg.inv(intrinsics.matrix) @ H
        return M[:, 0], M[:, 1]

    # =========================================================================
    # FORMAT SNAPPING
    # =========================================================================

    def snap_to_format(
        self,
        estimate: AspectEstimate,
        corners: np.ndarray,
        intrinsics: Optional[CameraIntrinsics]
    ):
        """Attach the closest known format (and its confidence) to an estimate, in place."""
        candidates: List[Tuple[KnownFormat, float]] = sorted(
            ((fmt, abs(estimate.ratio - fmt.ratio)) for fmt in self.formats),
            key=lambda c: c[1]
        )
        candidates = [c for c in candidates if c[1] <= self.SNAP_THRESHOLD]
        if not candidates:
            return

        clear_winner = (
            len(candidates) == 1 or
            candidates[1][1] > candidates[0][1] * self.CLEAR_WINNER_FACTOR
        )
        if clear_winner:
            fmt, dist = candidates[0]
            estimate.format = fmt
            estimate.snap_confidence = self._snap_confidence(dist)
            return

        if intrinsics is not None:
            fmt, dist = min(
                candidates,
                key=lambda c: self.homography_error(corners, c[0].ratio, intrinsics)
            )
            estimate.format = fmt
            estimate.snap_confidence = self._snap_confidence(dist)
            estimate.verified_by_homography = True
            return

        fmt, dist = candidates[0]
        estimate.format = fmt
        estimate.snap_confidence = self._snap_confidence(dist) * self.UNVERIFIED_PENALTY

    def _snap_confidence(self, dist: float) -> float:
        return float(np.clip(math.exp(-dist * dist / (2.0 * self.SNAP_SIGMA ** 2)), 0.0, 1.0))
