"""
DocQuad Multi-Frame Aspect - Ratio voting over the stabilization window

While the user holds the camera steady before auto-capture, the same page
is seen many times. Each view yields a homography from the unit square to
the image and a projective ratio; the ratios are pooled with a median and
the spread between views becomes the confidence.

Without intrinsics the focal length is recovered first. The two edge
directions of the page are orthogonal in 3-D, so for every view

    h1^T w h2 = 0,    w ~ diag(1, 1, f^2)

once the principal point (taken as the frame centre) is moved to the
origin. That is linear in f^2 and solved by least squares over the views.
A view tilted purely about an image axis has a vanishing point at
infinity and carries no focal information.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Sequence, Tuple

import cv2
import numpy as np

from .aspect_ratio import (
    KNOWN_FORMATS,
    AspectEstimate,
    AspectRatioEstimator,
    AspectRegime,
    CameraIntrinsics,
    KnownFormat,
    perspective_severity,
)
from .geometry import as_points


UNIT_SQUARE = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=np.float32)


@dataclass
class MultiFrameEstimate(AspectEstimate):
    """AspectEstimate pooled over several views."""
    frame_count: int = 0


class MultiFrameAspectEstimator:
    """
    Accumulates document corners across frames and pools their ratios.

    Not thread-safe; feed it from the thread that owns the pipeline.

    Usage:
        accumulator = MultiFrameAspectEstimator()
        for corners in steady_frames:
            accumulator.add_frame(corners)
        estimate = accumulator.estimate(intrinsics)
        if estimate is not None:
            ratio = estimate.best_ratio
    """

    MIN_FRAMES = 3
    MAX_FRAMES = 30

    # confidence = 1 / (1 + variance * VARIANCE_SCALE)
    VARIANCE_SCALE = 1000.0
    RATIO_RANGE = (0.1, 1.0)

    # Focal recovery
    FOCAL_RANGE = (0.5, 4.0)             # x longest frame side
    MIN_VANISHING_STRENGTH = 0.02        # longest side / vanishing point distance

    def __init__(self, formats: Sequence[KnownFormat] = KNOWN_FORMATS):
        self.single = AspectRatioEstimator(formats)
        self._corners: Deque[np.ndarray] = deque(maxlen=self.MAX_FRAMES)
        self._homographies: Deque[np.ndarray] = deque(maxlen=self.MAX_FRAMES)
        self._cache_key = None
        self._cache: Optional[MultiFrameEstimate] = None
        self.logger = logging.getLogger("MultiFrameAspectEstimator")

    @property
    def frame_count(self) -> int:
        return len(self._corners)

    def add_frame(self, corners: Sequence):
        """
        Add one view of the document.

        Args:
            corners: TL, TR, BR, BL in frame pixels
        """
        pts = as_points(corners)
        if len(pts) != 4:
            raise ValueError(f"Expected 4 corners, got {len(pts)}")

        H = cv2.getPerspectiveTransform(UNIT_SQUARE, pts.astype(np.float32))
        self._corners.append(pts.copy())
        self._homographies.append(H)
        self._cache = None

    def estimate(
        self,
        intrinsics: Optional[CameraIntrinsics] = None,
        frame_size: Optional[Tuple[int, int]] = None
    ) -> Optional[MultiFrameEstimate]:
        """
        Pool the accumulated views into one ratio.

        Args:
            intrinsics: Camera intrinsics, None = recover the focal length from the views
            frame_size: (width, height) of the frames; required when intrinsics is None

        Returns:
            MultiFrameEstimate, or None with fewer than MIN_FRAMES views or
            when the views cannot pin the ratio down
        """
        if self.frame_count < self.MIN_FRAMES:
            self.logger.debug(f"Insufficient views: {self.frame_count} < {self.MIN_FRAMES}")
            return None

        key = (intrinsics, frame_size)
        if self._cache is not None and self._cache_key == key:
            return self._cache

        if intrinsics is None:
            if frame_size is None:
                raise ValueError("Estimating without intrinsics needs the frame size")
            intrinsics = self.recover_intrinsics(frame_size)
            if intrinsics is None:
                return None

        result = self._pool(intrinsics)
        self._cache_key = key
        self._cache = result
        return result

    def recover_intrinsics(self, frame_size: Tuple[int, int]) -> Optional[CameraIntrinsics]:
        """
        Focal length from the orthogonality of each view's edge directions.

        Square pixels and a principal point at the frame centre are assumed.

        Returns:
            CameraIntrinsics, or None when too few views show perspective
            in both directions or the focal length is implausible
        """
        w, h = frame_size
        cx, cy = w / 2.0, h / 2.0
        longest = float(max(w, h))
        to_centre = np.array([[1.0, 0.0, -cx], [0.0, 1.0, -cy], [0.0, 0.0, 1.0]])

        a, c = [], []
        for H in self._homographies:
            Hc = to_centre @ H
            Hc = Hc / np.linalg.norm(Hc)
            if self._vanishing_strength(Hc, longest) < self.MIN_VANISHING_STRENGTH:
                continue
            a.append(Hc[0, 0] * Hc[0, 1] + Hc[1, 0] * Hc[1, 1])
            c.append(Hc[2, 0] * Hc[2, 1])

        if len(c) < self.MIN_FRAMES:
            self.logger.debug(
                f"Focal recovery: {len(c)} of {self.frame_count} views show perspective"
            )
            return None

        a_arr = np.asarray(a)
        c_arr = np.asarray(c)
        f_squared = -float(np.dot(a_arr, c_arr)) / float(np.dot(c_arr, c_arr))
        if f_squared <= 0.0:
            self.logger.debug(f"Focal recovery: negative f^2 ({f_squared:.1f})")
            return None

        focal = math.sqrt(f_squared)
        lo, hi = self.FOCAL_RANGE
        if not (lo * longest <= focal <= hi * longest):
            self.logger.debug(f"Focal recovery: implausible focal length {focal:.0f}px")
            return None

        self.logger.debug(f"Focal recovery: f={focal:.1f}px from {len(c)} views")
        return CameraIntrinsics(fx=focal, fy=focal, cx=cx, cy=cy)

    @staticmethod
    def _vanishing_strength(Hc: np.ndarray, longest: float) -> float:
        """Weaker of the two vanishing points, as longest side / its distance from centre."""
        strengths = []
        for col in (0, 1):
            planar = math.hypot(Hc[0, col], Hc[1, col])
            if planar == 0.0:
                return 0.0
            strengths.append(abs(Hc[2, col]) * longest / planar)
        return min(strengths)

    def _pool(self, intrinsics: CameraIntrinsics) -> Optional[MultiFrameEstimate]:
        ratios = [self.single.projective_ratio(pts, intrinsics) for pts in self._corners]
        ratios = np.array([r for r in ratios if r is not None], dtype=np.float64)
        if len(ratios) == 0:
            self.logger.debug("No view gave a usable projective ratio")
            return None

        median = float(np.median(ratios))
        variance = float(np.mean((ratios - median) ** 2))
        confidence = float(np.clip(1.0 / (1.0 + variance * self.VARIANCE_SCALE), 0.0, 1.0))

        result = MultiFrameEstimate(
            ratio=float(np.clip(median, *self.RATIO_RANGE)),
            confidence=confidence,
            regime=AspectRegime.MULTI_FRAME,
            severity=float(np.median([perspective_severity(p) for p in self._corners])),
            frame_count=len(ratios),
        )
        self.single.snap_to_format(result, self._corners[-1], intrinsics)

        self.logger.debug(
            f"Multi-frame aspect: ratio={result.ratio:.4f} confidence={confidence:.2f} "
            f"views={len(ratios)} variance={variance:.6f} "
            f"format={result.format.name if result.format else None}"
        )
        return result

    def reset(self):
        """Forget all views. Call when tracking is lost or the scene changes."""
        count = self.frame_count
        self._corners.clear()
        self._homographies.clear()
        self._cache = None
        self._cache_key = None
        if count:
            self.logger.debug(f"Reset ({count} views cleared)")
