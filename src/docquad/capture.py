"""
DocQuad Capture - Full-resolution path run once per shutter press

Independent of the preview loop: it owns its own detector and never
touches tracker or smoother state, so it can run while the next preview
frame is being processed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .aspect_ratio import AspectEstimate, AspectRatioEstimator, CameraIntrinsics
from .detection import DocumentDetector
from .geometry import Quad
from .orientation import DocumentOrientation, OrientationDetector
from .rectify import rectify_with_aspect_ratio, refine_corners


class CaptureError(RuntimeError):
    """An OpenCV failure inside one capture stage."""

    def __init__(self, stage: str, cause: Exception):
        super().__init__(f"Capture failed during {stage}: {cause}")
        self.stage = stage
        self.cause = cause


@dataclass
class CaptureResult:
    corners: Quad
    confidence: float
    aspect: AspectEstimate
    rectified: np.ndarray
    pipeline_ms: float
    orientation: DocumentOrientation = DocumentOrientation.CORRECT


class CaptureProcessor:
    """
    detect -> refine corners -> estimate aspect -> rectify [-> upright].

    Usage:
        processor = CaptureProcessor()
        result = processor.process(photo, intrinsics)
        if result is not None:
            cv2.imwrite("scan.png", result.rectified)
    """

    CAPTURE_WIDTH = 1000

    def __init__(
        self,
        capture_width: Optional[int] = None,
        enable_lsd: bool = True,
        correct_orientation: bool = False
    ):
        """
        Args:
            capture_width: Re-detection width, None = class default
            enable_lsd: Allow the LSD/Radon fallback
            correct_orientation: Rotate the rectified page upright
        """
        self.detector = DocumentDetector(
            analysis_width=capture_width or self.CAPTURE_WIDTH,
            enable_lsd=enable_lsd
        )
        self.estimator = AspectRatioEstimator()
        self.orientation = OrientationDetector() if correct_orientation else None
        self.logger = logging.getLogger("CaptureProcessor")

    def process(
        self,
        frame: np.ndarray,
        intrinsics: Optional[CameraIntrinsics] = None
    ) -> Optional[CaptureResult]:
        """
        Run the capture pipeline on a full-resolution frame.

        Args:
            frame: Captured image (BGR or grayscale)
            intrinsics: Intrinsics for this frame's orientation, if known

        Returns:
            CaptureResult, or None when no document is found

        Raises:
            CaptureError: an OpenCV call failed; .stage names where
        """
        start = time.perf_counter()

        try:
            detection = self.detector.detect(frame)
        except cv2.error as e:
            raise CaptureError("detection", e) from e
        if detection.quad is None:
            self.logger.info("Capture: no document found")
            return None

        try:
            corners = refine_corners(frame, detection.quad)
        except cv2.error as e:
            raise CaptureError("corner refinement", e) from e

        try:
            aspect = self.estimator.estimate(corners, intrinsics)
        except cv2.error as e:
            raise CaptureError("aspect estimation", e) from e

        ratio = aspect.best_ratio

        try:
            rectified = rectify_with_aspect_ratio(frame, corners, ratio)
        except cv2.error as e:
            raise CaptureError("rectification", e) from e

        orientation = DocumentOrientation.CORRECT
        if self.orientation is not None:
            try:
                rectified, orientation = self.orientation.detect_and_correct(rectified)
            except cv2.error as e:
                raise CaptureError("orientation", e) from e

        elapsed = (time.perf_counter() - start) * 1000
        self.logger.info(
            f"Capture: confidence={detection.confidence:.2f} ratio={ratio:.4f} "
            f"format={aspect.format.name if aspect.format else 'none'} ({elapsed:.0f}ms)"
        )
        return CaptureResult(
            corners=corners,
            confidence=detection.confidence,
            aspect=aspect,
            rectified=rectified,
            pipeline_ms=elapsed,
            orientation=orientation,
        )
