"""
DocQuad Orientation - Upright a rectified page

Best-effort heuristic tuned for dark text on light paper:

- Text direction comes from gradient energy. Character strokes are
  mostly vertical, so lines of horizontal text carry more X gradient
  than Y gradient.
- Which end is the top comes from ink density. Headers put more ink in
  the top half of a page.

Anything ambiguous is left as it is.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from .preprocessing import to_gray


class DocumentOrientation(Enum):
    """Clockwise rotation that brings the page upright."""
    CORRECT = 0
    ROTATE_90 = 90
    ROTATE_180 = 180
    ROTATE_270 = 270

    @property
    def rotate_code(self) -> Optional[int]:
        return {
            DocumentOrientation.CORRECT: None,
            DocumentOrientation.ROTATE_90: cv2.ROTATE_90_CLOCKWISE,
            DocumentOrientation.ROTATE_180: cv2.ROTATE_180,
            DocumentOrientation.ROTATE_270: cv2.ROTATE_90_COUNTERCLOCKWISE,
        }[self]


class OrientationDetector:
    """
    Detects and fixes 90-degree misorientation of a rectified document.

    Usage:
        upright, orientation = OrientationDetector().detect_and_correct(scan)
    """

    # One axis needs 40% more gradient energy than the other to count as dominant
    GRADIENT_RATIO = 1.4
    # Minimum mean-intensity gap between halves for a top/bottom (left/right) call
    INK_MIN_DIFF = 3.0

    def __init__(self):
        self.logger = logging.getLogger("OrientationDetector")

    def detect(self, image: np.ndarray) -> DocumentOrientation:
        """
        Args:
            image: Rectified BGR or grayscale page

        Returns:
            Rotation needed, CORRECT when unsure
        """
        if image is None or image.size == 0:
            raise ValueError("Cannot detect orientation of an empty image")

        gray = to_gray(image)
        rows, cols = gray.shape[:2]
        if rows < 2 or cols < 2:
            return DocumentOrientation.CORRECT

        sum_x = float(np.abs(cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)).sum())
        sum_y = float(np.abs(cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)).sum())

        # Darker half = more ink
        top = float(gray[:rows // 2].mean())
        bottom = float(gray[rows // 2:].mean())
        left = float(gray[:, :cols // 2].mean())
        right = float(gray[:, cols // 2:].mean())

        self.logger.debug(
            f"Orientation: sum_x={sum_x:.0f} sum_y={sum_y:.0f} top={top:.1f} "
            f"bottom={bottom:.1f} left={left:.1f} right={right:.1f}"
        )

        if sum_x > sum_y * self.GRADIENT_RATIO:
            if bottom < top - self.INK_MIN_DIFF:
                return DocumentOrientation.ROTATE_180
            return DocumentOrientation.CORRECT

        if sum_y > sum_x * self.GRADIENT_RATIO:
            # Text running top-to-bottom: its header sits on the darker side
            if left < right - self.INK_MIN_DIFF:
                return DocumentOrientation.ROTATE_90
            if right < left - self.INK_MIN_DIFF:
                return DocumentOrientation.ROTATE_270

        return DocumentOrientation.CORRECT

    def correct(self, image: np.ndarray, orientation: DocumentOrientation) -> np.ndarray:
        """Rotate by the given orientation. CORRECT returns the input itself."""
        if image is None or image.size == 0:
            raise ValueError("Cannot rotate an empty image")
        code = orientation.rotate_code
        if code is None:
            return image
        return cv2.rotate(image, code)

    def detect_and_correct(self, image: np.ndarray) -> Tuple[np.ndarray, DocumentOrientation]:
        orientation = self.detect(image)
        if orientation != DocumentOrientation.CORRECT:
            self.logger.info(f"Rotating page {orientation.value} degrees clockwise")
        return self.correct(image, orientation), orientation
