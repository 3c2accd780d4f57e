"""
DocQuad Edges - Adaptive Canny edge maps

Thresholds follow the image statistics so the same code works on dark
desks and bright paper. Long lines that run border to border (table
edges, floor seams) can be erased before contour search.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np


logger = logging.getLogger(__name__)

# Auto-Canny
LOW_RATIO = 0.67
HIGH_RATIO = 1.33
LOW_BOUNDS = (10, 200)
HIGH_BOUNDS = (30, 250)

# Spanning line suppression
SPAN_HOUGH_THRESHOLD = 150
SPAN_MIN_LENGTH_FRACTION = 0.7
SPAN_MAX_GAP = 15
SPAN_BORDER_MARGIN = 15
SPAN_ERASE_THICKNESS = 3


def auto_canny_thresholds(gray: np.ndarray) -> Tuple[int, int]:
    """(0.67 * median, 1.33 * median), each clamped to its bounds."""
    median = float(np.median(gray))
    low = int(np.clip(LOW_RATIO * median, *LOW_BOUNDS))
    high = int(np.clip(HIGH_RATIO * median, *HIGH_BOUNDS))
    return low, max(low + 1, high)


def close_edges(edges: np.ndarray, kernel_size: int = 3) -> np.ndarray:
    """Bridge small gaps so document outlines become closed contours."""
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (kernel_size, kernel_size))
    return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)


def detect_edges(
    gray: np.ndarray,
    thresholds: Optional[Tuple[int, int]] = None,
    close_kernel: int = 3,
    suppress_spanning: bool = True
) -> np.ndarray:
    """
    Canny edge map ready for contour extraction.

    Args:
        gray: Single-channel 8-bit image (already blurred / enhanced)
        thresholds: Fixed (low, high) pair, None = derive from the median
        close_kernel: Size of the closing kernel
        suppress_spanning: Erase border-to-border lines

    Returns:
        Binary uint8 edge map (0 / 255)
    """
    low, high = thresholds if thresholds is not None else auto_canny_thresholds(gray)
    edges = cv2.Canny(gray, low, high)
    if suppress_spanning:
        edges = suppress_spanning_lines(edges)
    return close_edges(edges, close_kernel)


def suppress_spanning_lines(edges: np.ndarray) -> np.ndarray:
    """
    Remove straight lines that connect two opposite frame borders.

    A real document outline never touches both the left and right (or top
    and bottom) borders, but a table edge behind it often does and would
    otherwise merge with the document contour.
    """
    h, w = edges.shape[:2]
    min_length = SPAN_MIN_LENGTH_FRACTION * max(w, h)

    lines = cv2.HoughLinesP(
        edges, 1, np.pi / 180, SPAN_HOUGH_THRESHOLD,
        minLineLength=min_length, maxLineGap=SPAN_MAX_GAP
    )
    if lines is None:
        return edges

    cleaned = None
    m = SPAN_BORDER_MARGIN
    for x1, y1, x2, y2 in lines.reshape(-1, 4):
        left_right = min(x1, x2) <= m and max(x1, x2) >= w - 1 - m
        top_bottom = min(y1, y2) <= m and max(y1, y2) >= h - 1 - m
        if not (left_right or top_bottom):
            continue
        if cleaned is None:
            cleaned = edges.copy()
        cv2.line(cleaned, (int(x1), int(y1)), (int(x2), int(y2)), 0, SPAN_ERASE_THICKNESS)

    if cleaned is None:
        return edges

    logger.debug("Suppressed border-spanning lines from edge map")
    return close_edges(cleaned, 5)
