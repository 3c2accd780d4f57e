"""
DocQuad Rectify - Sub-pixel corner refinement and perspective warps
"""

import logging
import time
from typing import Sequence, Tuple

import cv2
import numpy as np

from .geometry import Quad, as_points
from .preprocessing import to_gray


logger = logging.getLogger(__name__)

REFINE_WINDOW = 5  # half-size: 11x11 search window
REFINE_CRITERIA = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, 30, 0.01)


def _four(corners: Sequence) -> np.ndarray:
    pts = as_points(corners)
    if len(pts) != 4:
        raise ValueError(f"Expected 4 ordered corners [TL, TR, BR, BL], got {len(pts)}")
    return pts


def refine_corners(image: np.ndarray, corners: Sequence) -> Quad:
    """
    Move corners onto the nearest true corner with cv2.cornerSubPix.

    Corners are first clamped inside the image so the search window never
    leaves it.

    Args:
        image: BGR or grayscale image at the corners' resolution
        corners: TL, TR, BR, BL

    Returns:
        Refined (4, 2) float32 corners
    """
    pts = _four(corners)
    gray = to_gray(image)
    h, w = gray.shape[:2]

    win = REFINE_WINDOW
    clamped = np.empty_like(pts, dtype=np.float32)
    clamped[:, 0] = np.clip(pts[:, 0], win, w - 1 - win)
    clamped[:, 1] = np.clip(pts[:, 1], win, h - 1 - win)

    refined = cv2.cornerSubPix(
        gray, clamped.reshape(-1, 1, 2), (win, win), (-1, -1), REFINE_CRITERIA
    )
    return refined.reshape(4, 2).astype(np.float32)


def output_size(corners: Sequence) -> Tuple[int, int]:
    """(width, height) from the longest edge of each opposite pair."""
    tl, tr, br, bl = _four(corners)
    width = int(max(np.linalg.norm(tr - tl), np.linalg.norm(br - bl)))
    height = int(max(np.linalg.norm(bl - tl), np.linalg.norm(br - tr)))
    return width, height


def _warp(source: np.ndarray, corners: np.ndarray, size: Tuple[int, int], interpolation: int) -> np.ndarray:
    out_w, out_h = size
    if out_w <= 0 or out_h <= 0:
        raise ValueError(f"Invalid output dimensions: {out_w}x{out_h}")
    dst = np.array([
        [0.0, 0.0],
        [out_w - 1.0, 0.0],
        [out_w - 1.0, out_h - 1.0],
        [0.0, out_h - 1.0],
    ], dtype=np.float32)
    transform = cv2.getPerspectiveTransform(corners.astype(np.float32), dst)
    return cv2.warpPerspective(source, transform, (out_w, out_h), flags=interpolation)


def rectify(source: np.ndarray, corners: Sequence, interpolation: int = cv2.INTER_CUBIC) -> np.ndarray:
    """
    Warp the document to a flat rectangle sized by its longest edges.

    Use INTER_LINEAR for previews; the default is for final captures.
    """
    start = time.perf_counter()
    pts = _four(corners)
    size = output_size(pts)
    output = _warp(source, pts, size, interpolation)
    logger.debug(f"rectify: {(time.perf_counter() - start) * 1000:.1f}ms (output={size[0]}x{size[1]})")
    return output


def rectify_with_aspect_ratio(
    source: np.ndarray,
    corners: Sequence,
    target_ratio: float,
    interpolation: int = cv2.INTER_CUBIC
) -> np.ndarray:
    """
    Warp forcing short / long == target_ratio.

    The long dimension and the orientation of the plain rectify output are
    kept; only the short dimension is recomputed.

    Args:
        source: Image to warp
        corners: TL, TR, BR, BL
        target_ratio: Desired short / long ratio in (0, 1]
    """
    if not (0.0 < target_ratio <= 1.0):
        raise ValueError(f"Target ratio must be in (0, 1], got {target_ratio}")

    pts = _four(corners)
    width, height = output_size(pts)
    if width >= height:
        size = (width, max(1, int(round(width * target_ratio))))
    else:
        size = (max(1, int(round(height * target_ratio))), height)

    output = _warp(source, pts, size, interpolation)
    logger.debug(f"rectify_with_aspect_ratio: ratio={target_ratio:.4f} output={size[0]}x{size[1]}")
    return output
