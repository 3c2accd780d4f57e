"""
Shared fixtures for DocQuad tests.

Frames are synthetic: a white rectangle on a black background, the same
scene the tracking tests have always used, plus a few variations.
"""

import math
from typing import Tuple

import cv2
import numpy as np
import pytest


FRAME_SIZE = (640, 480)  # (width, height)
RECT_TL = (100, 80)
RECT_BR = (540, 400)


def rect_corners(tl: Tuple[int, int] = RECT_TL, br: Tuple[int, int] = RECT_BR) -> np.ndarray:
    return np.array([
        [tl[0], tl[1]],
        [br[0], tl[1]],
        [br[0], br[1]],
        [tl[0], br[1]],
    ], dtype=np.float32)


def make_rect_frame(
    tl: Tuple[int, int] = RECT_TL,
    br: Tuple[int, int] = RECT_BR,
    size: Tuple[int, int] = FRAME_SIZE,
    background: int = 0,
    foreground: int = 255
) -> np.ndarray:
    """BGR frame with a filled axis-aligned rectangle."""
    w, h = size
    frame = np.full((h, w, 3), background, dtype=np.uint8)
    cv2.rectangle(frame, tl, br, (foreground, foreground, foreground), -1)
    return frame


def make_quad_frame(corners: np.ndarray, size: Tuple[int, int] = FRAME_SIZE) -> np.ndarray:
    """BGR frame with a filled white polygon on black."""
    w, h = size
    frame = np.zeros((h, w, 3), dtype=np.uint8)
    cv2.fillPoly(frame, [np.round(corners).astype(np.int32)], (255, 255, 255))
    return frame


def project_rectangle(
    width: float,
    height: float,
    tilt_deg: float,
    focal: float = 1000.0,
    distance: float = 500.0,
    principal: Tuple[float, float] = (320.0, 240.0)
) -> np.ndarray:
    """
    Pinhole projection of a centred planar rectangle tilted about the X axis.

    Returns:
        TL, TR, BR, BL image points
    """
    t = math.radians(tilt_deg)
    cx, cy = principal
    points = []
    for x, y in ((-width / 2, -height / 2), (width / 2, -height / 2),
                 (width / 2, height / 2), (-width / 2, height / 2)):
        yc = y * math.cos(t)
        zc = distance + y * math.sin(t)
        points.append((focal * x / zc + cx, focal * yc / zc + cy))
    return np.array(points, dtype=np.float32)


@pytest.fixture
def rect_frame() -> np.ndarray:
    return make_rect_frame()


@pytest.fixture
def corners() -> np.ndarray:
    return rect_corners()


@pytest.fixture
def blank_frame() -> np.ndarray:
    w, h = FRAME_SIZE
    return np.zeros((h, w, 3), dtype=np.uint8)
