"""
DocQuad Geometry - Quadrilateral primitives shared by every stage

A quad is a float32 array of shape (4, 2) holding the corners in
TL, TR, BR, BL order. Helpers here never mutate their inputs.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np


Quad = np.ndarray
Line = Tuple[float, float, float]

# Homogeneous w below this means the two lines are parallel
PARALLEL_EPS = 1e-8


def as_points(points: Sequence) -> np.ndarray:
    """Coerce any (N, 2) / (N, 1, 2) point container into a float64 (N, 2) array."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 3 and arr.shape[1] == 1:
        arr = arr.reshape(-1, 2)
    if arr.ndim != 2 or (arr.size and arr.shape[1] != 2):
        raise ValueError(f"Expected an (N, 2) point array, got shape {arr.shape}")
    return arr


def _require_four(points: np.ndarray) -> None:
    if len(points) != 4:
        raise ValueError(f"Expected 4 corners, got {len(points)}")


def order_corners(points: Sequence) -> Quad:
    """
    Canonicalize 4 points into TL, TR, BR, BL order.

    TL has the smallest x+y, BR the largest. TR has the smallest y-x,
    BL the largest.

    Args:
        points: Any 4 points

    Returns:
        (4, 2) float32 quad
    """
    pts = as_points(points)
    _require_four(pts)

    s = pts.sum(axis=1)
    d = pts[:, 1] - pts[:, 0]

    ordered = np.array([
        pts[np.argmin(s)],
        pts[np.argmin(d)],
        pts[np.argmax(s)],
        pts[np.argmax(d)],
    ], dtype=np.float32)
    return ordered


def is_convex(quad: Sequence) -> bool:
    """
    Cross-product sign test over consecutive edges.

    Accepts clockwise and counter-clockwise winding. Self-intersecting
    (bowtie) orderings flip sign and are rejected.
    """
    pts = as_points(quad)
    _require_four(pts)

    positive = 0
    negative = 0
    for i in range(4):
        a = pts[i]
        b = pts[(i + 1) % 4]
        c = pts[(i + 2) % 4]
        cross = (b[0] - a[0]) * (c[1] - b[1]) - (b[1] - a[1]) * (c[0] - b[0])
        if cross > 0:
            positive += 1
        elif cross < 0:
            negative += 1

    if positive == 0 and negative == 0:
        return False  # fully degenerate
    return positive == 0 or negative == 0


def quad_area(quad: Sequence) -> float:
    """Shoelace area, independent of winding order."""
    pts = as_points(quad)
    if len(pts) < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


def average_corner_distance(a: Sequence, b: Sequence) -> float:
    """Mean Euclidean distance between corresponding corners of two quads."""
    pa = as_points(a)
    pb = as_points(b)
    _require_four(pa)
    _require_four(pb)
    return float(np.mean(np.linalg.norm(pa - pb, axis=1)))


def side_lengths(quad: Sequence) -> np.ndarray:
    """Lengths of TL-TR, TR-BR, BR-BL, BL-TL."""
    pts = as_points(quad)
    return np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)


def interior_angle(a: Sequence, b: Sequence, c: Sequence) -> float:
    """Angle at vertex b of the polyline a-b-c, in degrees."""
    ba = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    bc = np.asarray(c, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    na = np.linalg.norm(ba)
    nc = np.linalg.norm(bc)
    if na == 0 or nc == 0:
        return 0.0
    cos_angle = float(np.clip(np.dot(ba, bc) / (na * nc), -1.0, 1.0))
    return math.degrees(math.acos(cos_angle))


def interior_angles(quad: Sequence) -> np.ndarray:
    """The four interior angles (degrees), one per corner."""
    pts = as_points(quad)
    _require_four(pts)
    return np.array([
        interior_angle(pts[(i + 3) % 4], pts[i], pts[(i + 1) % 4])
        for i in range(4)
    ])


def angle_regularity(quad: Sequence) -> float:
    """1.0 for a perfect rectangle, falling with total deviation from 90 degrees."""
    deviation = float(np.sum(np.abs(interior_angles(quad) - 90.0)))
    return float(np.clip(1.0 - deviation / 360.0, 0.0, 1.0))


def side_regularity(quad: Sequence) -> float:
    """How closely opposite sides match in length (1.0 = parallelogram)."""
    sides = side_lengths(quad)
    scores = []
    for i, j in ((0, 2), (1, 3)):
        longest = max(sides[i], sides[j])
        scores.append(min(sides[i], sides[j]) / longest if longest > 0 else 0.0)
    return float(np.mean(scores))


def bounding_diagonal(quad: Sequence) -> float:
    """Diagonal of the axis-aligned bounding box."""
    pts = as_points(quad)
    span = pts.max(axis=0) - pts.min(axis=0)
    return float(np.hypot(span[0], span[1]))


def scale_quad(quad: Sequence, scale: float) -> Quad:
    return (as_points(quad) * scale).astype(np.float32)


def inset_corners(width: int, height: int, fraction: float = 0.10) -> Quad:
    """Default manual-placement corners, inset from each frame edge."""
    dx = width * fraction
    dy = height * fraction
    return np.array([
        [dx, dy],
        [width - dx, dy],
        [width - dx, height - dy],
        [dx, height - dy],
    ], dtype=np.float32)


def corners_in_bounds(quad: Sequence, width: int, height: int, margin: float = 0.0) -> bool:
    pts = as_points(quad)
    return bool(
        np.all(pts[:, 0] >= -margin) and np.all(pts[:, 0] <= width - 1 + margin) and
        np.all(pts[:, 1] >= -margin) and np.all(pts[:, 1] <= height - 1 + margin)
    )


# =============================================================================
# Lines in (angle, rho) form
# =============================================================================

def line_from_angle_rho(angle_deg: float, rho: float, center: Tuple[float, float]) -> Line:
    """
    Homogeneous (a, b, c) for a line with direction angle_deg whose signed
    distance from center, measured along the normal (-sin, cos), is rho.
    """
    theta = math.radians(angle_deg)
    a = -math.sin(theta)
    b = math.cos(theta)
    c = -(a * center[0] + b * center[1]) - rho
    return a, b, c


def intersect_lines(l1: Line, l2: Line) -> Optional[Tuple[float, float]]:
    """Intersection of two homogeneous lines, None when parallel."""
    a1, b1, c1 = l1
    a2, b2, c2 = l2
    w = a1 * b2 - a2 * b1
    if abs(w) < PARALLEL_EPS:
        return None
    x = b1 * c2 - b2 * c1
    y = c1 * a2 - c2 * a1
    return x / w, y / w
