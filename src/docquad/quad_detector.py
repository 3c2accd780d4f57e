"""
DocQuad Quad Detector - Contour search and candidate scoring

Input is a binary edge map. External contours are approximated to
polygons; every convex 4-vertex result large enough to be a document is
scored on shape and on how much of its outline sits on real edge pixels.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .geometry import (
    Quad,
    angle_regularity,
    is_convex,
    order_corners,
    quad_area,
    side_regularity,
)


@dataclass
class QuadCandidate:
    """A scored quadrilateral."""
    corners: Quad
    score: float
    quad_score: float
    edge_density: float
    margin_factor: float
    area_ratio: float


class QuadDetector:
    """
    Finds the best document-shaped quadrilateral in an edge map.

    score = (0.6 * quad_score + 0.4 * edge_density) * margin_factor
    """

    MIN_AREA_RATIO = 0.10
    APPROX_EPSILONS = (0.02, 0.03, 0.04, 0.05)
    MAX_CONTOURS = 10

    QUAD_WEIGHT = 0.6
    EDGE_WEIGHT = 0.4

    # quad_score components
    AREA_WEIGHT = 0.4
    ANGLE_WEIGHT = 0.4
    SIDE_WEIGHT = 0.2

    # Edge density sampling
    SAMPLES_PER_SIDE = 20
    EDGE_SEARCH_RADIUS = 3

    # Border latching
    BORDER_MARGIN_PX = 5
    BORDER_PENALTY = 0.7

    def __init__(self):
        self.logger = logging.getLogger("QuadDetector")

    def detect(
        self,
        edge_map: np.ndarray,
        image_size: Optional[Tuple[int, int]] = None
    ) -> Optional[QuadCandidate]:
        """
        Return the highest scoring convex quad, or None.

        Args:
            edge_map: Binary uint8 edge image
            image_size: (width, height) of the source image, defaults to the edge map size
        """
        candidates = self.find_candidates(edge_map, image_size)
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.score)

    def find_candidates(
        self,
        edge_map: np.ndarray,
        image_size: Optional[Tuple[int, int]] = None
    ) -> List[QuadCandidate]:
        h, w = edge_map.shape[:2]
        width, height = image_size if image_size is not None else (w, h)
        image_area = float(width * height)
        min_area = image_area * self.MIN_AREA_RATIO

        contours, _ = cv2.findContours(edge_map, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        contours = sorted(contours, key=cv2.contourArea, reverse=True)[:self.MAX_CONTOURS]

        candidates: List[QuadCandidate] = []
        for contour in contours:
            if cv2.contourArea(contour) < min_area:
                break  # sorted, nothing smaller will pass
            quad = self._approximate_quad(contour)
            if quad is None:
                continue
            area = quad_area(quad)
            if area < min_area:
                continue
            candidates.append(self.score(quad, edge_map, width, height))

        self.logger.debug(f"{len(candidates)} quad candidates from {len(contours)} contours")
        return candidates

    def _approximate_quad(self, contour: np.ndarray) -> Optional[Quad]:
        """Sweep polygon tolerance until a convex 4-gon appears."""
        perimeter = cv2.arcLength(contour, True)
        for eps in self.APPROX_EPSILONS:
            approx = cv2.approxPolyDP(contour, eps * perimeter, True)
            if len(approx) != 4:
                continue
            if not cv2.isContourConvex(approx):
                continue
            quad = order_corners(approx.reshape(4, 2))
            if is_convex(quad):
                return quad
        return None

    def score(self, quad: Quad, edge_map: np.ndarray, width: int, height: int) -> QuadCandidate:
        area_ratio = min(1.0, quad_area(quad) / float(width * height))
        quad_score = (
            self.AREA_WEIGHT * area_ratio +
            self.ANGLE_WEIGHT * angle_regularity(quad) +
            self.SIDE_WEIGHT * side_regularity(quad)
        )
        density = self.edge_density(quad, edge_map)
        margin = self.margin_factor(quad, width, height)
        score = (self.QUAD_WEIGHT * quad_score + self.EDGE_WEIGHT * density) * margin

        return QuadCandidate(
            corners=quad,
            score=float(np.clip(score, 0.0, 1.0)),
            quad_score=float(quad_score),
            edge_density=float(density),
            margin_factor=margin,
            area_ratio=float(area_ratio),
        )

    def edge_density(self, quad: Quad, edge_map: np.ndarray) -> float:
        """
        Fraction of perimeter samples with an edge pixel nearby.

        Each side is sampled evenly; a sample counts when any pixel within
        EDGE_SEARCH_RADIUS along the side normal is set. Samples that fall
        outside the image are ignored.
        """
        h, w = edge_map.shape[:2]
        pts = np.asarray(quad, dtype=np.float64)
        t = np.linspace(0.0, 1.0, self.SAMPLES_PER_SIDE + 1)
        offsets = np.arange(-self.EDGE_SEARCH_RADIUS, self.EDGE_SEARCH_RADIUS + 1, dtype=np.float64)

        hits = 0
        total = 0
        for i in range(4):
            p1 = pts[i]
            p2 = pts[(i + 1) % 4]
            direction = p2 - p1
            length = np.hypot(*direction)
            if length < 1e-6:
                continue
            normal = np.array([-direction[1], direction[0]]) / length

            samples = p1[None, :] + t[:, None] * direction[None, :]
            sample_points = samples[:, None, :] + offsets[None, :, None] * normal[None, None, :]
            cols = np.rint(sample_points[..., 0]).astype(int)
            rows = np.rint(sample_points[..., 1]).astype(int)

            inside = (cols >= 0) & (cols < w) & (rows >= 0) & (rows < h)
            sample_valid = inside.any(axis=1)
            values = np.zeros(inside.shape, dtype=bool)
            values[inside] = edge_map[rows[inside], cols[inside]] > 0

            total += int(sample_valid.sum())
            hits += int(values.any(axis=1)[sample_valid].sum())

        return hits / total if total else 0.0

    def margin_factor(self, quad: Quad, width: int, height: int) -> float:
        """Penalty for quads whose corners latch onto the frame border."""
        m = self.BORDER_MARGIN_PX
        pts = np.asarray(quad)
        touching = (
            (pts[:, 0] <= m) | (pts[:, 0] >= width - 1 - m) |
            (pts[:, 1] <= m) | (pts[:, 1] >= height - 1 - m)
        )
        return self.BORDER_PENALTY if touching.any() else 1.0
