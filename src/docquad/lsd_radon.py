"""
DocQuad LSD/Radon - Fallback cascade for near-zero-contrast scenes

Works on the raw gradient field instead of a binarized edge map, so it
can find document boundaries that Canny never sees (white paper on a
white desk). Three tiers, each slower and more sensitive:

┌──────────────────────────────────────────────────────────────────┐
│ Tier 1  LSD segments -> 2H + 2V clusters -> intersect   [0.50-0.85] │
│ Tier 2  2-3 known sides -> Radon search for the rest    [0.45-0.75] │
│ Tier 3  Joint Radon rectangle fit over 9 orientations   [0.40-0.65] │
└──────────────────────────────────────────────────────────────────┘

Lines are stored as (angle, rho): angle is the line direction in degrees
(horizontal lines in [-45, 45), vertical ones in [45, 135)) and rho is the
signed distance from the image centre along the normal (-sin, cos).
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .geometry import (
    Line,
    Quad,
    angle_regularity,
    interior_angles,
    intersect_lines,
    is_convex,
    line_from_angle_rho,
    order_corners,
    quad_area,
    side_lengths,
)


@dataclass
class LineSegment:
    """A straight segment reported by the line segment detector."""
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def length(self) -> float:
        return math.hypot(self.x2 - self.x1, self.y2 - self.y1)

    @property
    def angle(self) -> float:
        """Undirected orientation in [0, 180)."""
        deg = math.degrees(math.atan2(self.y2 - self.y1, self.x2 - self.x1))
        if deg < 0.0:
            deg += 180.0
        if deg >= 180.0:
            deg -= 180.0
        return deg

    @property
    def is_horizontal(self) -> bool:
        a = self.angle
        return a < 45.0 or a >= 135.0

    @property
    def signed_angle(self) -> float:
        """Angle folded so horizontal lines sit around 0 and vertical around 90."""
        a = self.angle
        return a - 180.0 if a >= 135.0 else a

    @property
    def midpoint(self) -> Tuple[float, float]:
        return (self.x1 + self.x2) / 2.0, (self.y1 + self.y2) / 2.0


@dataclass
class EdgeCluster:
    """Collinear segments merged into one candidate document side."""
    segments: List[LineSegment]
    angle: float
    rho: float
    total_length: float
    is_horizontal: bool

    def _endpoint_projections(self) -> Tuple[np.ndarray, np.ndarray]:
        theta = math.radians(self.angle)
        pts = np.array(
            [(s.x1, s.y1) for s in self.segments] + [(s.x2, s.y2) for s in self.segments],
            dtype=np.float64
        )
        return pts, pts @ np.array([math.cos(theta), math.sin(theta)])

    @property
    def start_point(self) -> Tuple[float, float]:
        pts, proj = self._endpoint_projections()
        return tuple(pts[int(np.argmin(proj))])

    @property
    def end_point(self) -> Tuple[float, float]:
        pts, proj = self._endpoint_projections()
        return tuple(pts[int(np.argmax(proj))])


@dataclass
class RadonPeak:
    angle: float
    rho: float
    response: float


@dataclass
class RadonField:
    """Signed Sobel gradients plus the magnitude planes the Radon sweeps integrate."""
    gx: np.ndarray
    gy: np.ndarray
    for_horizontal: Tuple[np.ndarray, np.ndarray]
    for_vertical: Tuple[np.ndarray, np.ndarray]

    @classmethod
    def from_sobel(cls, gx: np.ndarray, gy: np.ndarray, coarse_sigma: float) -> "RadonField":
        """Pair each raw |gradient| plane with a blurred copy for coarse sweeps."""
        agx = np.abs(gx)
        agy = np.abs(gy)
        return cls(
            gx=gx,
            gy=gy,
            for_horizontal=(agy, cv2.GaussianBlur(agy, (0, 0), coarse_sigma)),
            for_vertical=(agx, cv2.GaussianBlur(agx, (0, 0), coarse_sigma)),
        )


@dataclass
class LsdDetection:
    """Result of the cascade."""
    corners: Quad
    confidence: float
    tier: int
    elapsed_ms: float = 0.0
    score: float = field(default=0.0, repr=False)


class LsdRadonDetector:
    """
    Three-tier LSD + Radon document detector.

    Usage:
        detector = LsdRadonDetector()
        result = detector.detect(gray)
        if result is not None:
            corners, confidence = result.corners, result.confidence
    """

    # === Line segment detector ===
    LSD_SCALE = 0.8
    LSD_SIGMA_SCALE = 0.6
    LSD_QUANT = 1.0       # halves the gradient quantization floor (~2.6 units)
    LSD_ANGLE_TH = 22.5
    LSD_LOG_EPS = 0.0
    LSD_DENSITY_TH = 0.7
    LSD_N_BINS = 1024
    MIN_LENGTH_FRACTION = 0.05

    # === Clustering ===
    CLUSTER_ANGLE_TOLERANCE = 8.0
    CLUSTER_RHO_TOLERANCE = 15.0
    MIN_CLUSTER_LENGTH_FRACTION = 0.20
    MAX_CLUSTERS_PER_ORIENTATION = 6

    # === Quad validation ===
    BOUNDS_OVERFLOW_FRACTION = 0.05
    MIN_QUAD_AREA_FRACTION = 0.10
    MIN_INTERIOR_ANGLE = 60.0
    MAX_INTERIOR_ANGLE = 120.0

    # === Gradient density ===
    REFERENCE_GRADIENT = 20.0
    MIN_SIDE_SCORE = 0.1
    MIN_PASSING_SIDES = 3
    DENSITY_SAMPLES = 50

    # === Tier confidence ranges ===
    TIER1_CONFIDENCE = (0.50, 0.85)
    TIER2_CONFIDENCE = (0.45, 0.75)
    TIER3_CONFIDENCE = (0.40, 0.65)

    # === Tier 2 ===
    TIER2_ANGLE_OFFSETS = (-12.0, -8.0, -4.0, 0.0, 4.0, 8.0, 12.0)
    TIER2_COARSE_STEP = 8.0
    TIER2_FINE_STEP = 1.0
    TIER2_FINE_WINDOW = 12.0
    TIER2_COARSE_TOP_PEAKS = 3
    TIER2_MIN_EDGE_DISTANCE = 0.15
    TIER2_ENDPOINT_REACH = 0.15
    TIER2_MAX_CANDIDATE_PEAKS = 5

    # === Tier 3 ===
    TIER3_THETAS = (-8.0, -6.0, -4.0, -2.0, 0.0, 2.0, 4.0, 6.0, 8.0)
    TIER3_MIN_GRADIENT_DENSITY = 0.05
    TIER3_RHO_RANGE = (0.15, 0.85)
    TIER3_COARSE_STEP = 8.0
    TIER3_REFINE_WINDOW = 12.0
    TIER3_MAX_PEAKS = 4
    TIER3_PEAK_SEPARATION = 0.10
    TIER3_CENTERING_BONUS = 0.10
    TIER3_ASPECT_BONUS = 0.05

    RADON_SAMPLES = 100
    RADON_COARSE_SIGMA = 3.0  # widens the 3px Sobel ridge so an 8px sweep cannot step over it

    def __init__(self):
        self.logger = logging.getLogger("LsdRadonDetector")
        self._lsd = cv2.createLineSegmentDetector(
            cv2.LSD_REFINE_STD,
            self.LSD_SCALE,
            self.LSD_SIGMA_SCALE,
            self.LSD_QUANT,
            self.LSD_ANGLE_TH,
            self.LSD_LOG_EPS,
            self.LSD_DENSITY_TH,
            self.LSD_N_BINS
        )

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def detect(self, gray: np.ndarray) -> Optional[LsdDetection]:
        """
        Run the cascade on a grayscale image.

        Returns:
            LsdDetection with ordered corners, or None when every tier fails
        """
        if gray is None or gray.size == 0:
            raise ValueError("Cannot run LSD/Radon detection on an empty image")
        if gray.ndim != 2:
            raise ValueError(f"Expected a single-channel image, got shape {gray.shape}")

        start = time.perf_counter()
        h, w = gray.shape[:2]

        gx = cv2.Sobel(gray, cv2.CV_16S, 1, 0, ksize=3).astype(np.float32)
        gy = cv2.Sobel(gray, cv2.CV_16S, 0, 1, ksize=3).astype(np.float32)

        segments = self.detect_segments(gray)
        clusters = self.cluster_segments(segments, w, h) if segments else []

        result = None
        if clusters:
            result = self.detect_tier1(clusters, gx, gy)
        if result is None and len(clusters) >= 2:
            result = self.detect_tier2(clusters, gx, gy)
        if result is None:
            result = self.detect_tier3(gx, gy)

        elapsed = (time.perf_counter() - start) * 1000
        if result is None:
            self.logger.debug(f"No document after all tiers ({elapsed:.1f}ms)")
            return None

        result.elapsed_ms = elapsed
        self.logger.debug(
            f"Tier {result.tier} success: confidence={result.confidence:.2f} ({elapsed:.1f}ms)"
        )
        return result

    # =========================================================================
    # SEGMENTS AND CLUSTERS
    # =========================================================================

    def detect_segments(self, gray: np.ndarray) -> List[LineSegment]:
        """LSD segments longer than MIN_LENGTH_FRACTION of the largest dimension, longest first."""
        h, w = gray.shape[:2]
        min_length = max(w, h) * self.MIN_LENGTH_FRACTION

        lines = self._lsd.detect(gray)[0]
        if lines is None:
            return []

        segments = [LineSegment(*map(float, row[:4])) for row in lines.reshape(-1, 4)]
        segments = [s for s in segments if s.length >= min_length]
        segments.sort(key=lambda s: s.length, reverse=True)
        return segments

    def cluster_segments(
        self,
        segments: Sequence[LineSegment],
        width: int,
        height: int
    ) -> List[EdgeCluster]:
        """
        Greedy clustering by angle and perpendicular offset.

        Returns:
            Horizontal and vertical clusters that pass the minimum total
            length, longest first, at most MAX_CLUSTERS_PER_ORIENTATION each
        """
        center = (width / 2.0, height / 2.0)
        min_length = math.hypot(width, height) * self.MIN_CLUSTER_LENGTH_FRACTION

        horizontal = [s for s in segments if s.is_horizontal]
        vertical = [s for s in segments if not s.is_horizontal]

        result: List[EdgeCluster] = []
        for group, is_horizontal in ((horizontal, True), (vertical, False)):
            clusters = self._cluster_group(group, center, is_horizontal)
            clusters = [c for c in clusters if c.total_length >= min_length]
            clusters.sort(key=lambda c: c.total_length, reverse=True)
            result.extend(clusters[:self.MAX_CLUSTERS_PER_ORIENTATION])

        result.sort(key=lambda c: c.total_length, reverse=True)
        self.logger.debug(
            f"Clusters: {sum(c.is_horizontal for c in result)}H "
            f"{sum(not c.is_horizontal for c in result)}V from {len(segments)} segments"
        )
        return result

    def _cluster_group(
        self,
        segments: Sequence[LineSegment],
        center: Tuple[float, float],
        is_horizontal: bool
    ) -> List[EdgeCluster]:
        # [members, weighted angle sum, weighted rho sum, total length]
        accumulators: List[list] = []

        for seg in sorted(segments, key=lambda s: s.signed_angle):
            angle = seg.signed_angle
            rho = self._segment_rho(seg, angle, center)
            length = seg.length

            for acc in accumulators:
                avg_angle = acc[1] / acc[3]
                avg_rho = acc[2] / acc[3]
                if (abs(angle - avg_angle) <= self.CLUSTER_ANGLE_TOLERANCE and
                        abs(rho - avg_rho) <= self.CLUSTER_RHO_TOLERANCE):
                    acc[0].append(seg)
                    acc[1] += angle * length
                    acc[2] += rho * length
                    acc[3] += length
                    break
            else:
                accumulators.append([[seg], angle * length, rho * length, length])

        return [
            EdgeCluster(
                segments=members,
                angle=angle_sum / total,
                rho=rho_sum / total,
                total_length=total,
                is_horizontal=is_horizontal,
            )
            for members, angle_sum, rho_sum, total in accumulators
        ]

    @staticmethod
    def _segment_rho(seg: LineSegment, angle: float, center: Tuple[float, float]) -> float:
        theta = math.radians(angle)
        mx, my = seg.midpoint
        return (mx - center[0]) * -math.sin(theta) + (my - center[1]) * math.cos(theta)

    # =========================================================================
    # TIER 1: LSD rectangle
    # =========================================================================

    def detect_tier1(
        self,
        clusters: Sequence[EdgeCluster],
        gx: np.ndarray,
        gy: np.ndarray
    ) -> Optional[LsdDetection]:
        """Best 2H x 2V combination of clusters, scored on LSD evidence and shape."""
        h, w = gx.shape[:2]
        center = (w / 2.0, h / 2.0)
        perimeter = 2.0 * (w + h)

        hs = [c for c in clusters if c.is_horizontal]
        vs = [c for c in clusters if not c.is_horizontal]
        if len(hs) < 2 or len(vs) < 2:
            return None

        h_lines = [line_from_angle_rho(c.angle, c.rho, center) for c in hs]
        v_lines = [line_from_angle_rho(c.angle, c.rho, center) for c in vs]

        best: Optional[Tuple[Quad, float]] = None
        for i in range(len(hs)):
            for j in range(i + 1, len(hs)):
                for k in range(len(vs)):
                    for m in range(k + 1, len(vs)):
                        quad = self._form_quad(h_lines[i], h_lines[j], v_lines[k], v_lines[m], w, h)
                        if quad is None:
                            continue
                        if self.gradient_density(gx, gy, quad) <= 0.0:
                            continue

                        evidence = (hs[i].total_length + hs[j].total_length +
                                    vs[k].total_length + vs[m].total_length) / perimeter
                        score = (
                            0.4 * min(1.0, evidence) +
                            0.3 * min(1.0, quad_area(quad) / (w * h)) +
                            0.3 * angle_regularity(quad)
                        )
                        if best is None or score > best[1]:
                            best = (quad, score)

        if best is None:
            return None
        return self._to_detection(best, tier=1, confidence_range=self.TIER1_CONFIDENCE)

    # =========================================================================
    # TIER 2: corner-constrained Radon
    # =========================================================================

    def detect_tier2(
        self,
        clusters: Sequence[EdgeCluster],
        gx: np.ndarray,
        gy: np.ndarray
    ) -> Optional[LsdDetection]:
        """Recover the missing sides of a partial LSD detection with a Radon search."""
        hs = [c for c in clusters if c.is_horizontal]
        vs = [c for c in clusters if not c.is_horizontal]
        n_h, n_v = len(hs), len(vs)
        if n_h + n_v < 2:
            return None

        grads = RadonField.from_sobel(gx, gy, self.RADON_COARSE_SIGMA)

        if n_h >= 2 and n_v == 1:
            best = self._tier2_missing_side(hs, vs[0], False, grads)
        elif n_h == 1 and n_v >= 2:
            best = self._tier2_missing_side(vs, hs[0], True, grads)
        elif n_h >= 1 and n_v >= 1:
            best = self._tier2_missing_corner(hs[0], vs[0], grads)
        elif n_h >= 2:
            best = self._tier2_missing_pair(hs[:2], True, grads)
        else:
            best = self._tier2_missing_pair(vs[:2], False, grads)

        if best is None:
            return None
        return self._to_detection(best, tier=2, confidence_range=self.TIER2_CONFIDENCE)

    def _tier2_missing_side(
        self,
        parallel: Sequence[EdgeCluster],
        perpendicular: EdgeCluster,
        search_horizontal: bool,
        grads: "RadonField"
    ) -> Optional[Tuple[Quad, float]]:
        """Three sides known: search for the side opposite `perpendicular`."""
        gx, gy = grads.gx, grads.gy
        h, w = gx.shape[:2]
        center = (w / 2.0, h / 2.0)
        dim = h if search_horizontal else w
        grad = grads.for_horizontal if search_horizontal else grads.for_vertical

        peaks = self._search_opposite(grad, perpendicular, dim)

        known_line = line_from_angle_rho(perpendicular.angle, perpendicular.rho, center)
        parallel_lines = [line_from_angle_rho(c.angle, c.rho, center) for c in parallel]

        best = None
        for peak in peaks:
            found = line_from_angle_rho(peak.angle, peak.rho, center)
            for i in range(len(parallel_lines)):
                for j in range(i + 1, len(parallel_lines)):
                    if search_horizontal:
                        lines = (known_line, found, parallel_lines[i], parallel_lines[j])
                    else:
                        lines = (parallel_lines[i], parallel_lines[j], known_line, found)
                    best = self._better(best, self._score_radon_quad(lines, gx, gy))
        return best

    def _tier2_missing_corner(
        self,
        h_cluster: EdgeCluster,
        v_cluster: EdgeCluster,
        grads: "RadonField"
    ) -> Optional[Tuple[Quad, float]]:
        """One horizontal and one vertical side known: search both opposites."""
        gx, gy = grads.gx, grads.gy
        h, w = gx.shape[:2]
        center = (w / 2.0, h / 2.0)

        h_peaks = self._search_opposite(grads.for_horizontal, h_cluster, h)
        v_peaks = self._search_opposite(grads.for_vertical, v_cluster, w)

        h_known = line_from_angle_rho(h_cluster.angle, h_cluster.rho, center)
        v_known = line_from_angle_rho(v_cluster.angle, v_cluster.rho, center)

        best = None
        for hp in h_peaks:
            h_line = line_from_angle_rho(hp.angle, hp.rho, center)
            for vp in v_peaks:
                v_line = line_from_angle_rho(vp.angle, vp.rho, center)
                best = self._better(best, self._score_radon_quad((h_known, h_line, v_known, v_line), gx, gy))
        return best

    def _tier2_missing_pair(
        self,
        known: Sequence[EdgeCluster],
        known_horizontal: bool,
        grads: "RadonField"
    ) -> Optional[Tuple[Quad, float]]:
        """Two parallel sides known: search the perpendicular pair near their endpoints."""
        gx, gy = grads.gx, grads.gy
        h, w = gx.shape[:2]
        center = (w / 2.0, h / 2.0)

        mean_angle = (known[0].angle + known[1].angle) / 2.0
        search_angle = mean_angle + 90.0 if known_horizontal else mean_angle - 90.0
        grad = grads.for_vertical if known_horizontal else grads.for_horizontal
        dim = w if known_horizontal else h

        theta = math.radians(search_angle)
        normal = np.array([-math.sin(theta), math.cos(theta)])
        endpoints = []
        for cluster in known:
            endpoints.append(cluster.start_point)
            endpoints.append(cluster.end_point)
        rhos = (np.asarray(endpoints) - np.asarray(center)) @ normal

        reach = dim * self.TIER2_ENDPOINT_REACH
        first = self._distinct_peaks(
            self._search_angles(grad, search_angle, *self._clip_rho(rhos.min() - reach, rhos.min() + reach, dim))
        )
        second = self._distinct_peaks(
            self._search_angles(grad, search_angle, *self._clip_rho(rhos.max() - reach, rhos.max() + reach, dim))
        )

        known_lines = [line_from_angle_rho(c.angle, c.rho, center) for c in known]
        best = None
        for p1 in first:
            l1 = line_from_angle_rho(p1.angle, p1.rho, center)
            for p2 in second:
                l2 = line_from_angle_rho(p2.angle, p2.rho, center)
                if known_horizontal:
                    lines = (known_lines[0], known_lines[1], l1, l2)
                else:
                    lines = (l1, l2, known_lines[0], known_lines[1])
                best = self._better(best, self._score_radon_quad(lines, gx, gy))
        return best

    def _search_opposite(
        self,
        grad: Tuple[np.ndarray, np.ndarray],
        known: EdgeCluster,
        dim: int
    ) -> List[RadonPeak]:
        """Peaks for the side parallel to `known`, on either side of it, inside the image."""
        near = dim * self.TIER2_MIN_EDGE_DISTANCE
        found: List[RadonPeak] = []
        for lo, hi in ((known.rho + near, dim / 2.0), (-dim / 2.0, known.rho - near)):
            found.extend(self._search_angles(grad, known.angle, lo, hi))
        return self._distinct_peaks(found)

    @staticmethod
    def _clip_rho(lo: float, hi: float, dim: int) -> Tuple[float, float]:
        return max(lo, -dim / 2.0), min(hi, dim / 2.0)

    def _search_angles(
        self,
        grad: Tuple[np.ndarray, np.ndarray],
        base_angle: float,
        rho_min: float,
        rho_max: float
    ) -> List[RadonPeak]:
        peaks: List[RadonPeak] = []
        for offset in self.TIER2_ANGLE_OFFSETS:
            peaks.extend(self._coarse_to_fine(grad, base_angle + offset, rho_min, rho_max))
        peaks.sort(key=lambda p: p.response, reverse=True)
        return peaks

    def _coarse_to_fine(
        self,
        grad: Tuple[np.ndarray, np.ndarray],
        angle: float,
        rho_min: float,
        rho_max: float
    ) -> List[RadonPeak]:
        """
        Coarse rho sweep on the blurred gradient, then a 1px sweep on the
        raw gradient around the strongest coarse responses.
        """
        if rho_max < rho_min:
            return []
        fine_grad, coarse_grad = grad

        coarse = np.arange(rho_min, rho_max + 1e-6, self.TIER2_COARSE_STEP)
        responses = self._radon_profile(coarse_grad, angle, coarse)
        order = [i for i in np.argsort(-responses) if responses[i] > 0.0]
        if not order:
            return []

        peaks: List[RadonPeak] = []
        for idx in order[:self.TIER2_COARSE_TOP_PEAKS]:
            lo = max(rho_min, coarse[idx] - self.TIER2_FINE_WINDOW)
            hi = min(rho_max, coarse[idx] + self.TIER2_FINE_WINDOW)
            fine = np.arange(lo, hi + 1e-6, self.TIER2_FINE_STEP)
            fine_resp = self._radon_profile(fine_grad, angle, fine)
            peaks.extend(
                RadonPeak(angle=angle, rho=float(r), response=float(v))
                for r, v in zip(fine, fine_resp) if v > 0.0
            )
        peaks.sort(key=lambda p: p.response, reverse=True)
        return peaks

    def _distinct_peaks(self, peaks: Sequence[RadonPeak]) -> List[RadonPeak]:
        """Strongest peaks, skipping near-duplicates of ones already kept."""
        kept: List[RadonPeak] = []
        for peak in sorted(peaks, key=lambda p: p.response, reverse=True):
            if len(kept) >= self.TIER2_MAX_CANDIDATE_PEAKS:
                break
            if any(abs(peak.rho - k.rho) < 3.0 and abs(peak.angle - k.angle) < 3.0 for k in kept):
                continue
            kept.append(peak)
        return kept

    def _score_radon_quad(
        self,
        lines: Tuple[Line, Line, Line, Line],
        gx: np.ndarray,
        gy: np.ndarray
    ) -> Optional[Tuple[Quad, float]]:
        """Geometry (40%) blended with gradient evidence (60%)."""
        h, w = gx.shape[:2]
        quad = self._form_quad(*lines, w, h)
        if quad is None:
            return None
        density = self.gradient_density(gx, gy, quad)
        if density <= 0.0:
            return None
        geometry = 0.5 * min(1.0, quad_area(quad) / (w * h)) + 0.5 * angle_regularity(quad)
        return quad, 0.4 * geometry + 0.6 * density

    # =========================================================================
    # TIER 3: joint Radon rectangle fit
    # =========================================================================

    def detect_tier3(self, gx: np.ndarray, gy: np.ndarray) -> Optional[LsdDetection]:
        """Scan a few orientations for two strong horizontal and two strong vertical lines."""
        h, w = gx.shape[:2]
        center = (w / 2.0, h / 2.0)
        grads = RadonField.from_sobel(gx, gy, self.RADON_COARSE_SIGMA)

        h_band = self._tier3_band(h)
        v_band = self._tier3_band(w)
        h_rhos = self._tier3_coarse_rhos(h_band)
        v_rhos = self._tier3_coarse_rhos(v_band)
        h_sep = h * self.TIER3_PEAK_SEPARATION
        v_sep = w * self.TIER3_PEAK_SEPARATION

        best = None
        for theta in self.TIER3_THETAS:
            h_peaks = self._refined_peaks(grads.for_horizontal, theta, h_rhos, h_band, h_sep)
            v_peaks = self._refined_peaks(grads.for_vertical, theta + 90.0, v_rhos, v_band, v_sep)
            if len(h_peaks) < 2 or len(v_peaks) < 2:
                continue

            for i in range(len(h_peaks)):
                for j in range(i + 1, len(h_peaks)):
                    for k in range(len(v_peaks)):
                        for m in range(k + 1, len(v_peaks)):
                            pair = (h_peaks[i], h_peaks[j], v_peaks[k], v_peaks[m])
                            lines = tuple(line_from_angle_rho(p.angle, p.rho, center) for p in pair)
                            quad = self._form_quad(*lines, w, h)
                            if quad is None:
                                continue
                            if self.gradient_density(gx, gy, quad) < self.TIER3_MIN_GRADIENT_DENSITY:
                                continue
                            score = self._tier3_score(quad, pair, w, h)
                            if best is None or score > best[1]:
                                best = (quad, score)

        if best is None:
            return None
        return self._to_detection(best, tier=3, confidence_range=self.TIER3_CONFIDENCE)

    def _tier3_band(self, dim: int) -> Tuple[float, float]:
        """Centred rho limits of the Tier 3 search band for one image dimension."""
        lo_frac, hi_frac = self.TIER3_RHO_RANGE
        return dim * lo_frac - dim / 2.0, dim * hi_frac - dim / 2.0

    def _tier3_coarse_rhos(self, band: Tuple[float, float]) -> np.ndarray:
        """Coarse grid over the band, padded by one step so edges near its ends still peak."""
        step = self.TIER3_COARSE_STEP
        return np.arange(band[0] - step, band[1] + step + 1e-6, step)

    def _refined_peaks(
        self,
        grad: Tuple[np.ndarray, np.ndarray],
        angle: float,
        coarse_rhos: np.ndarray,
        band: Tuple[float, float],
        min_separation: float
    ) -> List[RadonPeak]:
        fine_grad, coarse_grad = grad
        coarse = self._radon_profile(coarse_grad, angle, coarse_rhos)
        refined: List[RadonPeak] = []
        for rho, _ in self._local_peaks(coarse, coarse_rhos, min_separation, self.TIER3_MAX_PEAKS):
            lo = max(band[0], rho - self.TIER3_REFINE_WINDOW)
            hi = min(band[1], rho + self.TIER3_REFINE_WINDOW)
            if hi < lo:
                continue
            window = np.arange(lo, hi + 1e-6, 1.0)
            responses = self._radon_profile(fine_grad, angle, window)
            best = int(np.argmax(responses))
            refined.append(RadonPeak(angle=angle, rho=float(window[best]), response=float(responses[best])))
        return refined

    @staticmethod
    def _local_peaks(
        responses: np.ndarray,
        rhos: np.ndarray,
        min_separation: float,
        max_peaks: int
    ) -> List[Tuple[float, float]]:
        """Local maxima, strongest first, at least min_separation apart.

        A plateau of equal responses yields its last sample, so an edge
        that falls midway between two grid points still produces a peak.
        """
        if len(responses) < 3:
            return []
        inner = np.arange(1, len(responses) - 1)
        is_peak = (
            (responses[inner] >= responses[inner - 1])
            & (responses[inner] > responses[inner + 1])
            & (responses[inner] > 0.0)
        )
        candidates = sorted(
            ((float(rhos[i]), float(responses[i])) for i in inner[is_peak]),
            key=lambda c: c[1], reverse=True
        )
        selected: List[Tuple[float, float]] = []
        for rho, resp in candidates:
            if len(selected) >= max_peaks:
                break
            if all(abs(rho - s[0]) >= min_separation for s in selected):
                selected.append((rho, resp))
        return selected

    def _tier3_score(self, quad: Quad, peaks: Sequence[RadonPeak], w: int, h: int) -> float:
        radon = min(1.0, float(np.mean([p.response for p in peaks])) / self.REFERENCE_GRADIENT)
        geometry = 0.5 * min(1.0, quad_area(quad) / (w * h)) + 0.5 * angle_regularity(quad)
        score = 0.5 * radon + 0.5 * geometry

        # Soft priors: centred documents with ordinary proportions
        cx, cy = w / 2.0, h / 2.0
        qx, qy = np.mean(quad, axis=0)
        off_center = math.hypot(qx - cx, qy - cy) / math.hypot(cx, cy)
        score += self.TIER3_CENTERING_BONUS * float(np.clip(1.0 - off_center, 0.0, 1.0))

        sides = side_lengths(quad)
        width_avg = (sides[0] + sides[2]) / 2.0
        height_avg = (sides[1] + sides[3]) / 2.0
        aspect = min(width_avg, height_avg) / max(width_avg, height_avg)
        if 0.5 <= aspect <= 1.0:
            score += self.TIER3_ASPECT_BONUS * float(np.clip(1.0 - abs(aspect - 0.75) / 0.25, 0.0, 1.0))

        return float(np.clip(score, 0.0, 1.0))

    # =========================================================================
    # SHARED HELPERS
    # =========================================================================

    def _radon_profile(self, grad: np.ndarray, angle: float, rhos: np.ndarray) -> np.ndarray:
        """
        Mean |gradient| along each line (angle, rho) across the image.

        Samples that fall outside the image are skipped; a line with no
        samples inside scores 0.
        """
        h, w = grad.shape[:2]
        theta = math.radians(angle)
        dx, dy = math.cos(theta), math.sin(theta)
        nx, ny = -dy, dx
        half = math.hypot(w, h) / 2.0

        rhos = np.atleast_1d(np.asarray(rhos, dtype=np.float64))
        t = np.linspace(-half, half, self.RADON_SAMPLES)
        xs = w / 2.0 + rhos[:, None] * nx + t[None, :] * dx
        ys = h / 2.0 + rhos[:, None] * ny + t[None, :] * dy
        cols = np.rint(xs).astype(np.int64)
        rows = np.rint(ys).astype(np.int64)
        inside = (cols >= 0) & (cols < w) & (rows >= 0) & (rows < h)

        values = np.zeros(xs.shape, dtype=np.float64)
        values[inside] = grad[rows[inside], cols[inside]]
        counts = inside.sum(axis=1)
        return np.where(counts > 0, values.sum(axis=1) / np.maximum(counts, 1), 0.0)

    def gradient_density(self, gx: np.ndarray, gy: np.ndarray, corners: Quad) -> float:
        """
        Average perpendicular-gradient score over the 4 sides.

        Each side scores min(1, mean |grad . normal| / REFERENCE_GRADIENT).
        Fewer than MIN_PASSING_SIDES sides above MIN_SIDE_SCORE gives 0.
        """
        h, w = gx.shape[:2]
        pts = np.asarray(corners, dtype=np.float64)
        if len(pts) != 4:
            raise ValueError(f"Expected 4 corners, got {len(pts)}")

        t = np.linspace(0.0, 1.0, self.DENSITY_SAMPLES)
        scores = []
        for i in range(4):
            p1 = pts[i]
            p2 = pts[(i + 1) % 4]
            d = p2 - p1
            length = math.hypot(d[0], d[1])
            if length < 1e-6:
                scores.append(0.0)
                continue
            nx, ny = -d[1] / length, d[0] / length

            samples = p1[None, :] + t[:, None] * d[None, :]
            cols = np.rint(samples[:, 0]).astype(np.int64)
            rows = np.rint(samples[:, 1]).astype(np.int64)
            inside = (cols >= 0) & (cols < w) & (rows >= 0) & (rows < h)
            if not inside.any():
                scores.append(0.0)
                continue
            perp = np.abs(gx[rows[inside], cols[inside]] * nx + gy[rows[inside], cols[inside]] * ny)
            scores.append(min(1.0, float(perp.mean()) / self.REFERENCE_GRADIENT))

        passing = sum(1 for s in scores if s > self.MIN_SIDE_SCORE)
        if passing < self.MIN_PASSING_SIDES:
            return 0.0
        return float(np.mean(scores))

    def _form_quad(self, h1: Line, h2: Line, v1: Line, v2: Line, w: int, h: int) -> Optional[Quad]:
        """Intersect two horizontal and two vertical lines and validate the result."""
        points = []
        for hl in (h1, h2):
            for vl in (v1, v2):
                p = intersect_lines(hl, vl)
                if p is None:
                    return None
                points.append(p)

        mx = w * self.BOUNDS_OVERFLOW_FRACTION
        my = h * self.BOUNDS_OVERFLOW_FRACTION
        for x, y in points:
            if x < -mx or x > w + mx or y < -my or y > h + my:
                return None

        quad = order_corners(points)
        if not is_convex(quad):
            return None
        if quad_area(quad) < w * h * self.MIN_QUAD_AREA_FRACTION:
            return None
        angles = interior_angles(quad)
        if np.any(angles < self.MIN_INTERIOR_ANGLE) or np.any(angles > self.MAX_INTERIOR_ANGLE):
            return None
        return quad

    @staticmethod
    def _better(
        current: Optional[Tuple[Quad, float]],
        candidate: Optional[Tuple[Quad, float]]
    ) -> Optional[Tuple[Quad, float]]:
        if candidate is None:
            return current
        if current is None or candidate[1] > current[1]:
            return candidate
        return current

    @staticmethod
    def _to_detection(
        best: Tuple[Quad, float],
        tier: int,
        confidence_range: Tuple[float, float]
    ) -> LsdDetection:
        quad, score = best
        lo, hi = confidence_range
        score = float(np.clip(score, 0.0, 1.0))
        return LsdDetection(corners=quad, confidence=lo + score * (hi - lo), tier=tier, score=score)
