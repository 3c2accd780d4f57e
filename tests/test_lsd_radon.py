"""Tests for the LSD/Radon low-contrast cascade."""

import cv2
import numpy as np
import pytest

from docquad.lsd_radon import EdgeCluster, LineSegment, LsdRadonDetector

from conftest import RECT_BR, RECT_TL, rect_corners


def low_contrast_gray(delta: int = 12, tl=RECT_TL, br=RECT_BR) -> np.ndarray:
    gray = np.full((480, 640), 200, dtype=np.uint8)
    cv2.rectangle(gray, tl, br, 200 + delta, -1)
    return cv2.GaussianBlur(gray, (3, 3), 0)


def sobel(gray: np.ndarray):
    gx = cv2.Sobel(gray, cv2.CV_16S, 1, 0, ksize=3).astype(np.float32)
    gy = cv2.Sobel(gray, cv2.CV_16S, 0, 1, ksize=3).astype(np.float32)
    return gx, gy


class TestLineSegment:
    def test_orientation(self):
        assert LineSegment(0, 0, 100, 2).is_horizontal
        assert LineSegment(0, 0, -100, 2).is_horizontal
        assert not LineSegment(0, 0, 2, 100).is_horizontal

    def test_signed_angle_wraps_near_horizontal(self):
        seg = LineSegment(0, 0, 100, -2)
        assert seg.angle > 170
        assert -2 < seg.signed_angle < 0


def test_clusters_merge_collinear_segments():
    detector = LsdRadonDetector()
    segments = [
        LineSegment(100, 80, 300, 80),
        LineSegment(310, 81, 540, 81),
        LineSegment(100, 400, 540, 400),
        LineSegment(100, 80, 100, 400),
        LineSegment(540, 80, 540, 400),
    ]
    clusters = detector.cluster_segments(segments, 640, 480)
    horizontal = [c for c in clusters if c.is_horizontal]
    vertical = [c for c in clusters if not c.is_horizontal]
    assert len(horizontal) == 2
    assert len(vertical) == 2
    top = min(horizontal, key=lambda c: c.rho)
    assert len(top.segments) == 2
    assert top.rho == pytest.approx(80.5 - 240, abs=1.0)


def test_gradient_density_on_true_outline():
    detector = LsdRadonDetector()
    gx, gy = sobel(low_contrast_gray())
    assert detector.gradient_density(gx, gy, rect_corners()) > 0.1

    flat = np.zeros((480, 640), dtype=np.float32)
    assert detector.gradient_density(flat, flat, rect_corners()) == 0.0


def test_tier1_recovers_rectangle():
    detector = LsdRadonDetector()
    gray = low_contrast_gray()
    gx, gy = sobel(gray)
    clusters = detector.cluster_segments(detector.detect_segments(gray), 640, 480)
    result = detector.detect_tier1(clusters, gx, gy)
    assert result is not None
    assert result.tier == 1
    assert 0.50 <= result.confidence <= 0.85
    np.testing.assert_allclose(result.corners, rect_corners(), atol=4.0)


def test_tier1_rejects_sides_without_gradient():
    detector = LsdRadonDetector()
    # Full-width band: real horizontal edges, nothing under the vertical sides
    band = np.full((480, 640), 200, dtype=np.uint8)
    cv2.rectangle(band, (0, 80), (639, 400), 212, -1)
    gx, gy = sobel(cv2.GaussianBlur(band, (3, 3), 0))
    clusters = [
        EdgeCluster([LineSegment(100, 80, 540, 80)], 0.0, -160.0, 440.0, True),
        EdgeCluster([LineSegment(100, 400, 540, 400)], 0.0, 160.0, 440.0, True),
        EdgeCluster([LineSegment(100, 80, 100, 400)], 90.0, 220.0, 320.0, False),
        EdgeCluster([LineSegment(540, 80, 540, 400)], 90.0, -220.0, 320.0, False),
    ]

    assert detector.gradient_density(gx, gy, rect_corners()) == 0.0
    assert detector.detect_tier1(clusters, gx, gy) is None

    # The same clusters over a real rectangle are accepted
    gx, gy = sobel(low_contrast_gray())
    assert detector.detect_tier1(clusters, gx, gy) is not None


def test_tier2_recovers_missing_side():
    detector = LsdRadonDetector()
    gx, gy = sobel(low_contrast_gray())
    center = (320.0, 240.0)
    known = [
        EdgeCluster([LineSegment(100, 80, 540, 80)], 0.0, 80.0 - center[1], 440.0, True),
        EdgeCluster([LineSegment(100, 400, 540, 400)], 0.0, 400.0 - center[1], 440.0, True),
        EdgeCluster([LineSegment(100, 80, 100, 400)], 90.0, center[0] - 100.0, 320.0, False),
    ]
    result = detector.detect_tier2(known, gx, gy)
    assert result is not None
    assert result.tier == 2
    assert 0.45 <= result.confidence <= 0.75
    np.testing.assert_allclose(result.corners, rect_corners(), atol=4.0)


@pytest.mark.parametrize("tl, br", [
    (RECT_TL, RECT_BR),
    ((98, 80), (542, 400)),
    ((150, 100), (490, 380)),
])
def test_tier3_finds_rectangle_without_segments(tl, br):
    detector = LsdRadonDetector()
    gx, gy = sobel(low_contrast_gray(tl=tl, br=br))
    result = detector.detect_tier3(gx, gy)
    assert result is not None
    assert result.tier == 3
    assert 0.40 <= result.confidence <= 0.65
    np.testing.assert_allclose(result.corners, rect_corners(tl, br), atol=4.0)


def test_local_peaks_accepts_plateau_and_band_ends():
    rhos = np.arange(6, dtype=np.float64) * 8.0
    # Two equal neighbours, then a peak on the second to last sample
    responses = np.array([0.0, 5.0, 5.0, 1.0, 3.0, 0.0])
    peaks = LsdRadonDetector._local_peaks(responses, rhos, min_separation=10.0, max_peaks=4)
    assert peaks == [(16.0, 5.0), (32.0, 3.0)]

    assert LsdRadonDetector._local_peaks(np.zeros(6), rhos, 10.0, 4) == []


def test_detect_on_flat_image_returns_none():
    assert LsdRadonDetector().detect(np.full((480, 640), 210, dtype=np.uint8)) is None


def test_detect_end_to_end():
    result = LsdRadonDetector().detect(low_contrast_gray())
    assert result is not None
    np.testing.assert_allclose(result.corners, rect_corners(), atol=4.0)


def test_rejects_color_input():
    with pytest.raises(ValueError):
        LsdRadonDetector().detect(np.zeros((10, 10, 3), dtype=np.uint8))
