"""Tests for aspect ratio estimation and format snapping."""

import numpy as np
import pytest

from docquad.aspect_ratio import (
    KNOWN_FORMATS,
    AspectRatioEstimator,
    AspectRegime,
    CameraIntrinsics,
    angular_corrected_ratio,
    compute_raw_ratio,
    perspective_severity,
)

from conftest import project_rectangle, rect_corners


A4 = 1.0 / 1.414
INTRINSICS = CameraIntrinsics(fx=1000.0, fy=1000.0, cx=320.0, cy=240.0)


def format_named(name: str):
    return next(f for f in KNOWN_FORMATS if f.name == name)


def box(width: float, height: float) -> np.ndarray:
    return rect_corners(tl=(0, 0), br=(width, height))


class TestRatioHelpers:
    def test_raw_ratio_is_orientation_free(self):
        assert compute_raw_ratio(box(400, 200)) == pytest.approx(0.5)
        assert compute_raw_ratio(box(200, 400)) == pytest.approx(0.5)

    def test_angular_equals_raw_for_rectangle(self):
        corners = box(400, 200)
        assert angular_corrected_ratio(corners) == pytest.approx(compute_raw_ratio(corners))
        assert perspective_severity(corners) == pytest.approx(0.0, abs=1e-6)

    def test_requires_four_points(self):
        with pytest.raises(ValueError):
            compute_raw_ratio(box(400, 200)[:3])
        with pytest.raises(ValueError):
            AspectRatioEstimator().estimate(box(400, 200)[:3])


class TestRegimes:
    def test_frontal_rectangle_uses_angular(self):
        estimate = AspectRatioEstimator().estimate(box(400, 200))
        assert estimate.regime == AspectRegime.ANGULAR
        assert estimate.confidence == pytest.approx(0.85)
        assert estimate.ratio == pytest.approx(0.5)
        assert estimate.format is None
        assert estimate.best_ratio == pytest.approx(0.5)

    def test_mild_tilt_a4(self):
        corners = project_rectangle(210, 297, tilt_deg=10, distance=1000)
        estimate = AspectRatioEstimator().estimate(corners)
        assert estimate.regime == AspectRegime.ANGULAR
        assert estimate.ratio == pytest.approx(A4, rel=0.02)
        assert estimate.format == format_named("A4")
        assert estimate.best_ratio == pytest.approx(A4)

    def test_steep_tilt_with_intrinsics_is_projective(self):
        corners = project_rectangle(297, 210, tilt_deg=50, distance=600)
        estimate = AspectRatioEstimator().estimate(corners, INTRINSICS)
        assert estimate.severity > 10.0
        assert estimate.regime == AspectRegime.PROJECTIVE
        assert estimate.confidence == pytest.approx(0.75)
        assert estimate.ratio == pytest.approx(A4, rel=0.01)
        assert estimate.format == format_named("A4")

    def test_steep_tilt_without_intrinsics_falls_back(self):
        corners = project_rectangle(297, 210, tilt_deg=50, distance=600)
        estimate = AspectRatioEstimator().estimate(corners)
        assert estimate.regime == AspectRegime.FALLBACK
        assert estimate.confidence == pytest.approx(0.4)

    def test_transition_band_blends(self):
        corners = project_rectangle(210, 297, tilt_deg=30, distance=600)
        estimate = AspectRatioEstimator().estimate(corners, INTRINSICS)
        assert 5.0 <= estimate.severity <= 10.0
        assert estimate.regime == AspectRegime.BLENDED
        assert 0.75 < estimate.confidence < 0.85

    def test_transition_band_without_intrinsics(self):
        corners = project_rectangle(210, 297, tilt_deg=30, distance=600)
        estimate = AspectRatioEstimator().estimate(corners)
        assert estimate.regime == AspectRegime.FALLBACK
        assert 0.4 < estimate.confidence < 0.85


class TestSnapping:
    def test_clear_winner(self):
        estimate = AspectRatioEstimator().estimate(box(1414, 1000))
        assert estimate.format == format_named("A4")
        assert estimate.snap_confidence == pytest.approx(1.0, abs=1e-3)
        assert not estimate.verified_by_homography

    def test_ambiguous_without_intrinsics_is_penalized(self):
        # Almost exactly between A4 and US Letter
        estimate = AspectRatioEstimator().estimate(box(500, 370))
        assert estimate.format in (format_named("A4"), format_named("US Letter"))
        assert not estimate.verified_by_homography
        assert estimate.snap_confidence < AspectRatioEstimator.UNVERIFIED_PENALTY
        assert estimate.best_ratio == pytest.approx(estimate.ratio)

    def test_ambiguous_with_intrinsics_is_verified(self):
        corners = box(500, 370) + np.float32([70, 55])
        estimate = AspectRatioEstimator().estimate(corners, INTRINSICS)
        assert estimate.format in (format_named("A4"), format_named("US Letter"))
        assert estimate.verified_by_homography

    def test_nothing_close(self):
        estimate = AspectRatioEstimator().estimate(box(400, 180))
        assert estimate.format is None
        assert estimate.snap_confidence == 0.0


class TestHomographyError:
    def test_true_ratio_fits_best(self):
        estimator = AspectRatioEstimator()
        corners = project_rectangle(297, 210, tilt_deg=50, distance=600)
        a4_error = estimator.homography_error(corners, A4, INTRINSICS)
        letter_error = estimator.homography_error(corners, 1.0 / 1.294, INTRINSICS)
        assert a4_error < 0.02
        assert a4_error < letter_error

    @pytest.mark.parametrize("ratio", [0.0, -0.5, 1.5])
    def test_rejects_invalid_ratio(self, ratio):
        with pytest.raises(ValueError):
            AspectRatioEstimator().homography_error(box(400, 200), ratio, INTRINSICS)


class TestIntrinsics:
    def test_matrix(self):
        K = INTRINSICS.matrix
        assert K[0, 0] == 1000.0
        assert K[0, 2] == 320.0
        assert K[2, 2] == 1.0

    def test_rotations(self):
        k = CameraIntrinsics(fx=1000.0, fy=1100.0, cx=300.0, cy=200.0)
        assert k.for_rotation(0, 640, 480) == k
        assert k.for_rotation(90, 640, 480) == CameraIntrinsics(1100.0, 1000.0, 280.0, 300.0)
        assert k.for_rotation(180, 640, 480) == CameraIntrinsics(1000.0, 1100.0, 340.0, 280.0)
        assert k.for_rotation(270, 640, 480) == CameraIntrinsics(1100.0, 1000.0, 200.0, 340.0)

    def test_bad_rotation(self):
        with pytest.raises(ValueError):
            INTRINSICS.for_rotation(45, 640, 480)
