"""Tests for quad geometry helpers."""

import numpy as np
import pytest

from docquad.geometry import (
    angle_regularity,
    average_corner_distance,
    corners_in_bounds,
    inset_corners,
    intersect_lines,
    is_convex,
    line_from_angle_rho,
    order_corners,
    quad_area,
)


RECT_CW = np.array([[0, 0], [100, 0], [100, 50], [0, 50]], dtype=np.float32)
TRAPEZOID = np.array([[20, 0], [80, 0], [100, 50], [0, 50]], dtype=np.float32)


class TestIsConvex:
    def test_rectangle_both_windings(self):
        assert is_convex(RECT_CW)
        assert is_convex(RECT_CW[::-1])

    def test_trapezoid_both_windings(self):
        assert is_convex(TRAPEZOID)
        assert is_convex(TRAPEZOID[::-1])

    def test_vertex_pushed_inside(self):
        dented = RECT_CW.copy()
        dented[2] = [40, 20]
        assert not is_convex(dented)

    def test_bowtie(self):
        bowtie = RECT_CW[[0, 2, 1, 3]]
        assert not is_convex(bowtie)

    def test_degenerate(self):
        assert not is_convex(np.zeros((4, 2)))


class TestQuadArea:
    def test_rectangle(self):
        assert quad_area(RECT_CW) == pytest.approx(5000.0, abs=0.01)

    def test_winding_independent(self):
        assert quad_area(RECT_CW) == pytest.approx(quad_area(RECT_CW[::-1]))

    def test_trapezoid(self):
        assert quad_area(TRAPEZOID) == pytest.approx(4000.0, abs=0.01)


class TestAverageCornerDistance:
    def test_identical(self):
        assert average_corner_distance(RECT_CW, RECT_CW) == 0.0

    def test_uniform_translation(self):
        moved = RECT_CW + np.array([3, 4], dtype=np.float32)
        assert average_corner_distance(RECT_CW, moved) == pytest.approx(5.0)

    def test_single_corner_moved(self):
        moved = RECT_CW.copy()
        moved[1, 0] += 20
        assert average_corner_distance(RECT_CW, moved) == pytest.approx(5.0)

    def test_requires_four_points(self):
        with pytest.raises(ValueError):
            average_corner_distance(RECT_CW[:3], RECT_CW[:3])


class TestOrderCorners:
    def test_shuffled_points(self):
        shuffled = RECT_CW[[2, 0, 3, 1]]
        np.testing.assert_array_equal(order_corners(shuffled), RECT_CW)

    def test_accepts_contour_shape(self):
        contour = RECT_CW[[1, 3, 0, 2]].reshape(4, 1, 2)
        ordered = order_corners(contour)
        assert ordered.dtype == np.float32
        np.testing.assert_array_equal(ordered, RECT_CW)

    def test_wrong_count(self):
        with pytest.raises(ValueError):
            order_corners(RECT_CW[:3])


def test_angle_regularity():
    assert angle_regularity(RECT_CW) == pytest.approx(1.0)
    assert angle_regularity(TRAPEZOID) < 1.0


def test_inset_corners():
    inset = inset_corners(640, 480)
    np.testing.assert_allclose(inset[0], [64, 48])
    np.testing.assert_allclose(inset[2], [576, 432])


def test_corners_in_bounds():
    assert corners_in_bounds(RECT_CW, 101, 51)
    assert not corners_in_bounds(RECT_CW, 100, 50)


def test_line_intersection():
    center = (320.0, 240.0)
    horizontal = line_from_angle_rho(0.0, -100.0, center)   # y = 140
    vertical = line_from_angle_rho(90.0, 50.0, center)      # x = 270
    x, y = intersect_lines(horizontal, vertical)
    assert x == pytest.approx(270.0)
    assert y == pytest.approx(140.0)

    assert intersect_lines(horizontal, line_from_angle_rho(0.0, 10.0, center)) is None
