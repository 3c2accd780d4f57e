"""Tests for corner refinement and perspective warps."""

import cv2
import numpy as np
import pytest

from docquad.rectify import output_size, rectify, rectify_with_aspect_ratio, refine_corners

from conftest import make_quad_frame


def test_refine_pulls_corners_onto_rectangle(rect_frame, corners):
    rough = corners + np.float32([2.0, -2.0])
    refined = refine_corners(rect_frame, rough)
    np.testing.assert_allclose(refined, corners, atol=1.5)


def test_refine_clamps_out_of_frame_corners(rect_frame):
    outside = np.array([[-20, -20], [700, -5], [700, 500], [-3, 500]], dtype=np.float32)
    refined = refine_corners(rect_frame, outside)
    assert refined.shape == (4, 2)
    assert np.all(refined[:, 0] >= 0) and np.all(refined[:, 0] < 640)
    assert np.all(refined[:, 1] >= 0) and np.all(refined[:, 1] < 480)


def test_output_size_uses_longest_edges():
    quad = np.array([[0, 0], [300, 0], [280, 200], [20, 210]], dtype=np.float32)
    width, height = output_size(quad)
    assert width == 300
    assert height == int(np.hypot(20, 210))


def test_rectify_trapezoid_fills_output():
    quad = np.array([[200, 100], [440, 100], [540, 400], [100, 400]], dtype=np.float32)
    frame = make_quad_frame(quad)
    warped = rectify(frame, quad)
    assert (warped.shape[1], warped.shape[0]) == output_size(quad)
    inner = cv2.cvtColor(warped, cv2.COLOR_BGR2GRAY)[10:-10, 10:-10]
    assert inner.mean() > 240


def test_rectify_with_aspect_ratio_keeps_long_side(rect_frame, corners):
    warped = rectify_with_aspect_ratio(rect_frame, corners, 1.0 / 1.414)
    assert warped.shape[1] == 440
    assert warped.shape[0] == round(440 / 1.414)


def test_rectify_with_aspect_ratio_portrait():
    quad = np.array([[100, 50], [300, 50], [300, 450], [100, 450]], dtype=np.float32)
    frame = make_quad_frame(quad)
    warped = rectify_with_aspect_ratio(frame, quad, 0.5)
    assert warped.shape[:2] == (400, 200)


@pytest.mark.parametrize("ratio", [0.0, 1.2])
def test_rejects_bad_ratio(rect_frame, corners, ratio):
    with pytest.raises(ValueError):
        rectify_with_aspect_ratio(rect_frame, corners, ratio)


def test_rejects_degenerate_quad(rect_frame):
    with pytest.raises(ValueError):
        rectify(rect_frame, np.zeros((4, 2), dtype=np.float32))
