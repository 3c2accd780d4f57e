"""Tests for rectified-page orientation."""

import cv2
import numpy as np
import pytest

from docquad.orientation import DocumentOrientation, OrientationDetector


def text_page() -> np.ndarray:
    """White 400x300 page with lines of dark vertical strokes in the top half."""
    page = np.full((300, 400, 3), 255, dtype=np.uint8)
    for y in range(20, 140, 20):
        for x in range(20, 380, 6):
            cv2.rectangle(page, (x, y), (x + 1, y + 11), (0, 0, 0), -1)
    return page


@pytest.fixture
def detector() -> OrientationDetector:
    return OrientationDetector()


def test_upright_page(detector):
    assert detector.detect(text_page()) == DocumentOrientation.CORRECT


@pytest.mark.parametrize("rotation, expected", [
    (cv2.ROTATE_180, DocumentOrientation.ROTATE_180),
    (cv2.ROTATE_90_COUNTERCLOCKWISE, DocumentOrientation.ROTATE_90),
    (cv2.ROTATE_90_CLOCKWISE, DocumentOrientation.ROTATE_270),
])
def test_turned_page_is_detected_and_restored(detector, rotation, expected):
    page = text_page()
    turned = cv2.rotate(page, rotation)

    corrected, orientation = detector.detect_and_correct(turned)
    assert orientation == expected
    np.testing.assert_array_equal(corrected, page)


def test_blank_page_is_left_alone(detector):
    blank = np.full((300, 400), 255, dtype=np.uint8)
    corrected, orientation = detector.detect_and_correct(blank)
    assert orientation == DocumentOrientation.CORRECT
    assert corrected is blank


def test_tiny_image(detector):
    assert detector.detect(np.zeros((1, 5), dtype=np.uint8)) == DocumentOrientation.CORRECT


def test_empty_image_rejected(detector):
    with pytest.raises(ValueError):
        detector.detect(np.zeros((0, 0, 3), dtype=np.uint8))
