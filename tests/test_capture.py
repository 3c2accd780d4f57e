"""Tests for the full-resolution capture path."""

import cv2
import pytest

from docquad import capture as capture_module
from docquad.aspect_ratio import CameraIntrinsics
from docquad.capture import CaptureError, CaptureProcessor
from docquad.orientation import DocumentOrientation


A4 = 1.0 / 1.414


def test_capture_rectifies_and_snaps(rect_frame):
    result = CaptureProcessor().process(rect_frame)
    assert result is not None
    assert result.confidence >= 0.65
    assert result.aspect.format is not None
    assert result.aspect.format.name == "A4"

    height, width = result.rectified.shape[:2]
    assert 438 <= width <= 443
    assert height / width == pytest.approx(A4, abs=0.01)


def test_capture_with_intrinsics(rect_frame):
    intrinsics = CameraIntrinsics(fx=800.0, fy=800.0, cx=320.0, cy=240.0)
    result = CaptureProcessor().process(rect_frame, intrinsics)
    assert result is not None
    assert result.pipeline_ms >= 0.0


def test_no_document(blank_frame):
    assert CaptureProcessor().process(blank_frame) is None


def test_detection_failure_names_stage(rect_frame, monkeypatch):
    processor = CaptureProcessor()

    def broken(frame):
        raise cv2.error("detector exploded")

    monkeypatch.setattr(processor.detector, "detect", broken)
    with pytest.raises(CaptureError) as info:
        processor.process(rect_frame)
    assert info.value.stage == "detection"
    assert isinstance(info.value.cause, cv2.error)


def test_rectification_failure_names_stage(rect_frame, monkeypatch):
    def broken(*args, **kwargs):
        raise cv2.error("warp exploded")

    monkeypatch.setattr(capture_module, "rectify_with_aspect_ratio", broken)
    with pytest.raises(CaptureError) as info:
        CaptureProcessor().process(rect_frame)
    assert info.value.stage == "rectification"


def test_orientation_is_off_by_default(rect_frame):
    result = CaptureProcessor().process(rect_frame)
    assert result.orientation == DocumentOrientation.CORRECT


def test_orientation_correction_rotates_page(rect_frame, monkeypatch):
    processor = CaptureProcessor(correct_orientation=True)
    monkeypatch.setattr(processor.orientation, "detect", lambda image: DocumentOrientation.ROTATE_90)

    result = processor.process(rect_frame)
    assert result.orientation == DocumentOrientation.ROTATE_90
    height, width = result.rectified.shape[:2]
    assert height > width
