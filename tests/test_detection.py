"""Tests for the strategy loop and scale handling."""

import time

import numpy as np
import pytest

from docquad.detection import DocumentDetector
from docquad.preprocessing import DEFAULT_STRATEGIES, PreprocessStrategy

from conftest import make_rect_frame, rect_corners


def test_detects_high_contrast_document(rect_frame, corners):
    result = DocumentDetector().detect(rect_frame)
    assert result.found
    assert result.confidence >= 0.65
    assert result.strategy == PreprocessStrategy.STANDARD.label
    np.testing.assert_allclose(result.quad, corners, atol=3.0)


def test_blank_frame_has_no_detection(blank_frame):
    result = DocumentDetector().detect(blank_frame)
    assert not result.found
    assert result.confidence == 0.0
    assert result.strategy == "none"


def test_large_frame_is_scaled_back():
    frame = make_rect_frame(tl=(200, 160), br=(1080, 800), size=(1280, 960))
    result = DocumentDetector().detect(frame)
    assert result.found
    np.testing.assert_allclose(result.quad, rect_corners((200, 160), (1080, 800)), atol=6.0)


def test_white_on_white_document():
    frame = make_rect_frame(background=200, foreground=215)
    result = DocumentDetector().detect(frame)
    assert result.found
    np.testing.assert_allclose(result.quad, rect_corners(), atol=5.0)


def test_explicit_strategy_order_is_restored(rect_frame):
    detector = DocumentDetector()
    result = detector.detect_with_strategies(rect_frame, [PreprocessStrategy.CLAHE_ENHANCED])
    assert result.strategy == PreprocessStrategy.CLAHE_ENHANCED.label
    assert detector.strategies is None


def test_lsd_disabled_without_contour_hit():
    frame = make_rect_frame(background=200, foreground=203)
    detector = DocumentDetector(enable_lsd=False, strategies=[PreprocessStrategy.STANDARD])
    result = detector.detect(frame)
    assert not result.strategy.startswith("lsd_radon")


def test_empty_frame_rejected():
    with pytest.raises(ValueError):
        DocumentDetector().detect(np.zeros((0, 0, 3), dtype=np.uint8))


def slow_preprocessor(detector: DocumentDetector, monkeypatch, delay_s: float = 0.03):
    """Make every strategy take delay_s and record the order they ran in."""
    calls = []
    apply = detector.preprocessor.apply

    def slow_apply(frame, strategy):
        calls.append(strategy)
        time.sleep(delay_s)
        return apply(frame, strategy)

    monkeypatch.setattr(detector.preprocessor, "apply", slow_apply)
    return calls


class TestStrategyBudget:
    def test_budget_stops_after_first_strategy(self, blank_frame, monkeypatch):
        detector = DocumentDetector(budget_ms=25.0)
        calls = slow_preprocessor(detector, monkeypatch)
        result = detector.detect(blank_frame)
        assert not result.found
        assert calls == [DEFAULT_STRATEGIES[0]]

    def test_first_strategy_runs_with_zero_budget(self, blank_frame, monkeypatch):
        detector = DocumentDetector(budget_ms=0.0)
        calls = slow_preprocessor(detector, monkeypatch, delay_s=0.0)
        detector.detect(blank_frame)
        assert calls == [DEFAULT_STRATEGIES[0]]

    def test_generous_budget_runs_every_strategy(self, blank_frame, monkeypatch):
        detector = DocumentDetector(budget_ms=1000.0)
        calls = slow_preprocessor(detector, monkeypatch)
        detector.detect(blank_frame)
        assert calls == list(DEFAULT_STRATEGIES)


def test_strategy_order_comes_from_selector(blank_frame, monkeypatch):
    detector = DocumentDetector()
    order = [PreprocessStrategy.BILATERAL, PreprocessStrategy.STANDARD]
    monkeypatch.setattr(detector.selector, "select", lambda frame: list(order))
    calls = slow_preprocessor(detector, monkeypatch, delay_s=0.0)
    detector.detect(blank_frame)
    assert calls == order


def test_scene_cache_advances_once_per_detection(blank_frame):
    detector = DocumentDetector()
    detector.detect(blank_frame)
    detector.detect(blank_frame)
    assert detector.selector._frames_since_analysis == 2
