"""Tests for confidence routing."""

import numpy as np
import pytest

from docquad.geometry import inset_corners
from docquad.routing import RoutingDecision, route_detection


def test_no_detection_uses_default_corners():
    routed = route_detection(None, 0.0, 640, 480)
    assert routed.decision == RoutingDecision.MANUAL_DEFAULT
    assert not routed.is_detected
    np.testing.assert_allclose(routed.corners, inset_corners(640, 480))


def test_weak_detection_is_suppressed(corners):
    routed = route_detection(corners, 0.2, 640, 480)
    assert routed.decision == RoutingDecision.SUPPRESSED
    assert not routed.is_detected
    np.testing.assert_allclose(routed.corners, inset_corners(640, 480))


@pytest.mark.parametrize("confidence, decision", [
    (0.35, RoutingDecision.MANUAL_ADJUST),
    (0.5, RoutingDecision.MANUAL_ADJUST),
    (0.649, RoutingDecision.MANUAL_ADJUST),
    (0.65, RoutingDecision.AUTO_CAPTURE),
    (0.95, RoutingDecision.AUTO_CAPTURE),
])
def test_thresholds(corners, confidence, decision):
    routed = route_detection(corners, confidence, 640, 480)
    assert routed.decision == decision
    assert routed.is_detected
    assert routed.confidence == confidence
    np.testing.assert_allclose(routed.corners, corners)
