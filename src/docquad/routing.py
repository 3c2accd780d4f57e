"""
DocQuad Routing - What the UI does with a detection
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .geometry import Quad, inset_corners, order_corners


SUPPRESS_BELOW = 0.35
AUTO_CAPTURE_FROM = 0.65
DEFAULT_INSET = 0.10


class RoutingDecision(Enum):
    MANUAL_DEFAULT = "manual_default"   # Nothing found: inset default corners
    SUPPRESSED = "suppressed"           # Too weak to show, behaves like nothing found
    MANUAL_ADJUST = "manual_adjust"     # Pre-fill detected corners for adjustment
    AUTO_CAPTURE = "auto_capture"       # Eligible for automatic capture


@dataclass
class RoutedDetection:
    decision: RoutingDecision
    corners: Quad
    confidence: float

    @property
    def is_detected(self) -> bool:
        return self.decision in (RoutingDecision.MANUAL_ADJUST, RoutingDecision.AUTO_CAPTURE)


def route_detection(
    quad: Optional[Quad],
    confidence: float,
    width: int,
    height: int
) -> RoutedDetection:
    """
    Map a detection onto the UI contract.

    Args:
        quad: Detected corners or None
        confidence: Detection confidence
        width: Frame width, for default corners
        height: Frame height, for default corners
    """
    if quad is None:
        return RoutedDetection(RoutingDecision.MANUAL_DEFAULT, inset_corners(width, height, DEFAULT_INSET), 0.0)
    if confidence < SUPPRESS_BELOW:
        return RoutedDetection(RoutingDecision.SUPPRESSED, inset_corners(width, height, DEFAULT_INSET), confidence)
    if confidence < AUTO_CAPTURE_FROM:
        return RoutedDetection(RoutingDecision.MANUAL_ADJUST, order_corners(quad), confidence)
    return RoutedDetection(RoutingDecision.AUTO_CAPTURE, order_corners(quad), confidence)
