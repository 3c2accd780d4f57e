"""
DocQuad Quad Smoother - Temporal stabilization of the displayed quad

Raw per-frame corners jitter by a pixel or two even on a static scene.
The smoother keeps the last few detections, blends toward their mean,
and tells the UI how long the quad has been steady.

Drift response (drift = mean corner move / smoothed bbox diagonal):
    < 2.5%     blend 0.5, stability +1
    2.5 - 10%  blend 0.25, stability held
    > 10%      hard reset, stability 0
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from .geometry import Quad, as_points, average_corner_distance, bounding_diagonal, order_corners


@dataclass
class SmoothedQuad:
    """What the smoother emits each frame."""
    quad: Optional[Quad]
    stability_count: int
    stability_fraction: float
    average_confidence: float
    drift: float = 0.0

    FOCUS_FRACTION = 0.5
    CAPTURE_CONFIDENCE = 0.65

    @property
    def is_focus_ready(self) -> bool:
        return self.quad is not None and self.stability_fraction >= self.FOCUS_FRACTION

    @property
    def is_stable(self) -> bool:
        return self.quad is not None and self.stability_fraction >= 1.0

    def is_capture_ready(self, min_confidence: float = CAPTURE_CONFIDENCE) -> bool:
        """Fully stable and confident enough to fire auto-capture."""
        return self.is_stable and self.average_confidence >= min_confidence


class QuadSmoother:
    """
    Tiered temporal filter over raw detections.

    Not thread-safe; one caller per instance.
    """

    WINDOW_SIZE = 5
    STABILITY_FRAMES = 20
    STANDARD_DRIFT = 0.025
    RESET_DRIFT = 0.10
    STANDARD_WEIGHT = 0.5
    DAMPED_WEIGHT = 0.25
    MAX_MISSES = 10

    def __init__(self):
        self._buffer: Deque[np.ndarray] = deque(maxlen=self.WINDOW_SIZE)
        self._confidences: Deque[float] = deque(maxlen=self.WINDOW_SIZE)
        self._smoothed: Optional[np.ndarray] = None
        self._stability = 0
        self._misses = 0
        self.logger = logging.getLogger("QuadSmoother")

    @property
    def stability_count(self) -> int:
        return self._stability

    @property
    def quad(self) -> Optional[Quad]:
        return None if self._smoothed is None else self._smoothed.astype(np.float32)

    def update(self, quad: Optional[Quad], confidence: float = 1.0) -> SmoothedQuad:
        """
        Feed one frame's raw corners (None = nothing detected this frame).

        Args:
            quad: Raw corners in TL, TR, BR, BL order, or None
            confidence: Detection confidence for the rolling average

        Returns:
            SmoothedQuad for display / capture gating
        """
        if quad is None:
            return self._miss()

        raw = as_points(order_corners(quad))
        self._misses = 0

        if self._smoothed is None:
            self._restart(raw, confidence)
            self._stability = 1
            return self._emit(0.0)

        diagonal = bounding_diagonal(self._smoothed)
        drift = average_corner_distance(raw, self._smoothed) / diagonal if diagonal > 0 else 1.0

        # Jump check before any blending
        if drift > self.RESET_DRIFT:
            self.logger.debug(f"Smoother hard reset (drift {drift:.1%})")
            self._restart(raw, confidence)
            self._stability = 0
            return self._emit(drift)

        self._buffer.append(raw)
        self._confidences.append(float(confidence))
        target = np.mean(np.stack(self._buffer), axis=0)

        if drift < self.STANDARD_DRIFT:
            weight = self.STANDARD_WEIGHT
            self._stability = min(self.STABILITY_FRAMES, self._stability + 1)
        else:
            weight = self.DAMPED_WEIGHT

        self._smoothed = self._smoothed + weight * (target - self._smoothed)
        return self._emit(drift)

    def reset(self):
        self._buffer.clear()
        self._confidences.clear()
        self._smoothed = None
        self._stability = 0
        self._misses = 0

    def _restart(self, raw: np.ndarray, confidence: float):
        """Start a fresh window, confidences included, from one detection."""
        self._buffer.clear()
        self._buffer.append(raw)
        self._confidences.clear()
        self._confidences.append(float(confidence))
        self._smoothed = raw.copy()

    def _miss(self) -> SmoothedQuad:
        self._misses += 1
        self._stability = 0
        if self._misses >= self.MAX_MISSES:
            if self._smoothed is not None:
                self.logger.debug(f"Smoother cleared after {self._misses} missed frames")
            self.reset()
        return self._emit(0.0)

    def _emit(self, drift: float) -> SmoothedQuad:
        avg_conf = float(np.mean(self._confidences)) if self._confidences else 0.0
        return SmoothedQuad(
            quad=self.quad,
            stability_count=self._stability,
            stability_fraction=self._stability / float(self.STABILITY_FRAMES),
            average_confidence=avg_conf,
            drift=float(drift),
        )
