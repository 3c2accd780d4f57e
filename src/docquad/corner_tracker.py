"""
DocQuad Corner Tracker - Detect/track state machine

Full detection is expensive; once a confident quad is found its four
corners are carried from frame to frame with pyramidal Lucas-Kanade
optical flow. Every third tracking frame is a correction frame where a
fresh detection (if supplied) re-anchors the corners.

┌───────────────┐  detection >= 0.65   ┌──────────────┐
│  DETECT_ONLY  │ ───────────────────▶ │   TRACKING   │
│               │ ◀─────────────────── │  KLT + FB    │
└───────────────┘  flow fail / resize  └──────────────┘
                   / drift > 8px
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from .geometry import (
    Quad,
    average_corner_distance,
    corners_in_bounds,
    is_convex,
    order_corners,
    quad_area,
)
from .preprocessing import to_gray


class TrackingState(Enum):
    """Tracker mode."""
    DETECT_ONLY = "detect_only"   # Waiting for a confident detection
    TRACKING = "tracking"         # Corners propagated by optical flow


@dataclass
class TrackerResult:
    """Outcome of one tracker step."""
    state: TrackingState
    corners: Optional[Quad]
    is_tracked: bool              # True only when corners came from optical flow
    is_correction: bool = False
    drift: Optional[float] = None


class CornerTracker:
    """
    Four-corner KLT tracker with periodic re-validation.

    Not thread-safe: drive it from one worker, one frame at a time.

    Usage:
        tracker = CornerTracker()
        detection = None
        if tracker.state == TrackingState.DETECT_ONLY or tracker.needs_correction_detection():
            detection = detector.detect(frame)
        result = tracker.process_frame(frame, detection.quad, detection.confidence)
    """

    ENTRY_CONFIDENCE = 0.65
    CORRECTION_INTERVAL = 3
    MAX_CORRECTION_DRIFT = 8.0        # px, average corner distance

    FORWARD_BACKWARD_THRESHOLD = 1.5  # px round trip
    MAX_FLOW_ERROR = 12.0
    MIN_VALID_POINTS = 4              # every corner must survive
    MIN_TRACKED_AREA = 100.0

    def __init__(self):
        self.lk_params = dict(
            winSize=(15, 15),
            maxLevel=2,
            criteria=(cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 20, 0.03)
        )

        self._state = TrackingState.DETECT_ONLY
        self._prev_gray: Optional[np.ndarray] = None
        self._points: Optional[np.ndarray] = None
        self._frame_size: Optional[Tuple[int, int]] = None
        self._tracking_frame_count = 0

        self.logger = logging.getLogger("CornerTracker")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def tracking_frame_count(self) -> int:
        return self._tracking_frame_count

    @property
    def corners(self) -> Optional[Quad]:
        """Last known corners, None outside TRACKING."""
        return None if self._points is None else self._points.copy()

    def needs_correction_detection(self) -> bool:
        """True when the next process_frame call is a correction frame."""
        return (
            self._state == TrackingState.TRACKING and
            self._tracking_frame_count % self.CORRECTION_INTERVAL == 0
        )

    def process_frame(
        self,
        frame: np.ndarray,
        detected_corners: Optional[Quad] = None,
        confidence: float = 0.0
    ) -> TrackerResult:
        """
        Advance the state machine by one frame.

        Args:
            frame: BGR or grayscale frame (borrowed, copied internally where kept)
            detected_corners: Fresh detection for this frame, if one was run
            confidence: Confidence of that detection

        Returns:
            TrackerResult; failures reset the tracker instead of raising
        """
        if frame is None or frame.size == 0:
            raise ValueError("Cannot track on an empty frame")

        if self._state == TrackingState.DETECT_ONLY:
            return self._process_detect_only(frame, detected_corners, confidence)
        return self._process_tracking(frame, detected_corners)

    def reset(self):
        """Drop all tracking state and return to DETECT_ONLY."""
        if self._state != TrackingState.DETECT_ONLY:
            self.logger.debug("Tracker reset to DETECT_ONLY")
        self._state = TrackingState.DETECT_ONLY
        self._prev_gray = None
        self._points = None
        self._frame_size = None
        self._tracking_frame_count = 0

    # =========================================================================
    # STATES
    # =========================================================================

    def _process_detect_only(
        self,
        frame: np.ndarray,
        detected_corners: Optional[Quad],
        confidence: float
    ) -> TrackerResult:
        if detected_corners is None or confidence < self.ENTRY_CONFIDENCE:
            return TrackerResult(
                state=TrackingState.DETECT_ONLY,
                corners=detected_corners,
                is_tracked=False,
            )

        self._seed(frame, detected_corners)
        self._state = TrackingState.TRACKING
        self._tracking_frame_count = 1
        self.logger.debug(f"Tracking started (confidence={confidence:.2f})")

        return TrackerResult(
            state=TrackingState.TRACKING,
            corners=self._points.copy(),
            is_tracked=False,
        )

    def _process_tracking(self, frame: np.ndarray, detected_corners: Optional[Quad]) -> TrackerResult:
        h, w = frame.shape[:2]
        if self._frame_size != (w, h):
            self.logger.debug(f"Frame size changed {self._frame_size} -> {(w, h)}, resetting")
            self.reset()
            return TrackerResult(TrackingState.DETECT_ONLY, detected_corners, False)

        is_correction = self._tracking_frame_count % self.CORRECTION_INTERVAL == 0

        gray = to_gray(frame)
        tracked = self._track_corners(gray)
        if tracked is None:
            self.logger.debug("Optical flow failed, resetting")
            self.reset()
            return TrackerResult(TrackingState.DETECT_ONLY, detected_corners, False)

        if is_correction and detected_corners is not None:
            fresh = order_corners(detected_corners)
            drift = average_corner_distance(fresh, tracked)

            if drift > self.MAX_CORRECTION_DRIFT:
                self.logger.debug(f"Correction drift {drift:.1f}px, resetting")
                self.reset()
                return TrackerResult(
                    state=TrackingState.DETECT_ONLY,
                    corners=fresh,
                    is_tracked=False,
                    is_correction=True,
                    drift=drift,
                )

            self._seed(frame, fresh)
            self._tracking_frame_count += 1
            return TrackerResult(
                state=TrackingState.TRACKING,
                corners=fresh.copy(),
                is_tracked=False,
                is_correction=True,
                drift=drift,
            )

        self._points = tracked
        self._prev_gray = gray.copy()
        self._tracking_frame_count += 1
        return TrackerResult(
            state=TrackingState.TRACKING,
            corners=tracked.copy(),
            is_tracked=True,
            is_correction=is_correction,
        )

    # =========================================================================
    # OPTICAL FLOW
    # =========================================================================

    def _seed(self, frame: np.ndarray, corners: Quad):
        h, w = frame.shape[:2]
        self._points = order_corners(corners)
        self._prev_gray = to_gray(frame).copy()
        self._frame_size = (w, h)

    def _track_corners(self, gray: np.ndarray) -> Optional[Quad]:
        """
        Forward-backward KLT on the four corners.

        Returns:
            New corners, or None when any corner fails validation or the
            resulting quad is out of frame, concave or too small
        """
        pts_prev = self._points.reshape(-1, 1, 2).astype(np.float32)

        pts_next, status_fwd, err = cv2.calcOpticalFlowPyrLK(
            self._prev_gray, gray, pts_prev, None, **self.lk_params
        )
        if pts_next is None:
            return None

        pts_back, status_bwd, _ = cv2.calcOpticalFlowPyrLK(
            gray, self._prev_gray, pts_next, None, **self.lk_params
        )
        if pts_back is None:
            return None

        fb_error = np.linalg.norm(pts_prev - pts_back, axis=2).flatten()
        valid = (
            (status_fwd.flatten() == 1) &
            (status_bwd.flatten() == 1) &
            (fb_error < self.FORWARD_BACKWARD_THRESHOLD) &
            (err.flatten() <= self.MAX_FLOW_ERROR)
        )
        if int(valid.sum()) < self.MIN_VALID_POINTS:
            self.logger.debug(f"Only {int(valid.sum())}/4 corners survived optical flow")
            return None

        corners = pts_next.reshape(4, 2).astype(np.float32)
        h, w = gray.shape[:2]
        if not corners_in_bounds(corners, w, h):
            return None
        if not is_convex(corners) or quad_area(corners) < self.MIN_TRACKED_AREA:
            return None
        return corners
