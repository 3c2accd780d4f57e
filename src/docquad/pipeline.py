"""
DocQuad Pipeline - Per-frame orchestration

    frame ─▶ detect (only when the tracker asks) ─▶ track ─▶ smooth ─▶ route

Holds the stateful pieces (tracker, smoother, aspect accumulator) for one
preview stream. Drive it from a single worker thread; see video_pipeline.FrameWorker.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .aspect_ratio import AspectEstimate, AspectRatioEstimator, CameraIntrinsics
from .config import PipelineConfig
from .corner_tracker import CornerTracker, TrackerResult, TrackingState
from .detection import DetectionResult, DocumentDetector
from .geometry import Quad
from .multi_frame import MultiFrameAspectEstimator, MultiFrameEstimate
from .quad_smoother import QuadSmoother, SmoothedQuad
from .routing import RoutedDetection, route_detection


@dataclass
class PipelineResult:
    """Everything known about one processed frame."""
    frame_number: int
    detection: Optional[DetectionResult]   # None when tracking skipped detection
    tracker: TrackerResult
    smoothed: SmoothedQuad
    routed: RoutedDetection
    confidence: float
    elapsed_ms: float

    @property
    def corners(self) -> Optional[Quad]:
        """Corners to display: the smoothed quad."""
        return self.smoothed.quad

    @property
    def is_tracking(self) -> bool:
        return self.tracker.state == TrackingState.TRACKING


class DocumentPipeline:
    """
    Detection + tracking + smoothing for a live preview.

    Usage:
        pipeline = DocumentPipeline()
        for frame in frames:
            result = pipeline.process_frame(frame)
            if result.smoothed.is_capture_ready():
                capture()
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.detector = DocumentDetector(
            analysis_width=self.config.analysis_width,
            budget_ms=self.config.strategy_budget_ms,
            accept_confidence=self.config.accept_confidence,
            enable_lsd=self.config.enable_lsd,
        )
        self.tracker = CornerTracker()
        self.smoother = QuadSmoother()
        self.estimator = AspectRatioEstimator()
        self.aspect_accumulator = MultiFrameAspectEstimator()

        self._frame_number = 0
        self._frame_size: Optional[Tuple[int, int]] = None
        self._confidence = 0.0
        self.logger = logging.getLogger("DocumentPipeline")

    # =========================================================================
    # STAGES
    # =========================================================================

    def detect(self, frame: np.ndarray) -> DetectionResult:
        return self.detector.detect(frame)

    def track(
        self,
        frame: np.ndarray,
        fresh_detection: Optional[Quad] = None,
        confidence: float = 0.0
    ) -> TrackerResult:
        return self.tracker.process_frame(frame, fresh_detection, confidence)

    def smooth(self, raw_quad: Optional[Quad], confidence: float = 1.0) -> SmoothedQuad:
        return self.smoother.update(raw_quad, confidence)

    def estimate_aspect_ratio(
        self,
        corners: Sequence,
        intrinsics: Optional[CameraIntrinsics] = None
    ) -> AspectEstimate:
        return self.estimator.estimate(corners, intrinsics)

    def estimate_multi_frame_aspect(
        self,
        intrinsics: Optional[CameraIntrinsics] = None
    ) -> Optional[MultiFrameEstimate]:
        """Ratio pooled over the views seen since the quad last became steady."""
        return self.aspect_accumulator.estimate(intrinsics, self._frame_size)

    # =========================================================================
    # FULL STEP
    # =========================================================================

    def process_frame(self, frame: np.ndarray) -> PipelineResult:
        """
        Run one frame through the whole preview pipeline.

        Detection only runs when the tracker has nothing to track or is
        about to hit a correction frame.
        """
        if frame is None or frame.size == 0:
            raise ValueError("Cannot process an empty frame")

        start = time.perf_counter()
        self._frame_number += 1
        h, w = frame.shape[:2]

        detection = None
        if self.tracker.state == TrackingState.DETECT_ONLY or self.tracker.needs_correction_detection():
            detection = self.detect(frame)
            self._confidence = detection.confidence

        tracked = self.track(
            frame,
            detection.quad if detection is not None else None,
            detection.confidence if detection is not None else 0.0,
        )

        if tracked.corners is None:
            self._confidence = 0.0
        smoothed = self.smooth(tracked.corners, self._confidence)

        self._frame_size = (w, h)
        self._accumulate_views(tracked.corners, smoothed)

        shown = smoothed.quad if tracked.corners is not None else None
        routed = route_detection(shown, self._confidence, w, h)

        elapsed = (time.perf_counter() - start) * 1000
        self.logger.debug(
            f"Frame {self._frame_number}: state={tracked.state.value} "
            f"tracked={tracked.is_tracked} route={routed.decision.value} ({elapsed:.1f}ms)"
        )
        return PipelineResult(
            frame_number=self._frame_number,
            detection=detection,
            tracker=tracked,
            smoothed=smoothed,
            routed=routed,
            confidence=self._confidence,
            elapsed_ms=elapsed,
        )

    def _accumulate_views(self, corners: Optional[Quad], smoothed: SmoothedQuad):
        # Views only count while the quad is steady; any break starts over
        if smoothed.stability_count == 0:
            self.aspect_accumulator.reset()
        elif corners is not None and smoothed.is_focus_ready:
            self.aspect_accumulator.add_frame(corners)

    def reset(self):
        self.tracker.reset()
        self.smoother.reset()
        self.detector.reset()
        self.aspect_accumulator.reset()
        self._confidence = 0.0
