"""
DocQuad Detection - Strategy loop with LSD/Radon fallback

One call = one frame. The frame is downscaled to the analysis width,
strategies are tried in the order the StrategySelector picks until one
yields an accepted detection or the time budget runs out, and the best
corners found are scaled back to frame coordinates.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .geometry import Quad, scale_quad
from .lsd_radon import LsdRadonDetector
from .preprocessing import PreprocessStrategy, Preprocessor, StrategySelector, to_gray
from .quad_detector import QuadDetector
from .video_pipeline import FrameProcessor


@dataclass
class DetectionResult:
    """
    Outcome of one detection pass.

    quad is None for "no detection"; a found quad always carries its
    confidence, however low.
    """
    quad: Optional[Quad]
    confidence: float
    strategy: str
    elapsed_ms: float

    @property
    def found(self) -> bool:
        return self.quad is not None


class DocumentDetector:
    """
    Full-frame document detection.

    Usage:
        detector = DocumentDetector()
        result = detector.detect(frame)
        if result.found:
            draw(result.quad)
    """

    ANALYSIS_WIDTH = 640
    STRATEGY_BUDGET_MS = 25.0
    ACCEPT_CONFIDENCE = 0.65

    def __init__(
        self,
        analysis_width: Optional[int] = None,
        budget_ms: Optional[float] = None,
        accept_confidence: Optional[float] = None,
        enable_lsd: bool = True,
        strategies: Optional[Sequence[PreprocessStrategy]] = None
    ):
        """
        Args:
            analysis_width: Frames wider than this are downscaled first (None = class default)
            budget_ms: Time budget for the whole strategy loop
            accept_confidence: Loop stops at the first detection at or above this
            enable_lsd: Run the LSD/Radon cascade on failed white-on-white scenes
            strategies: Fixed strategy order, None = scene-adaptive selection
        """
        self.analysis_width = analysis_width or self.ANALYSIS_WIDTH
        self.budget_ms = budget_ms if budget_ms is not None else self.STRATEGY_BUDGET_MS
        self.accept_confidence = (
            accept_confidence if accept_confidence is not None else self.ACCEPT_CONFIDENCE
        )
        self.enable_lsd = enable_lsd
        self.strategies = list(strategies) if strategies is not None else None

        self.selector = StrategySelector()
        self.preprocessor = Preprocessor()
        self.quad_detector = QuadDetector()
        self._lsd: Optional[LsdRadonDetector] = None

        self.logger = logging.getLogger("DocumentDetector")

    @property
    def lsd_detector(self) -> LsdRadonDetector:
        if self._lsd is None:
            self._lsd = LsdRadonDetector()
        return self._lsd

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """
        Detect the document in a frame.

        Args:
            frame: BGR or grayscale frame (borrowed, not modified or retained)

        Returns:
            DetectionResult in the input frame's coordinates
        """
        if frame is None or frame.size == 0:
            raise ValueError("Cannot detect on an empty frame")

        start = time.perf_counter()
        small, scale = FrameProcessor.downscale_for_tracking(frame, self.analysis_width)
        h, w = small.shape[:2]

        selected = self.selector.select(small)
        order = self.strategies if self.strategies is not None else selected
        scene = self.selector.last_scene

        best_quad: Optional[Quad] = None
        best_confidence = 0.0
        best_label = "none"

        for index, strategy in enumerate(order):
            if index > 0:
                elapsed = (time.perf_counter() - start) * 1000
                if elapsed >= self.budget_ms:
                    self.logger.debug(
                        f"Strategy budget exhausted after {index} strategies ({elapsed:.1f}ms)"
                    )
                    break

            try:
                edge_map = self.preprocessor.apply(small, strategy).to_edge_map()
                candidate = self.quad_detector.detect(edge_map, (w, h))
            except cv2.error as e:
                self.logger.warning(f"Strategy {strategy.label} failed: {e}")
                continue

            if candidate is None:
                continue
            self.logger.debug(f"Strategy {strategy.label}: score={candidate.score:.3f}")

            if candidate.score > best_confidence:
                best_quad = candidate.corners
                best_confidence = candidate.score
                best_label = strategy.label
            if candidate.score >= self.accept_confidence:
                break

        accepted = best_quad is not None and best_confidence >= self.accept_confidence
        if not accepted and scene.is_white_on_white and self.enable_lsd:
            lsd = self.lsd_detector.detect(to_gray(small))
            if lsd is not None and lsd.confidence > best_confidence:
                best_quad = lsd.corners
                best_confidence = lsd.confidence
                best_label = f"lsd_radon:tier{lsd.tier}"

        if best_quad is not None and scale != 1.0:
            best_quad = scale_quad(best_quad, scale)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.logger.debug(
            f"Detection: strategy={best_label}, confidence={best_confidence:.3f}, "
            f"{elapsed_ms:.1f}ms"
        )
        return DetectionResult(
            quad=best_quad,
            confidence=float(best_confidence) if best_quad is not None else 0.0,
            strategy=best_label,
            elapsed_ms=elapsed_ms,
        )

    def detect_with_strategies(
        self,
        frame: np.ndarray,
        strategies: List[PreprocessStrategy]
    ) -> DetectionResult:
        """One-off detection with an explicit strategy order."""
        saved = self.strategies
        self.strategies = list(strategies)
        try:
            return self.detect(frame)
        finally:
            self.strategies = saved

    def reset(self):
        self.selector.reset()
