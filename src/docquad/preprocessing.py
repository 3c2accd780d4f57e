"""
DocQuad Preprocessing - Strategy set and scene-adaptive selection

Each strategy turns a frame into either a grayscale image that still needs
edge detection, or a binary edge map that goes straight to contour search.
The StrategySelector looks at brightness statistics and returns the
ordered list of strategies worth trying for the current scene.

Usage:
    selector = StrategySelector()
    preprocessor = Preprocessor()

    for strategy in selector.select(frame):
        result = preprocessor.apply(frame, strategy)
        edge_map = result.image if result.is_edge_map else detect_edges(...)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

from .edges import close_edges, detect_edges


class PreprocessStrategy(Enum):
    """
    Closed set of preprocessing variants.

    Each member carries its label, whether its output is already a binary
    edge map, fixed Canny thresholds (None = adaptive) and the closing
    kernel used after Canny.
    """
    STANDARD = ("standard", False, None, 3)
    CLAHE_ENHANCED = ("clahe_enhanced", False, None, 3)
    SATURATION_CHANNEL = ("saturation_channel", False, None, 3)
    BILATERAL = ("bilateral", False, None, 3)
    HEAVY_MORPH = ("heavy_morph", False, None, 5)
    ADAPTIVE_THRESHOLD = ("adaptive_threshold", True, None, 3)
    LAB_CLAHE = ("lab_clahe", False, (30, 60), 3)
    GRADIENT_MAGNITUDE = ("gradient_magnitude", True, None, 5)
    DOG = ("dog", False, (10, 30), 3)
    MULTICHANNEL_FUSION = ("multichannel_fusion", True, None, 3)
    DIRECTIONAL_GRADIENT = ("directional_gradient", True, None, 3)

    def __init__(
        self,
        label: str,
        is_binary_output: bool,
        canny_thresholds: Optional[Tuple[int, int]],
        close_kernel: int
    ):
        self.label = label
        self.is_binary_output = is_binary_output
        self.canny_thresholds = canny_thresholds
        self.close_kernel = close_kernel


DEFAULT_STRATEGIES: Tuple[PreprocessStrategy, ...] = (
    PreprocessStrategy.STANDARD,
    PreprocessStrategy.CLAHE_ENHANCED,
    PreprocessStrategy.SATURATION_CHANNEL,
    PreprocessStrategy.BILATERAL,
    PreprocessStrategy.HEAVY_MORPH,
)

WHITE_ON_WHITE_STRATEGIES: Tuple[PreprocessStrategy, ...] = (
    PreprocessStrategy.DOG,
    PreprocessStrategy.GRADIENT_MAGNITUDE,
    PreprocessStrategy.LAB_CLAHE,
    PreprocessStrategy.CLAHE_ENHANCED,
    PreprocessStrategy.MULTICHANNEL_FUSION,
    PreprocessStrategy.ADAPTIVE_THRESHOLD,
)


@dataclass
class PreprocessResult:
    """Output of one strategy."""
    image: np.ndarray
    is_edge_map: bool
    strategy: PreprocessStrategy

    def to_edge_map(self) -> np.ndarray:
        """Binary edge map for contour search, running Canny if still needed."""
        if self.is_edge_map:
            return self.image
        return detect_edges(
            self.image,
            thresholds=self.strategy.canny_thresholds,
            close_kernel=self.strategy.close_kernel
        )


@dataclass
class SceneStats:
    """Brightness statistics of a frame."""
    mean: float
    stddev: float
    is_white_on_white: bool


def to_gray(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        return frame
    if frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


def analyze_scene(frame: np.ndarray) -> SceneStats:
    """Classify a frame as white-on-white (bright and flat) or ordinary."""
    gray = to_gray(frame)
    mean, stddev = cv2.meanStdDev(gray)
    mean_val = float(mean[0, 0])
    std_val = float(stddev[0, 0])
    return SceneStats(
        mean=mean_val,
        stddev=std_val,
        is_white_on_white=(
            mean_val > StrategySelector.WHITE_MEAN_MIN and
            std_val < StrategySelector.WHITE_STDDEV_MAX
        )
    )


class StrategySelector:
    """
    Picks the ordered strategy list for the current scene.

    The scene classification is cached and refreshed every
    SCENE_CACHE_FRAMES calls; lighting rarely changes faster than that.
    """

    WHITE_MEAN_MIN = 180.0
    WHITE_STDDEV_MAX = 35.0
    SCENE_CACHE_FRAMES = 10

    def __init__(
        self,
        default_strategies: Tuple[PreprocessStrategy, ...] = DEFAULT_STRATEGIES,
        white_on_white_strategies: Tuple[PreprocessStrategy, ...] = WHITE_ON_WHITE_STRATEGIES
    ):
        self.default_strategies = tuple(default_strategies)
        self.white_on_white_strategies = tuple(white_on_white_strategies)
        self._scene: Optional[SceneStats] = None
        self._frames_since_analysis = 0
        self.logger = logging.getLogger("StrategySelector")

    def scene(self, frame: np.ndarray) -> SceneStats:
        """Cached scene statistics for this frame."""
        if self._scene is None or self._frames_since_analysis >= self.SCENE_CACHE_FRAMES:
            self._scene = analyze_scene(frame)
            self._frames_since_analysis = 0
            self.logger.debug(
                f"Scene: mean={self._scene.mean:.1f}, std={self._scene.stddev:.1f}, "
                f"white_on_white={self._scene.is_white_on_white}"
            )
        self._frames_since_analysis += 1
        return self._scene

    @property
    def last_scene(self) -> Optional[SceneStats]:
        """Scene statistics from the most recent call, without refreshing them."""
        return self._scene

    def select(self, frame: np.ndarray) -> List[PreprocessStrategy]:
        if self.scene(frame).is_white_on_white:
            return list(self.white_on_white_strategies)
        return list(self.default_strategies)

    def reset(self):
        self._scene = None
        self._frames_since_analysis = 0


class Preprocessor:
    """
    Applies a PreprocessStrategy to a frame.

    Frames may be BGR or single-channel; strategies that need colour fall
    back to a grayscale equivalent when colour is missing.
    """

    # CLAHE
    CLAHE_CLIP = 3.0
    CLAHE_TILES = (4, 4)
    LAB_CLAHE_CLIP = 6.0
    LAB_CLAHE_TILES = (2, 2)

    # Blur
    STANDARD_BLUR = (9, 9)
    LIGHT_BLUR = (5, 5)

    # Bilateral (diameter, sigma color, sigma space)
    BILATERAL_PARAMS = (9, 75, 75)

    # Adaptive threshold
    ADAPTIVE_BLOCK = 51
    ADAPTIVE_C = 5

    # Gradient magnitude
    GRADIENT_PERCENTILE = 95.0

    # Difference of Gaussians
    DOG_FINE = (3, 3)
    DOG_COARSE = (21, 21)

    # Multichannel fusion
    FUSION_CANNY = (20, 50)

    # Directional gradient
    DIRECTIONAL_TILTS = (-10.0, -5.0, 0.0, 5.0, 10.0)
    DIRECTIONAL_KERNEL = 21
    DIRECTIONAL_SIGMA = 1.4
    DIRECTIONAL_PERCENTILE = 90.0

    def __init__(self):
        self.logger = logging.getLogger("Preprocessor")
        self._clahe = cv2.createCLAHE(clipLimit=self.CLAHE_CLIP, tileGridSize=self.CLAHE_TILES)
        self._lab_clahe = cv2.createCLAHE(
            clipLimit=self.LAB_CLAHE_CLIP, tileGridSize=self.LAB_CLAHE_TILES
        )
        self._line_kernels: Dict[float, np.ndarray] = {}
        self._handlers: Dict[PreprocessStrategy, Callable[[np.ndarray], np.ndarray]] = {
            PreprocessStrategy.STANDARD: self._standard,
            PreprocessStrategy.CLAHE_ENHANCED: self._clahe_enhanced,
            PreprocessStrategy.SATURATION_CHANNEL: self._saturation,
            PreprocessStrategy.BILATERAL: self._bilateral,
            PreprocessStrategy.HEAVY_MORPH: self._standard,
            PreprocessStrategy.ADAPTIVE_THRESHOLD: self._adaptive_threshold,
            PreprocessStrategy.LAB_CLAHE: self._lab_clahe_l,
            PreprocessStrategy.GRADIENT_MAGNITUDE: self._gradient_magnitude,
            PreprocessStrategy.DOG: self._difference_of_gaussians,
            PreprocessStrategy.MULTICHANNEL_FUSION: self._multichannel_fusion,
            PreprocessStrategy.DIRECTIONAL_GRADIENT: self._directional_gradient,
        }

    def apply(self, frame: np.ndarray, strategy: PreprocessStrategy) -> PreprocessResult:
        """
        Run one strategy.

        Args:
            frame: BGR or grayscale uint8 frame (not modified)
            strategy: Strategy to apply

        Returns:
            PreprocessResult with the processed image and its edge-map flag
        """
        if frame is None or frame.size == 0:
            raise ValueError("Cannot preprocess an empty frame")
        image = self._handlers[strategy](frame)
        return PreprocessResult(image=image, is_edge_map=strategy.is_binary_output, strategy=strategy)

    # =========================================================================
    # Grayscale-output strategies
    # =========================================================================

    def _standard(self, frame: np.ndarray) -> np.ndarray:
        return cv2.GaussianBlur(to_gray(frame), self.STANDARD_BLUR, 0)

    def _clahe_enhanced(self, frame: np.ndarray) -> np.ndarray:
        enhanced = self._clahe.apply(to_gray(frame))
        return cv2.GaussianBlur(enhanced, self.LIGHT_BLUR, 0)

    def _saturation(self, frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            return self._standard(frame)
        hsv = cv2.cvtColor(frame[:, :, :3], cv2.COLOR_BGR2HSV)
        # White paper has low saturation; invert so it reads bright
        inverted = cv2.bitwise_not(hsv[:, :, 1])
        return cv2.GaussianBlur(inverted, self.STANDARD_BLUR, 0)

    def _bilateral(self, frame: np.ndarray) -> np.ndarray:
        return cv2.bilateralFilter(to_gray(frame), *self.BILATERAL_PARAMS)

    def _lab_clahe_l(self, frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            lightness = frame
        else:
            lightness = cv2.cvtColor(frame[:, :, :3], cv2.COLOR_BGR2LAB)[:, :, 0]
        enhanced = self._lab_clahe.apply(lightness)
        return cv2.GaussianBlur(enhanced, self.LIGHT_BLUR, 0)

    def _difference_of_gaussians(self, frame: np.ndarray) -> np.ndarray:
        gray = to_gray(frame).astype(np.float32)
        fine = cv2.GaussianBlur(gray, self.DOG_FINE, 0)
        coarse = cv2.GaussianBlur(gray, self.DOG_COARSE, 0)
        band = np.abs(fine - coarse)
        return np.clip(band, 0, 255).astype(np.uint8)

    # =========================================================================
    # Binary-output strategies
    # =========================================================================

    def _adaptive_threshold(self, frame: np.ndarray) -> np.ndarray:
        blurred = cv2.GaussianBlur(to_gray(frame), self.LIGHT_BLUR, 0)
        binary = cv2.adaptiveThreshold(
            blurred, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY,
            self.ADAPTIVE_BLOCK, self.ADAPTIVE_C
        )
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
        outline = cv2.morphologyEx(binary, cv2.MORPH_GRADIENT, kernel)
        return close_edges(outline, 3)

    def _gradient_magnitude(self, frame: np.ndarray) -> np.ndarray:
        gray = to_gray(frame)
        gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
        gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
        magnitude = cv2.magnitude(gx, gy)
        norm = cv2.normalize(magnitude, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        return self._percentile_binary(norm, self.GRADIENT_PERCENTILE, close_kernel=5)

    def _multichannel_fusion(self, frame: np.ndarray) -> np.ndarray:
        channels = [frame] if frame.ndim == 2 else cv2.split(frame[:, :, :3])
        fused = None
        for channel in channels:
            blurred = cv2.GaussianBlur(channel, self.LIGHT_BLUR, 0)
            edges = cv2.Canny(blurred, *self.FUSION_CANNY)
            fused = edges if fused is None else cv2.bitwise_or(fused, edges)
        return close_edges(fused, 3)

    def _directional_gradient(self, frame: np.ndarray) -> np.ndarray:
        """
        Line-integral gradient at half resolution.

        |Gy| is integrated along near-horizontal lines and |Gx| along
        near-vertical lines for a few small tilts. Averaging along the
        line lifts faint straight edges out of pixel noise.
        """
        gray = to_gray(frame)
        h, w = gray.shape[:2]
        half = cv2.resize(gray, (max(1, w // 2), max(1, h // 2)), interpolation=cv2.INTER_AREA)
        half = cv2.GaussianBlur(half, self.LIGHT_BLUR, self.DIRECTIONAL_SIGMA)

        gx = np.abs(cv2.Sobel(half, cv2.CV_16S, 1, 0, ksize=3)).astype(np.float32)
        gy = np.abs(cv2.Sobel(half, cv2.CV_16S, 0, 1, ksize=3)).astype(np.float32)

        horizontal = None
        vertical = None
        for tilt in self.DIRECTIONAL_TILTS:
            h_resp = cv2.filter2D(gy, -1, self._line_kernel(tilt))
            v_resp = cv2.filter2D(gx, -1, self._line_kernel(90.0 + tilt))
            horizontal = h_resp if horizontal is None else np.maximum(horizontal, h_resp)
            vertical = v_resp if vertical is None else np.maximum(vertical, v_resp)

        response = np.maximum(horizontal, vertical)
        norm = cv2.normalize(response, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        _, binary = cv2.threshold(
            norm, float(np.percentile(norm, self.DIRECTIONAL_PERCENTILE)), 255, cv2.THRESH_BINARY
        )
        full = cv2.resize(binary, (w, h), interpolation=cv2.INTER_NEAREST)
        return close_edges(full, 3)

    def _line_kernel(self, angle_deg: float) -> np.ndarray:
        """Normalized line-shaped averaging kernel at the given angle."""
        kernel = self._line_kernels.get(angle_deg)
        if kernel is not None:
            return kernel

        size = self.DIRECTIONAL_KERNEL
        c = size // 2
        theta = np.deg2rad(angle_deg)
        dx = np.cos(theta) * c
        dy = np.sin(theta) * c
        kernel = np.zeros((size, size), dtype=np.float32)
        cv2.line(
            kernel,
            (int(round(c - dx)), int(round(c - dy))),
            (int(round(c + dx)), int(round(c + dy))),
            1.0, 1
        )
        kernel /= kernel.sum()
        self._line_kernels[angle_deg] = kernel
        return kernel

    @staticmethod
    def _percentile_binary(image: np.ndarray, percentile: float, close_kernel: int) -> np.ndarray:
        level = float(np.percentile(image, percentile))
        _, binary = cv2.threshold(image, level, 255, cv2.THRESH_BINARY)
        return close_edges(binary, close_kernel)
