"""
DocQuad - Real-time document boundary detection and tracking

Finds the four corners of a paper document in a camera stream, keeps
them locked with optical flow between detections, stabilizes them for
display, and recovers the document's true aspect ratio at capture time.

Features:
- Scene-adaptive preprocessing strategies under a per-frame time budget
- Scored contour quad search with border-latch penalty
- LSD + Radon fallback for white-on-white scenes
- Detect/track state machine with periodic drift correction
- Tiered temporal smoothing with stability gating for auto-capture
- Angular / projective aspect ratio estimation with format snapping
- Multi-frame aspect pooling with focal length recovery
- Optional page orientation correction at capture
- Latest-frame-wins worker thread

Quick Start:
    from docquad import (
        CaptureProcessor, DocumentPipeline, FrameMailbox, FrameWorker, ThreadedVideoCapture
    )

    mailbox = FrameMailbox()
    with ThreadedVideoCapture(0, mailbox) as cap, FrameWorker(DocumentPipeline(), mailbox) as worker:
        while True:
            result = worker.latest_result
            if result is not None and result.smoothed.is_capture_ready():
                scan = CaptureProcessor().process(cap.latest_frame)
                break
"""

__version__ = "1.0.0"

# Geometry
from .geometry import (
    Quad,
    order_corners,
    is_convex,
    quad_area,
    average_corner_distance,
    inset_corners,
)

# Detection
from .preprocessing import (
    PreprocessStrategy,
    PreprocessResult,
    Preprocessor,
    StrategySelector,
    SceneStats,
    DEFAULT_STRATEGIES,
    WHITE_ON_WHITE_STRATEGIES,
)
from .quad_detector import QuadDetector, QuadCandidate
from .lsd_radon import LsdRadonDetector, LsdDetection, LineSegment, EdgeCluster
from .detection import DocumentDetector, DetectionResult

# Tracking and smoothing
from .corner_tracker import CornerTracker, TrackerResult, TrackingState
from .quad_smoother import QuadSmoother, SmoothedQuad

# Aspect ratio and capture
from .aspect_ratio import (
    AspectRatioEstimator,
    AspectEstimate,
    AspectRegime,
    CameraIntrinsics,
    KnownFormat,
    KNOWN_FORMATS,
    compute_raw_ratio,
    perspective_severity,
    angular_corrected_ratio,
)
from .multi_frame import MultiFrameAspectEstimator, MultiFrameEstimate
from .orientation import OrientationDetector, DocumentOrientation
from .rectify import rectify, rectify_with_aspect_ratio, refine_corners
from .capture import CaptureProcessor, CaptureResult, CaptureError

# Orchestration
from .routing import RoutingDecision, RoutedDetection, route_detection
from .pipeline import DocumentPipeline, PipelineResult
from .video_pipeline import (
    FrameMailbox,
    FrameWorker,
    FrameMetadata,
    FrameProcessor,
    ThreadedVideoCapture,
    PerformanceOverlay,
)
from .config import PipelineConfig, configure_logging

__all__ = [
    # Version
    "__version__",

    # Geometry
    "Quad",
    "order_corners",
    "is_convex",
    "quad_area",
    "average_corner_distance",
    "inset_corners",

    # Detection
    "PreprocessStrategy",
    "PreprocessResult",
    "Preprocessor",
    "StrategySelector",
    "SceneStats",
    "DEFAULT_STRATEGIES",
    "WHITE_ON_WHITE_STRATEGIES",
    "QuadDetector",
    "QuadCandidate",
    "LsdRadonDetector",
    "LsdDetection",
    "LineSegment",
    "EdgeCluster",
    "DocumentDetector",
    "DetectionResult",

    # Tracking
    "CornerTracker",
    "TrackerResult",
    "TrackingState",
    "QuadSmoother",
    "SmoothedQuad",

    # Aspect / capture
    "AspectRatioEstimator",
    "AspectEstimate",
    "AspectRegime",
    "CameraIntrinsics",
    "KnownFormat",
    "KNOWN_FORMATS",
    "compute_raw_ratio",
    "perspective_severity",
    "angular_corrected_ratio",
    "MultiFrameAspectEstimator",
    "MultiFrameEstimate",
    "OrientationDetector",
    "DocumentOrientation",
    "rectify",
    "rectify_with_aspect_ratio",
    "refine_corners",
    "CaptureProcessor",
    "CaptureResult",
    "CaptureError",

    # Orchestration
    "RoutingDecision",
    "RoutedDetection",
    "route_detection",
    "DocumentPipeline",
    "PipelineResult",
    "FrameMailbox",
    "FrameWorker",
    "FrameMetadata",
    "FrameProcessor",
    "ThreadedVideoCapture",
    "PerformanceOverlay",
    "PipelineConfig",
    "configure_logging",
]
