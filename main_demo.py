#!/usr/bin/env python3
"""
DocQuad - Live Document Detection Demo

Two modes:
1. Live: camera or video file through the preview pipeline. The detected
   quad is drawn in a colour that reflects the routing decision, with
   tracking state and stability underneath.
2. Still image: runs the full-resolution capture path and writes the
   rectified document.

Usage:
    python main_demo.py                       # Webcam 0
    python main_demo.py --source video.mp4    # Video file
    python main_demo.py --image page.jpg --output scan.png

Controls (live mode):
    - SPACE: Capture the current frame (writes capture_<n>.png)
    - R: Reset tracking
    - Q/ESC: Quit
"""

import sys
import time
import logging
import argparse
from typing import Optional, Tuple

import cv2
import numpy as np

from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from docquad.aspect_ratio import CameraIntrinsics
from docquad.capture import CaptureError, CaptureProcessor
from docquad.config import PipelineConfig, configure_logging
from docquad.corner_tracker import TrackingState
from docquad.pipeline import DocumentPipeline, PipelineResult
from docquad.routing import RoutingDecision
from docquad.video_pipeline import FrameMailbox, FrameWorker, PerformanceOverlay, ThreadedVideoCapture


ROUTE_COLORS = {
    RoutingDecision.MANUAL_DEFAULT: (128, 128, 128),
    RoutingDecision.SUPPRESSED: (128, 128, 128),
    RoutingDecision.MANUAL_ADJUST: (0, 200, 255),
    RoutingDecision.AUTO_CAPTURE: (0, 255, 0),
}


def draw_result(frame: np.ndarray, result: PipelineResult) -> np.ndarray:
    """Draw the routed quad and a status line."""
    routed = result.routed
    color = ROUTE_COLORS[routed.decision]
    pts = routed.corners.astype(np.int32).reshape(-1, 1, 2)
    thickness = 1 if not routed.is_detected else 3
    cv2.polylines(frame, [pts], True, color, thickness, cv2.LINE_AA)

    if routed.is_detected:
        for x, y in routed.corners:
            cv2.circle(frame, (int(x), int(y)), 6, color, -1, cv2.LINE_AA)

    state = "TRACK" if result.tracker.state == TrackingState.TRACKING else "DETECT"
    status = (
        f"{state}  conf={result.confidence:.2f}  "
        f"stable={result.smoothed.stability_fraction:.0%}  {routed.decision.value}"
    )
    h = frame.shape[0]
    cv2.putText(frame, status, (10, h - 15), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2, cv2.LINE_AA)
    return frame


class DocQuadDemo:
    """
    Live preview demo: capture thread -> mailbox -> pipeline worker -> display.
    """

    WINDOW_NAME = "DocQuad Demo"

    def __init__(
        self,
        source=0,
        config: Optional[PipelineConfig] = None,
        resolution: Optional[Tuple[int, int]] = None,
        focal: Optional[float] = None
    ):
        self.source = source
        self.config = config or PipelineConfig()
        self.resolution = resolution
        self.focal = focal

        self.mailbox = FrameMailbox()
        self.video = ThreadedVideoCapture(source, self.mailbox, resolution=resolution)
        self.pipeline = DocumentPipeline(self.config)
        self.worker = FrameWorker(self.pipeline, self.mailbox)
        self.capture = CaptureProcessor(
            self.config.capture_width, self.config.enable_lsd, self.config.correct_orientation
        )
        self.perf = PerformanceOverlay()

        self._captures = 0
        self.logger = logging.getLogger("DocQuadDemo")

    def _intrinsics_for(self, frame: np.ndarray) -> Optional[CameraIntrinsics]:
        if not self.focal:
            return None
        h, w = frame.shape[:2]
        return CameraIntrinsics(self.focal, self.focal, w / 2.0, h / 2.0)

    def _capture(self, frame: np.ndarray):
        try:
            result = self.capture.process(frame, self._intrinsics_for(frame))
        except CaptureError as e:
            self.logger.warning(f"Capture failed at {e.stage}: {e.cause}")
            return
        if result is None:
            self.logger.info("Nothing to capture")
            return
        self._captures += 1
        out = f"capture_{self._captures}.png"
        cv2.imwrite(out, result.rectified)
        self.logger.info(f"Saved {out}")

    def run(self):
        if not self.video.start():
            self.logger.error("Could not start video source")
            return
        self.worker.start()
        cv2.namedWindow(self.WINDOW_NAME, cv2.WINDOW_NORMAL)

        last_processed = -1
        try:
            while self.video.is_running or self.worker.processed_frames == 0:
                frame = self.video.latest_frame
                if frame is None:
                    time.sleep(0.005)
                    continue

                result = self.worker.latest_result
                if result is not None:
                    if result.frame_number != last_processed:
                        self.perf.update(result.elapsed_ms)
                        last_processed = result.frame_number
                    frame = draw_result(frame, result)
                frame = self.perf.draw(frame, f"Dropped: {self.mailbox.dropped_frames}")

                cv2.imshow(self.WINDOW_NAME, frame)
                key = cv2.waitKey(1) & 0xFF
                if key in (ord('q'), 27):
                    break
                if key == ord('r'):
                    self.pipeline.reset()
                if key == ord(' '):
                    raw = self.video.latest_frame
                    if raw is not None:
                        self._capture(raw)

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.worker.stop()
            self.video.stop()
            cv2.destroyAllWindows()
            self.logger.info("Demo stopped.")


def run_still(path: str, output: str, config: PipelineConfig, intrinsics: Optional[CameraIntrinsics]) -> int:
    image = cv2.imread(path)
    if image is None:
        print(f"Could not read image: {path}")
        return 1

    processor = CaptureProcessor(config.capture_width, config.enable_lsd, config.correct_orientation)
    try:
        result = processor.process(image, intrinsics)
    except CaptureError as e:
        print(f"Capture failed during {e.stage}: {e.cause}")
        return 1
    if result is None:
        print("No document found.")
        return 2

    cv2.imwrite(output, result.rectified)
    aspect = result.aspect
    print(f"  Confidence: {result.confidence:.2f}")
    print(f"  Ratio:      {aspect.ratio:.4f} ({aspect.regime.value}, severity {aspect.severity:.1f} deg)")
    print(f"  Format:     {aspect.format.name if aspect.format else 'unknown'} "
          f"(snap {aspect.snap_confidence:.2f})")
    print(f"  Rotation:   {result.orientation.value} deg")
    print(f"  Saved:      {output} ({result.pipeline_ms:.0f}ms)")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="DocQuad Document Detection Demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls:
  SPACE        Capture and rectify the current frame
  R            Reset tracking
  Q/ESC        Quit

Configuration:
  DOCQUAD_* variables (or a .env file) override the defaults, e.g.
    DOCQUAD_ANALYSIS_WIDTH=480 DOCQUAD_ENABLE_LSD=false python main_demo.py
    DOCQUAD_CORRECT_ORIENTATION=true python main_demo.py --image page.jpg

Examples:
  python main_demo.py                          # Default webcam (0)
  python main_demo.py --source 1               # Webcam index 1
  python main_demo.py --source video.mp4       # Video file
  python main_demo.py --image page.jpg         # Capture path on a photo
  python main_demo.py --image page.jpg --focal 1400
        """
    )

    parser.add_argument(
        "--source", "-s",
        default=0,
        help="Video source: camera index (0, 1, ...) or file path"
    )
    parser.add_argument(
        "--image", "-i",
        default=None,
        help="Run the capture path on a still image instead of live video"
    )
    parser.add_argument(
        "--output", "-o",
        default="rectified.png",
        help="Output path for --image mode"
    )
    parser.add_argument(
        "--resolution", "-r",
        type=str,
        default=None,
        help="Camera resolution as WxH (e.g., 1280x720)"
    )
    parser.add_argument(
        "--focal",
        type=float,
        default=None,
        help="Focal length in pixels; enables projective aspect estimation"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: DOCQUAD_LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    try:
        config = PipelineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(args.log_level or config.log_level)

    source_arg = args.source
    if isinstance(source_arg, str) and source_arg.lower() == "camera":
        source = 0
    else:
        try:
            source = int(source_arg)
        except ValueError:
            source = source_arg

    resolution = None
    if args.resolution:
        try:
            w, h = args.resolution.lower().split('x')
            resolution = (int(w), int(h))
        except ValueError:
            print(f"Invalid resolution format: {args.resolution}")
            sys.exit(1)

    if args.image:
        intrinsics = None
        if args.focal:
            image = cv2.imread(args.image)
            if image is not None:
                ih, iw = image.shape[:2]
                intrinsics = CameraIntrinsics(args.focal, args.focal, iw / 2.0, ih / 2.0)
        sys.exit(run_still(args.image, args.output, config, intrinsics))

    print("\n" + "=" * 60)
    print("  DocQuad Document Detection")
    print("=" * 60)
    print(f"  Source: {source}")
    print(f"  Analysis width: {config.analysis_width}px")
    print(f"  LSD fallback: {'Enabled' if config.enable_lsd else 'Disabled'}")
    print("=" * 60)
    print("\n  Hold a document in view. Green = auto-capture ready.")
    print("  SPACE captures, R resets, Q quits.\n")

    demo = DocQuadDemo(source=source, config=config, resolution=resolution, focal=args.focal)
    demo.run()


if __name__ == "__main__":
    main()
