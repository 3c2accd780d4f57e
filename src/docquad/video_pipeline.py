"""
DocQuad Video Pipeline - Latest-frame-wins delivery

Frames reach the detector through a single-slot mailbox: a new frame
overwrites one the worker has not picked up yet, so a slow detection
pass never builds a backlog.

    camera thread ──put()──▶ [ FrameMailbox: 1 slot ] ──take()──▶ FrameWorker
                             (overwrite, count drop)          process_frame()
"""

import logging
import platform
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Optional, Tuple, Union

import cv2
import numpy as np


@dataclass
class FrameMetadata:
    """Metadata for a delivered frame."""
    timestamp: float
    frame_number: int
    width: int
    height: int
    fps: float = 0.0
    dropped_frames: int = 0
    latency_ms: float = 0.0


class FrameMailbox:
    """
    Single-slot frame hand-off between a producer and one worker.

    put() never blocks and replaces any pending frame; take() blocks until
    a frame is available or the mailbox is closed. The mailbox takes
    ownership of frames put into it.

    Each frame's metadata carries the input rate over the last
    FPS_WINDOW puts.
    """

    FPS_WINDOW = 30

    def __init__(self):
        self._lock = threading.Lock()
        self._ready = threading.Condition(self._lock)
        self._frame: Optional[np.ndarray] = None
        self._metadata: Optional[FrameMetadata] = None
        self._closed = False
        self._frame_count = 0
        self._dropped_frames = 0
        self._put_times: Deque[float] = deque(maxlen=self.FPS_WINDOW)

    def put(self, frame: np.ndarray, timestamp: Optional[float] = None) -> bool:
        """
        Offer a frame.

        Returns:
            False if the mailbox is closed, else True
        """
        with self._ready:
            if self._closed:
                return False
            if self._frame is not None:
                self._dropped_frames += 1
            self._frame_count += 1
            if timestamp is None:
                timestamp = time.perf_counter()
            self._put_times.append(timestamp)
            h, w = frame.shape[:2]
            self._frame = frame
            self._metadata = FrameMetadata(
                timestamp=timestamp,
                frame_number=self._frame_count,
                width=w,
                height=h,
                fps=self._input_fps(),
                dropped_frames=self._dropped_frames,
            )
            self._ready.notify()
            return True

    def take(self, timeout: Optional[float] = None) -> Optional[Tuple[np.ndarray, FrameMetadata]]:
        """
        Wait for the latest frame and remove it from the slot.

        Returns:
            (frame, metadata), or None on timeout or when closed and empty
        """
        with self._ready:
            if not self._ready.wait_for(lambda: self._frame is not None or self._closed, timeout):
                return None
            if self._frame is None:
                return None
            frame, metadata = self._frame, self._metadata
            self._frame = None
            self._metadata = None
        metadata.latency_ms = (time.perf_counter() - metadata.timestamp) * 1000
        return frame, metadata

    def _input_fps(self) -> float:
        if len(self._put_times) < 2:
            return 0.0
        span = self._put_times[-1] - self._put_times[0]
        return (len(self._put_times) - 1) / span if span > 0 else 0.0

    def close(self):
        with self._ready:
            self._closed = True
            self._ready.notify_all()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def dropped_frames(self) -> int:
        with self._lock:
            return self._dropped_frames

    @property
    def frame_count(self) -> int:
        with self._lock:
            return self._frame_count


class FrameWorker:
    """
    Background worker: take latest frame, process, repeat.

    The processor's process_frame is only ever called from this worker's
    thread, so stateful trackers behind it see frames one at a time.

    Usage:
        with FrameWorker(DocumentPipeline()) as worker:
            worker.submit(frame)
            result = worker.latest_result
    """

    POLL_INTERVAL = 0.1

    def __init__(
        self,
        processor: Any,
        mailbox: Optional[FrameMailbox] = None,
        on_result: Optional[Callable[[Any, FrameMetadata], None]] = None
    ):
        """
        Args:
            processor: Object with process_frame(frame) (e.g. DocumentPipeline)
            mailbox: Shared mailbox, None = create one
            on_result: Called on the worker thread after each processed frame
        """
        self.processor = processor
        self.mailbox = mailbox or FrameMailbox()
        self.on_result = on_result

        self._result: Optional[Any] = None
        self._result_metadata: Optional[FrameMetadata] = None
        self._result_lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._processed = 0
        self._errors = 0

        self.logger = logging.getLogger("FrameWorker")

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name="docquad-worker", daemon=True)
        self._thread.start()
        self.logger.info("Frame worker started")

    def stop(self, timeout: float = 1.0):
        self._running = False
        self.mailbox.close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        self.logger.info(
            f"Frame worker stopped ({self._processed} processed, "
            f"{self.mailbox.dropped_frames} dropped)"
        )

    def submit(self, frame: np.ndarray) -> bool:
        return self.mailbox.put(frame)

    def _run(self):
        while self._running:
            item = self.mailbox.take(timeout=self.POLL_INTERVAL)
            if item is None:
                if self.mailbox.closed:
                    break
                continue

            frame, metadata = item
            try:
                result = self.processor.process_frame(frame)
            except (cv2.error, ValueError) as e:
                self.logger.warning(f"Frame {metadata.frame_number} failed: {e}")
                continue
            except Exception as e:
                self.logger.exception(f"Frame {metadata.frame_number} crashed the processor: {e}")
                with self._result_lock:
                    self._errors += 1
                continue

            with self._result_lock:
                self._result = result
                self._result_metadata = metadata
                self._processed += 1

            if self.on_result is not None:
                self.on_result(result, metadata)

    @property
    def latest_result(self) -> Optional[Any]:
        with self._result_lock:
            return self._result

    @property
    def latest_metadata(self) -> Optional[FrameMetadata]:
        with self._result_lock:
            return self._result_metadata

    @property
    def processed_frames(self) -> int:
        with self._result_lock:
            return self._processed

    @property
    def error_count(self) -> int:
        """Frames whose processor raised something other than cv2.error or ValueError."""
        with self._result_lock:
            return self._errors

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class ThreadedVideoCapture:
    """
    Camera / file reader that feeds a FrameMailbox from a daemon thread.

    Usage:
        mailbox = FrameMailbox()
        with ThreadedVideoCapture(0, mailbox) as cap, FrameWorker(pipeline, mailbox):
            ...
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        mailbox: Optional[FrameMailbox] = None,
        resolution: Optional[Tuple[int, int]] = None,
        realtime_files: bool = True
    ):
        """
        Args:
            source: Camera index or video file path / stream URL
            mailbox: Where frames go, None = create one
            resolution: Requested (width, height), None = native
            realtime_files: Pace file playback at the file's native FPS
        """
        self.source = source
        self.mailbox = mailbox or FrameMailbox()
        self.resolution = resolution
        self.realtime_files = realtime_files

        self._cap: Optional[cv2.VideoCapture] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._frame: Optional[np.ndarray] = None
        self._frame_lock = threading.Lock()

        self._width = 0
        self._height = 0
        self._native_fps = 0.0

        self.logger = logging.getLogger(__name__)

    def _init_capture(self) -> bool:
        """Open the source, preferring low-latency backends for cameras."""
        if isinstance(self.source, int):
            system = platform.system()
            if system == "Windows":
                self._cap = cv2.VideoCapture(self.source, cv2.CAP_DSHOW)
            elif system == "Darwin":
                self._cap = cv2.VideoCapture(self.source, cv2.CAP_AVFOUNDATION)
            else:
                self._cap = cv2.VideoCapture(self.source, cv2.CAP_V4L2)
        else:
            self._cap = cv2.VideoCapture(self.source)

        if not self._cap.isOpened():
            self._cap = cv2.VideoCapture(self.source)
            if not self._cap.isOpened():
                self.logger.error(f"Failed to open video source: {self.source}")
                return False

        if self.resolution:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._native_fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0

        self.logger.info(
            f"Video source initialized: {self._width}x{self._height} @ {self._native_fps:.1f}fps"
        )
        return True

    def _capture_loop(self):
        is_file = isinstance(self.source, str)
        while self._running:
            ret, frame = self._cap.read()
            if not ret:
                if is_file:
                    self.logger.info("End of video file reached")
                    self._running = False
                    break
                time.sleep(0.001)
                continue

            with self._frame_lock:
                self._frame = frame
            # The display keeps its own copy; the mailbox owns this one
            self.mailbox.put(frame.copy())

            if is_file and self.realtime_files and self._native_fps > 0:
                time.sleep(1.0 / self._native_fps)

    def start(self) -> bool:
        if self._running:
            return True
        if not self._init_capture():
            return False
        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()
        self.logger.info("Video capture thread started")
        return True

    def stop(self):
        self._running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        if self._cap:
            self._cap.release()
            self._cap = None
        self.logger.info("Video capture stopped")

    @property
    def latest_frame(self) -> Optional[np.ndarray]:
        """Copy of the most recent frame, for display."""
        with self._frame_lock:
            return None if self._frame is None else self._frame.copy()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frame_size(self) -> Tuple[int, int]:
        return (self._width, self._height)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class FrameProcessor:
    """Frame scaling helpers."""

    @staticmethod
    def downscale_for_tracking(
        frame: np.ndarray,
        target_width: int = 640
    ) -> Tuple[np.ndarray, float]:
        """
        Downscale a frame for analysis.

        Returns:
            (downscaled_frame, scale_factor) where original = analysed * scale_factor

        Usage:
            small, scale = FrameProcessor.downscale_for_tracking(frame, 640)
            # detect on small, then corners * scale
        """
        h, w = frame.shape[:2]
        if w <= target_width:
            return frame, 1.0

        scale = target_width / w
        new_h = max(1, int(round(h * scale)))
        small = cv2.resize(frame, (target_width, new_h), interpolation=cv2.INTER_AREA)
        return small, w / float(target_width)

class PerformanceOverlay:
    """Rolling FPS and per-frame processing time, drawn top-left."""

    HISTORY_SIZE = 30

    def __init__(self):
        self._frame_times = []
        self._processing_ms = []
        self._last_time = time.perf_counter()

    def update(self, processing_ms: float = 0.0):
        now = time.perf_counter()
        self._frame_times.append(now - self._last_time)
        self._last_time = now
        self._processing_ms.append(processing_ms)
        if len(self._frame_times) > self.HISTORY_SIZE:
            self._frame_times.pop(0)
            self._processing_ms.pop(0)

    def get_fps(self) -> float:
        if not self._frame_times:
            return 0.0
        avg = sum(self._frame_times) / len(self._frame_times)
        return 1.0 / avg if avg > 0 else 0.0

    def get_processing_ms(self) -> float:
        if not self._processing_ms:
            return 0.0
        return sum(self._processing_ms) / len(self._processing_ms)

    def draw(self, frame: np.ndarray, extra_info: str = "") -> np.ndarray:
        fps = self.get_fps()
        if fps >= 30:
            color = (0, 255, 0)
        elif fps >= 20:
            color = (0, 255, 255)
        else:
            color = (0, 0, 255)

        overlay = frame.copy()
        cv2.rectangle(overlay, (5, 5), (260, 80), (0, 0, 0), -1)
        cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

        cv2.putText(frame, f"FPS: {fps:.1f}", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA)
        cv2.putText(frame, f"Pipeline: {self.get_processing_ms():.1f}ms", (10, 55),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (200, 200, 200), 1, cv2.LINE_AA)
        if extra_info:
            cv2.putText(frame, extra_info, (10, 75),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1, cv2.LINE_AA)
        return frame
