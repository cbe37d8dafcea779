"""
SparseFlow Video Pipeline - Frame-accurate video reader and tracking HUD

The tracker must see every frame in order (it tracks frame-to-frame), so the
reader is synchronous: no background thread, no frame dropping.
"""

import time
from collections import deque
from typing import Iterator, Optional, Tuple
from dataclasses import dataclass
import logging

import cv2
import numpy as np

from .sparseflow_core import TrackResult


@dataclass
class FrameMetadata:
    """Metadata for the most recently read frame."""
    timestamp: float
    frame_number: int
    width: int
    height: int
    fps: float
    total_frames: int = 0


class FrameReader:
    """
    Sequential frame source over cv2.VideoCapture.

    Usage:
        with FrameReader("clip.mp4") as reader:
            for frame in reader:
                ...
    """

    def __init__(
        self,
        source: int | str = 0,
        loop: bool = False,
        resolution: Optional[Tuple[int, int]] = None
    ):
        """
        Args:
            source: Camera index (int) or video file path / stream URL (str)
            loop: Rewind video files when they reach the end
            resolution: Requested camera resolution (width, height), None = native
        """
        self.source = source
        self.loop = loop
        self.resolution = resolution

        self._cap: Optional[cv2.VideoCapture] = None
        self._frame_count = 0
        self._last_frame_time = 0.0

        self._width = 0
        self._height = 0
        self._native_fps = 0.0
        self._total_frames = 0

        self.logger = logging.getLogger(__name__)

    def open(self) -> bool:
        """Open the source. Logs and returns False if it cannot be opened."""
        if self._cap is not None:
            return True

        self._cap = cv2.VideoCapture(self.source)
        if not self._cap.isOpened():
            self.logger.error(f"Failed to open video source: {self.source}")
            self._cap = None
            return False

        if self.resolution and isinstance(self.source, int):
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._native_fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0
        self._total_frames = max(0, int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT)))
        self._frame_count = 0

        self.logger.info(
            f"Video source opened: {self._width}x{self._height} @ {self._native_fps:.1f}fps"
        )
        return True

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """OpenCV-compatible read. (False, None) at end of stream."""
        if self._cap is None:
            return False, None

        ret, frame = self._cap.read()
        if not ret and self.loop and isinstance(self.source, str):
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ret, frame = self._cap.read()

        if not ret:
            return False, None

        self._frame_count += 1
        self._last_frame_time = time.perf_counter()
        return True, frame

    def release(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __iter__(self) -> Iterator[np.ndarray]:
        while True:
            ok, frame = self.read()
            if not ok:
                return
            yield frame

    @property
    def metadata(self) -> FrameMetadata:
        return FrameMetadata(
            timestamp=self._last_frame_time,
            frame_number=self._frame_count,
            width=self._width,
            height=self._height,
            fps=self._native_fps,
            total_frames=self._total_frames
        )

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    @property
    def frame_size(self) -> Tuple[int, int]:
        return (self._width, self._height)

    @property
    def fps(self) -> float:
        return self._native_fps

    def __enter__(self):
        if not self.open():
            raise IOError(f"Cannot open video source: {self.source}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class FrameProcessor:
    """Frame conversions needed before drawing."""

    @staticmethod
    def to_bgr(frame: np.ndarray) -> np.ndarray:
        """Drawable copy of a frame (grayscale frames are expanded)."""
        if frame.ndim == 2:
            return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        return frame.copy()


class PerformanceOverlay:
    """
    Tracking HUD: rolling FPS, update latency and the last fit statistics.

    ┌──────────────────────────────┐
    │ FPS: 58.2                    │
    │ Track: 4.1ms                 │
    │ Pts: 187  err: 0.42          │  (or "LOST: <reason>" in red)
    │ Frame 120                    │
    └──────────────────────────────┘
    """

    def __init__(self, history_size: int = 30):
        self._frame_times = deque(maxlen=history_size)
        self._latency_history = deque(maxlen=history_size)
        self._last_time = time.perf_counter()
        self._last_result: Optional[TrackResult] = None

    def update(self, latency_ms: float = 0.0, result: Optional[TrackResult] = None):
        """Record one frame and, when given, the tracker's result for it."""
        current_time = time.perf_counter()
        self._frame_times.append(current_time - self._last_time)
        self._last_time = current_time
        self._latency_history.append(latency_ms)

        if result is not None:
            self._last_result = result

    def get_fps(self) -> float:
        if not self._frame_times:
            return 0.0
        avg_frame_time = sum(self._frame_times) / len(self._frame_times)
        return 1.0 / avg_frame_time if avg_frame_time > 0 else 0.0

    def get_latency(self) -> float:
        """Smoothed latency in ms."""
        if not self._latency_history:
            return 0.0
        return sum(self._latency_history) / len(self._latency_history)

    def fit_summary(self) -> str:
        result = self._last_result
        if result is None:
            return "Pts: -"
        if not result.success:
            return f"LOST: {result.failure.value}"
        return f"Pts: {result.num_correspondences}  err: {result.fit_error:.2f}"

    def draw(self, frame: np.ndarray, extra_info: str = "") -> np.ndarray:
        """Draw the HUD onto the frame (in place) and return it."""
        fps = self.get_fps()
        fps_color = (0, 255, 0) if fps >= 25 else (0, 255, 255) if fps >= 15 else (0, 0, 255)

        lost = self._last_result is not None and not self._last_result.success
        fit_color = (0, 0, 255) if lost else (200, 200, 200)

        overlay = frame.copy()
        cv2.rectangle(overlay, (5, 5), (260, 105 if extra_info else 85), (0, 0, 0), -1)
        cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

        lines = [
            (f"FPS: {fps:.1f}", fps_color, 0.7, 2),
            (f"Track: {self.get_latency():.1f}ms", (200, 200, 200), 0.5, 1),
            (self.fit_summary(), fit_color, 0.5, 1),
        ]
        if extra_info:
            lines.append((extra_info, (200, 200, 200), 0.5, 1))

        y = 28
        for text, color, font_scale, thickness in lines:
            cv2.putText(frame, text, (10, y), cv2.FONT_HERSHEY_SIMPLEX,
                        font_scale, color, thickness, cv2.LINE_AA)
            y += 22 if font_scale < 0.7 else 26

        return frame
