"""
Synthetic frames and scripted collaborators shared by the test scripts.
"""

import math
from typing import Optional

import numpy as np
import cv2

from sparseflow import (
    KltTrackFault,
    PointTracker,
    PyramidKltFeature,
    RobustEstimator,
    ScaleTranslateRotate2D,
)


def make_texture(width: int = 100, height: int = 100, seed: int = 0, sigma: float = 5.0) -> np.ndarray:
    """Smooth random texture, full 0-255 contrast, uint8."""
    rng = np.random.default_rng(seed)
    noise = rng.uniform(0, 255, (height, width)).astype(np.float32)
    smooth = cv2.GaussianBlur(noise, (0, 0), sigma)
    return cv2.normalize(smooth, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)


def shift_frame(frame: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """Content moves by (+dx, +dy) pixels (wraps at the borders)."""
    return np.roll(np.roll(frame, dy, axis=0), dx, axis=1)


def motion_about(cx: float, cy: float, scale: float = 1.0, degrees: float = 0.0,
                 tx: float = 0.0, ty: float = 0.0) -> ScaleTranslateRotate2D:
    """Similarity that scales/rotates about (cx, cy), then translates."""
    theta = math.radians(degrees)
    c = math.cos(theta) * scale
    s = math.sin(theta) * scale
    return ScaleTranslateRotate2D(
        scale=scale,
        theta=theta,
        trans_x=cx - (c * cx - s * cy) + tx,
        trans_y=cy - (s * cx + c * cy) + ty,
    )


def warp_frame(frame: np.ndarray, model: ScaleTranslateRotate2D) -> np.ndarray:
    """Content at p moves to model(p)."""
    h, w = frame.shape[:2]
    return cv2.warpAffine(frame, model.to_matrix(), (w, h),
                          flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REFLECT)


class ShiftPointTracker(PointTracker):
    """
    Scripted point tracker: moves features by a fixed offset.

    Tracking into the `current` slot adds (dx, dy); tracking into any other
    slot subtracts (back_dx, back_dy), which default to (dx, dy) so the
    round trip is exact.
    """

    def __init__(self, dx: float = 0.0, dy: float = 0.0,
                 back_dx: Optional[float] = None, back_dy: Optional[float] = None,
                 describe_ok=None, forward_fault: KltTrackFault = KltTrackFault.SUCCESS):
        self.dx = dx
        self.dy = dy
        self.back_dx = dx if back_dx is None else back_dx
        self.back_dy = dy if back_dy is None else back_dy
        self.describe_ok = describe_ok or (lambda x, y: True)
        self.forward_fault = forward_fault
        self.pyramids = None
        self._image = None
        self.calls = []

    def create_feature(self, num_layers):
        return PyramidKltFeature(num_layers, 1)

    def set_image(self, image):
        self._image = image

    def set_description(self, feature):
        self.calls.append(("describe", feature.x, feature.y))
        return self.describe_ok(feature.x, feature.y)

    def track(self, feature):
        forward = self._image is self.pyramids.current
        self.calls.append(("track", "forward" if forward else "backward"))
        if forward:
            if self.forward_fault != KltTrackFault.SUCCESS:
                return self.forward_fault
            feature.x += self.dx
            feature.y += self.dy
        else:
            feature.x -= self.back_dx
            feature.y -= self.back_dy
        return KltTrackFault.SUCCESS


class ScriptedEstimator(RobustEstimator):
    """Robust estimator with a preset outcome; counts process() calls."""

    def __init__(self, ok: bool = True, model: Optional[ScaleTranslateRotate2D] = None,
                 error: float = 0.0):
        self.ok = ok
        self._model = model or ScaleTranslateRotate2D()
        self._error = error
        self.calls = 0

    def process(self, pairs):
        self.calls += 1
        return self.ok

    @property
    def model(self):
        return self._model if self.ok else None

    @property
    def error(self):
        return self._error
