"""
SparseFlow KLT - Single-feature pyramidal Lucas-Kanade tracker.

A feature is an anchor location plus, for every pyramid layer, the
appearance window (intensity and derivatives) sampled around it. Tracking
moves the anchor coarse-to-fine until the window in the target pyramid
matches the stored appearance.

Usage:
    tracker = PyramidKltTracker(KltConfig(), radius=5)
    feature = tracker.create_feature(num_layers)

    feature.set_position(x, y)
    tracker.set_image(previous_buffers)
    if tracker.set_description(feature):
        tracker.set_image(current_buffers)
        fault = tracker.track(feature)   # feature.x/.y updated on SUCCESS
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np
import cv2

from .config import KltConfig
from .pyramid import PyramidBuffers


class KltTrackFault(Enum):
    """Outcome of tracking a single feature."""
    SUCCESS = "success"
    OUT_OF_BOUNDS = "out_of_bounds"    # Window left the image
    DETERMINANT = "determinant"        # Not enough texture to solve for motion
    LARGE_ERROR = "large_error"        # Converged, but appearance does not match


@dataclass
class KltFeature:
    """Appearance window of a feature on one pyramid layer."""
    desc: Optional[np.ndarray] = None
    deriv_x: Optional[np.ndarray] = None
    deriv_y: Optional[np.ndarray] = None
    gxx: float = 0.0
    gyy: float = 0.0
    gxy: float = 0.0


class PyramidKltFeature:
    """Anchor location (full resolution) plus one KltFeature per layer."""

    def __init__(self, num_layers: int, radius: int):
        self.radius = radius
        self.x = 0.0
        self.y = 0.0
        self.desc: List[KltFeature] = [KltFeature() for _ in range(num_layers)]

    def set_position(self, x: float, y: float):
        self.x = float(x)
        self.y = float(y)

    @property
    def num_layers(self) -> int:
        return len(self.desc)


class PointTracker(ABC):
    """
    Relocates one feature from the described pyramid into the target pyramid.

    The correspondence engine only talks to this interface, so tests can
    substitute a scripted tracker.
    """

    @abstractmethod
    def create_feature(self, num_layers: int) -> PyramidKltFeature:
        ...

    @abstractmethod
    def set_image(self, image: PyramidBuffers):
        """Pyramid (with derivatives) used by the next describe/track call."""

    @abstractmethod
    def set_description(self, feature: PyramidKltFeature) -> bool:
        """Sample the feature's appearance at its anchor. False near borders."""

    @abstractmethod
    def track(self, feature: PyramidKltFeature) -> KltTrackFault:
        """Move the feature's anchor to its location in the current image."""


class PyramidKltTracker(PointTracker):
    """Lucas-Kanade with a fixed template gradient, run coarse-to-fine."""

    def __init__(self, config: KltConfig, radius: int):
        self.config = config
        self.radius = radius
        self.width = 2 * radius + 1
        self._image: Optional[PyramidBuffers] = None

    def create_feature(self, num_layers: int) -> PyramidKltFeature:
        return PyramidKltFeature(num_layers, self.radius)

    def set_image(self, image: PyramidBuffers):
        self._image = image

    def _is_inside(self, layer: np.ndarray, x: float, y: float) -> bool:
        # One extra pixel on the far side for bilinear interpolation
        h, w = layer.shape[:2]
        r = self.radius
        return x - r >= 0 and y - r >= 0 and x + r < w - 1 and y + r < h - 1

    def _sample(self, image: np.ndarray, x: float, y: float) -> np.ndarray:
        return cv2.getRectSubPix(image, (self.width, self.width), (float(x), float(y)))

    def set_description(self, feature: PyramidKltFeature) -> bool:
        image = self._require_image()

        for layer in range(image.num_layers):
            scale = image.get_scale(layer)
            x = feature.x / scale
            y = feature.y / scale

            if not self._is_inside(image.get_layer(layer), x, y):
                return False

            desc = feature.desc[layer]
            desc.desc = self._sample(image.get_layer(layer), x, y)
            desc.deriv_x = self._sample(image.deriv_x[layer], x, y)
            desc.deriv_y = self._sample(image.deriv_y[layer], x, y)

            desc.gxx = float(np.sum(desc.deriv_x * desc.deriv_x))
            desc.gyy = float(np.sum(desc.deriv_y * desc.deriv_y))
            desc.gxy = float(np.sum(desc.deriv_x * desc.deriv_y))

        return True

    def track(self, feature: PyramidKltFeature) -> KltTrackFault:
        image = self._require_image()

        fault = KltTrackFault.SUCCESS
        for layer in range(image.num_layers - 1, -1, -1):
            scale = image.get_scale(layer)
            fault, x, y = self._track_layer(
                image.get_layer(layer), feature.desc[layer],
                feature.x / scale, feature.y / scale
            )
            if fault == KltTrackFault.SUCCESS:
                feature.x = x * scale
                feature.y = y * scale
            elif layer == 0:
                return fault
            # A coarse layer fault keeps the current estimate for the next layer

        return fault

    def _track_layer(self, layer: np.ndarray, desc: KltFeature, x: float, y: float):
        """Returns (fault, x, y) in layer coordinates."""
        if desc.desc is None:
            return KltTrackFault.OUT_OF_BOUNDS, x, y

        det = desc.gxx * desc.gyy - desc.gxy * desc.gxy
        if det < self.config.min_determinant:
            return KltTrackFault.DETERMINANT, x, y

        for _ in range(self.config.max_iterations):
            if not self._is_inside(layer, x, y):
                return KltTrackFault.OUT_OF_BOUNDS, x, y

            error = desc.desc - self._sample(layer, x, y)
            ex = float(np.sum(error * desc.deriv_x))
            ey = float(np.sum(error * desc.deriv_y))

            dx = (desc.gyy * ex - desc.gxy * ey) / det
            dy = (desc.gxx * ey - desc.gxy * ex) / det

            x += dx
            y += dy

            if abs(dx) < self.config.min_position_delta and abs(dy) < self.config.min_position_delta:
                break

        if not self._is_inside(layer, x, y):
            return KltTrackFault.OUT_OF_BOUNDS, x, y

        residual = float(np.mean(np.abs(desc.desc - self._sample(layer, x, y))))
        if residual > self.config.max_per_pixel_error:
            return KltTrackFault.LARGE_ERROR, x, y

        return KltTrackFault.SUCCESS, x, y

    def _require_image(self) -> PyramidBuffers:
        if self._image is None:
            raise RuntimeError("set_image() must be called before describing or tracking")
        return self._image
