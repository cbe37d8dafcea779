"""
SparseFlow Correspondences - Forward-backward validated sample tracking.

Each sample point is tracked previous -> current, then re-described at the
found location and tracked current -> previous. A point that does not come
back to where it started is dropped. Drops are silent; only the number of
surviving correspondences matters downstream.
"""

import logging
from typing import List, Optional

import numpy as np

from .geometry import AssociatedPair
from .klt import KltTrackFault, PointTracker, PyramidKltFeature
from .pyramid import PyramidPair


def forward_backward_error(x0: float, y0: float, x1: float, y1: float) -> float:
    """Squared distance between a sample and its round-trip location."""
    dx = x1 - x0
    dy = y1 - y0
    return dx * dx + dy * dy


class ForwardBackwardEngine:
    """Builds previous -> current correspondences for a set of sample points."""

    def __init__(self, tracker: PointTracker, max_error_sq: float):
        """
        Args:
            tracker: Single-feature tracker
            max_error_sq: Squared forward-backward error above which a point is dropped
        """
        self.tracker = tracker
        self.max_error_sq = max_error_sq

        self._feature: Optional[PyramidKltFeature] = None
        self._pairs: List[AssociatedPair] = []

        self.logger = logging.getLogger(__name__)

    def _feature_for(self, num_layers: int) -> PyramidKltFeature:
        if self._feature is None or self._feature.num_layers != num_layers:
            self._feature = self.tracker.create_feature(num_layers)
        return self._feature

    def build(self, pyramids: PyramidPair, samples: np.ndarray) -> List[AssociatedPair]:
        """
        Track every sample and keep the consistent ones.

        Args:
            pyramids: Store with both slots processed
            samples: (N, 2) sample locations in the previous frame

        Returns:
            Surviving correspondences (possibly empty). The list is owned by
            the engine and cleared on the next call.
        """
        self._pairs.clear()

        previous = pyramids.previous
        current = pyramids.current
        track = self._feature_for(previous.num_layers)

        for sx, sy in samples:
            sx = float(sx)
            sy = float(sy)

            # Forward
            track.set_position(sx, sy)
            self.tracker.set_image(previous)
            if not self.tracker.set_description(track):
                continue

            self.tracker.set_image(current)
            if self.tracker.track(track) != KltTrackFault.SUCCESS:
                continue

            xc = track.x
            yc = track.y

            # Backward
            if not self.tracker.set_description(track):
                continue
            self.tracker.set_image(previous)
            if self.tracker.track(track) != KltTrackFault.SUCCESS:
                continue

            if forward_backward_error(sx, sy, track.x, track.y) > self.max_error_sq:
                continue

            self._pairs.append(AssociatedPair(sx, sy, xc, yc))

        self.logger.debug(f"Forward-backward: {len(self._pairs)}/{len(samples)} samples kept")
        return self._pairs
