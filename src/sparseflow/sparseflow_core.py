"""
SparseFlow Core - Rigid-region tracker driven by sparse optical flow.

Given a rotated rectangle in a reference frame, keeps its pose (center,
size, rotation) up to date as new frames arrive:

┌─────────────────────────────────────────────────────────────────┐
│                       update(frame)                              │
│  1. Build CURRENT pyramid + gradients                           │
│  2. Lay an n x n grid over the region (previous pose)           │
│  3. KLT forward, KLT backward, keep round-trip-consistent pts    │
│  4. LMedS similarity fit -> scale / rotation / translation      │
│  5. Move region, swap pyramids (CURRENT becomes PREVIOUS)       │
└─────────────────────────────────────────────────────────────────┘

State Machine:
┌───────────────┐    init()    ┌──────────┐   any failure   ┌──────────┐
│ UNINITIALIZED │ ───────────→ │  ACTIVE  │ ──────────────→ │   LOST   │
└───────────────┘              └────┬─────┘                 └────┬─────┘
                                    ▲                            │
                                    └──────── init() ────────────┘

Once LOST, every update() reports ALREADY_LOST and the region is frozen.
Recovery is the caller's job: call init() again with a fresh region.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from .config import SfotConfig
from .correspondence import ForwardBackwardEngine
from .geometry import RotatedRectangle, ScaleTranslateRotate2D, sample_grid
from .klt import PointTracker, PyramidKltTracker
from .motion import MotionEstimatorAdapter, TrackFailure
from .pyramid import PyramidPair, PyramidRole, create_gradient, to_grayscale
from .robust import RobustEstimator, create_similarity_lmeds


class TrackerStatus(Enum):
    """Lifecycle of a tracker instance."""
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    LOST = "lost"


class TrackerError(RuntimeError):
    """Tracker used in a way its lifecycle does not allow."""


class TrackerNotInitializedError(TrackerError):
    """update() called before init()."""


@dataclass
class TrackResult:
    """Outcome of one update() call."""
    success: bool
    region: Optional[RotatedRectangle] = None
    failure: Optional[TrackFailure] = None
    num_correspondences: int = 0
    fit_error: float = math.inf


class SparseFlowObjectTracker:
    """
    Sparse-flow object tracker.

    Single-threaded and synchronous: one instance owns its pyramids and
    mutates them on every call. Use one instance per tracked region.

    Usage:
        tracker = SparseFlowObjectTracker(SfotConfig())
        tracker.init(frame0, RotatedRectangle(cx, cy, w, h, theta))

        for frame in frames:
            result = tracker.update(frame)
            if not result.success:
                break          # tracker.is_lost() is now True
            draw(result.region)
    """

    def __init__(
        self,
        config: Optional[SfotConfig] = None,
        point_tracker: Optional[PointTracker] = None,
        estimator: Optional[RobustEstimator[ScaleTranslateRotate2D]] = None,
        tracker_id: Optional[str] = None
    ):
        """
        Args:
            config: Tuning, fixed for the tracker's lifetime (default SfotConfig())
            point_tracker: Single-feature tracker (default pyramidal KLT)
            estimator: Robust similarity fitter (default least median of squares)
            tracker_id: Name used in log messages
        """
        self.config = config or SfotConfig()
        self.tracker_id = tracker_id or str(uuid.uuid4())[:8]
        self.logger = logging.getLogger(f"SparseFlowTracker-{self.tracker_id}")

        radius = self.config.tracker_feature_radius
        self.pyramids = PyramidPair(
            create_gradient(self.config.gradient),
            scales=self.config.pyramid_scales,
            min_layer_size=(radius * 2 + 1) * 5
        )

        self.point_tracker = point_tracker or PyramidKltTracker(self.config.klt, radius)
        self.correspondences = ForwardBackwardEngine(
            self.point_tracker, self.config.squared_error_fb
        )

        estimator = estimator or create_similarity_lmeds(
            self.config.rand_seed, self.config.robust_cycles
        )
        self.motion = MotionEstimatorAdapter(
            estimator,
            self.config.min_correspondences,
            self.config.robust_max_error
        )

        self._status = TrackerStatus.UNINITIALIZED
        self._region: Optional[RotatedRectangle] = None
        self._last_result: Optional[TrackResult] = None

    def init(self, frame: np.ndarray, region: RotatedRectangle):
        """
        Start (or restart) tracking a region.

        Allocates the pyramid store on first use, or when the frame size
        changes, then makes this frame the "previous" one.
        """
        gray = to_grayscale(frame)
        height, width = gray.shape[:2]

        if not self.pyramids.is_initialized or self.pyramids.frame_size != (width, height):
            self.pyramids.initialize(width, height)

        self.pyramids.process(gray, PyramidRole.PREVIOUS)

        self._region = region.copy()
        self._status = TrackerStatus.ACTIVE
        self._last_result = None

        self.logger.info(f"Tracker initialized on {width}x{height} frame")
        self.logger.debug(f"Initial region: {self._region}")

    def update(
        self,
        frame: np.ndarray,
        output: Optional[RotatedRectangle] = None
    ) -> TrackResult:
        """
        Track the region into a new frame.

        Args:
            frame: Next frame, same size as the one passed to init()
            output: Optional region overwritten with the new pose on success

        Returns:
            TrackResult. On failure the tracker is LOST until the next init().

        Raises:
            TrackerNotInitializedError: init() has never been called
        """
        if self._status == TrackerStatus.UNINITIALIZED:
            raise TrackerNotInitializedError("init() must be called before update()")

        if self._status == TrackerStatus.LOST:
            return self._finish(TrackResult(success=False, failure=TrackFailure.ALREADY_LOST))

        self.pyramids.process(frame, PyramidRole.CURRENT)

        samples = sample_grid(self._region, self.config.number_of_samples)
        pairs = self.correspondences.build(self.pyramids, samples)

        failure = self.motion.estimate(pairs, self._region)
        if failure is not None:
            return self._declare_lost(failure, len(pairs))

        self.pyramids.swap_roles()

        if output is not None:
            output.set(self._region)

        self.logger.debug(
            f"Update OK: {len(pairs)} pairs, fit error {self.motion.last_error:.4f}, "
            f"center=({self._region.cx:.1f}, {self._region.cy:.1f})"
        )
        return self._finish(TrackResult(
            success=True,
            region=self._region.copy(),
            num_correspondences=len(pairs),
            fit_error=self.motion.last_error
        ))

    def _declare_lost(self, failure: TrackFailure, num_pairs: int) -> TrackResult:
        self._status = TrackerStatus.LOST
        self.logger.warning(
            f"Track lost: {failure.value} ({num_pairs} correspondences, "
            f"fit error {self.motion.last_error:.4f})"
        )
        return self._finish(TrackResult(
            success=False,
            failure=failure,
            num_correspondences=num_pairs,
            fit_error=self.motion.last_error
        ))

    def _finish(self, result: TrackResult) -> TrackResult:
        self._last_result = result
        return result

    def is_lost(self) -> bool:
        return self._status == TrackerStatus.LOST

    @property
    def status(self) -> TrackerStatus:
        return self._status

    @property
    def region(self) -> Optional[RotatedRectangle]:
        """Copy of the current pose (None before init)."""
        return self._region.copy() if self._region is not None else None

    @property
    def last_result(self) -> Optional[TrackResult]:
        return self._last_result
