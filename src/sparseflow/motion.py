"""
SparseFlow Motion - Turns correspondences into a region update.

Gates, in order: enough correspondences, a non-degenerate robust fit with a
positive scale, and a fit score within bounds. Only when all pass is the region moved.
"""

import logging
import math
from enum import Enum
from typing import Optional, Sequence

from .geometry import AssociatedPair, RotatedRectangle, ScaleTranslateRotate2D, apply_motion
from .robust import RobustEstimator


class TrackFailure(Enum):
    """Why a frame update was rejected. Every failure leaves the tracker lost."""
    INSUFFICIENT_CORRESPONDENCES = "insufficient_correspondences"
    MODEL_FIT_FAILED = "model_fit_failed"
    FIT_QUALITY_TOO_LOW = "fit_quality_too_low"
    ALREADY_LOST = "already_lost"


class MotionEstimatorAdapter:
    """Runs the robust similarity fit and applies it to the tracked region."""

    def __init__(
        self,
        estimator: RobustEstimator[ScaleTranslateRotate2D],
        min_correspondences: int,
        max_error: float
    ):
        self.estimator = estimator
        self.min_correspondences = min_correspondences
        self.max_error = max_error

        self.last_model: Optional[ScaleTranslateRotate2D] = None
        self.last_error = math.inf

        self.logger = logging.getLogger(__name__)

    def estimate(
        self,
        pairs: Sequence[AssociatedPair],
        region: RotatedRectangle
    ) -> Optional[TrackFailure]:
        """
        Fit motion and update the region in place.

        Returns:
            None on success, otherwise the reason the frame was rejected
            (the region is left untouched)
        """
        self.last_model = None
        self.last_error = math.inf

        if len(pairs) < self.min_correspondences:
            return TrackFailure.INSUFFICIENT_CORRESPONDENCES

        if not self.estimator.process(pairs):
            return TrackFailure.MODEL_FIT_FAILED

        # Region size must stay positive
        model = self.estimator.model
        if model is None or not (model.scale > 0 and math.isfinite(model.scale)):
            self.logger.debug(f"Rejected degenerate model: {model}")
            return TrackFailure.MODEL_FIT_FAILED

        self.last_error = self.estimator.error
        if self.last_error > self.max_error:
            self.logger.debug(f"Fit error {self.last_error:.3f} > {self.max_error:.3f}")
            return TrackFailure.FIT_QUALITY_TOO_LOW

        self.last_model = model
        apply_motion(region, model)
        return None
