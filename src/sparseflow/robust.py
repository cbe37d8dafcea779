"""
SparseFlow Robust Fitting - Least-median-of-squares similarity estimation.

The estimator is generic over a model generator (minimal set -> model) and a
distance (model + pairs -> squared residuals). The tracker plugs in a 2-point
similarity generator and the squared point-transfer distance.

Least median of squares picks, among `cycles` random minimal samples, the
model whose median residual is smallest. Up to half of the correspondences
can be outliers without moving the fit.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Generic, List, Optional, Sequence, TypeVar

import numpy as np

from .geometry import AssociatedPair, ScaleTranslateRotate2D, pairs_to_arrays


Model = TypeVar("Model")


class ModelGenerator(ABC, Generic[Model]):
    """Builds a model from a minimal set of correspondences."""

    @property
    @abstractmethod
    def min_points(self) -> int:
        ...

    @abstractmethod
    def generate(self, src: np.ndarray, dst: np.ndarray) -> Optional[Model]:
        """Fit to exactly min_points pairs. None if the sample is degenerate."""


class ModelDistance(ABC, Generic[Model]):
    """Residual of each correspondence under a model."""

    @abstractmethod
    def set_model(self, model: Model):
        ...

    @abstractmethod
    def compute(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        """Per-pair residuals, shape (N,)."""


class GenerateScaleTranslateRotate2D(ModelGenerator[ScaleTranslateRotate2D]):
    """Closed-form similarity transform from two point pairs."""

    MIN_SEPARATION = 1e-8

    @property
    def min_points(self) -> int:
        return 2

    def generate(self, src, dst):
        ax, ay = src[1] - src[0]
        bx, by = dst[1] - dst[0]

        len_a = math.hypot(ax, ay)
        len_b = math.hypot(bx, by)
        if len_a < self.MIN_SEPARATION or len_b < self.MIN_SEPARATION:
            return None

        scale = len_b / len_a
        theta = math.atan2(ax * by - ay * bx, ax * bx + ay * by)

        c = math.cos(theta) * scale
        s = math.sin(theta) * scale
        trans_x = dst[0, 0] - (src[0, 0] * c - src[0, 1] * s)
        trans_y = dst[0, 1] - (src[0, 0] * s + src[0, 1] * c)

        return ScaleTranslateRotate2D(
            scale=float(scale), theta=float(theta),
            trans_x=float(trans_x), trans_y=float(trans_y)
        )


class DistanceScaleTranslateRotate2DSq(ModelDistance[ScaleTranslateRotate2D]):
    """Squared distance between the transformed source and the observed destination."""

    def __init__(self):
        self._model: Optional[ScaleTranslateRotate2D] = None

    def set_model(self, model):
        self._model = model

    def compute(self, src, dst):
        if self._model is None:
            raise RuntimeError("set_model() must be called before compute()")
        diff = self._model.transform_points(src) - dst
        return np.sum(diff * diff, axis=1)


class RobustEstimator(ABC, Generic[Model]):
    """What the motion adapter needs from a robust fitter."""

    @abstractmethod
    def process(self, pairs: Sequence[AssociatedPair]) -> bool:
        ...

    @property
    @abstractmethod
    def model(self) -> Optional[Model]:
        ...

    @property
    @abstractmethod
    def error(self) -> float:
        """Fit-quality score of the last successful process(); lower is better."""


class LeastMedianOfSquares(RobustEstimator[Model]):
    """
    Least-median-of-squares over random minimal samples.

    The sampler is re-seeded on every process() call, so the same input
    always gives the same model.
    """

    def __init__(
        self,
        seed: int,
        cycles: int,
        generator: ModelGenerator[Model],
        distance: ModelDistance[Model]
    ):
        self.seed = seed
        self.cycles = cycles
        self.generator = generator
        self.distance = distance

        self._model: Optional[Model] = None
        self._error = math.inf
        self._residuals: Optional[np.ndarray] = None

        self.logger = logging.getLogger(__name__)

    def process(self, pairs: Sequence[AssociatedPair]) -> bool:
        self._model = None
        self._error = math.inf
        self._residuals = None

        n = len(pairs)
        k = self.generator.min_points
        if n < k:
            return False

        src, dst = pairs_to_arrays(pairs)
        rng = np.random.default_rng(self.seed)

        best_model = None
        best_error = math.inf
        best_residuals = None

        for _ in range(self.cycles):
            sample = rng.choice(n, size=k, replace=False)
            candidate = self.generator.generate(src[sample], dst[sample])
            if candidate is None:
                continue

            self.distance.set_model(candidate)
            residuals = self.distance.compute(src, dst)
            median = float(np.median(residuals))

            if median < best_error:
                best_model = candidate
                best_error = median
                best_residuals = residuals

        if best_model is None:
            self.logger.debug(f"LMedS: all {self.cycles} samples degenerate ({n} pairs)")
            return False

        self._model = best_model
        self._error = best_error
        self._residuals = best_residuals
        return True

    @property
    def model(self) -> Optional[Model]:
        return self._model

    @property
    def error(self) -> float:
        return self._error

    def inlier_indices(self, threshold: float) -> List[int]:
        """Indices of pairs whose residual under the best model is <= threshold."""
        if self._residuals is None:
            return []
        return [int(i) for i in np.flatnonzero(self._residuals <= threshold)]


def create_similarity_lmeds(seed: int, cycles: int) -> LeastMedianOfSquares[ScaleTranslateRotate2D]:
    """The estimator the tracker uses by default."""
    return LeastMedianOfSquares(
        seed, cycles,
        GenerateScaleTranslateRotate2D(),
        DistanceScaleTranslateRotate2DSq()
    )
