"""
SparseFlow Configuration - Typed tuning blobs for the tracker.

Both blobs are fixed for the lifetime of a tracker instance. Invalid values
raise ValueError when the blob is constructed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


# ------------------------ KLT ------------------------
@dataclass
class KltConfig:
    max_per_pixel_error: float = 25.0   # Mean |T - I| allowed after convergence
    max_iterations: int = 15            # Per pyramid layer
    min_determinant: float = 0.001      # Below this the window has no usable texture
    min_position_delta: float = 0.01    # Convergence step, pixels

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.max_per_pixel_error < 0:
            raise ValueError("max_per_pixel_error must be non-negative")
        if self.min_determinant < 0:
            raise ValueError("min_determinant must be non-negative")
        if self.min_position_delta <= 0:
            raise ValueError("min_position_delta must be positive")


# ---------------------- Tracker ----------------------
@dataclass
class SfotConfig:
    number_of_samples: int = 15          # Grid is number_of_samples x number_of_samples
    maximum_error_fb: float = 1.0        # Forward-backward error, pixels
    min_correspondences: int = 15        # Above number_of_samples**2 every update fails
    rand_seed: int = 0xDEADBEEF
    robust_cycles: int = 50
    robust_max_error: float = 6.0        # Median squared residual, pixels^2
    tracker_feature_radius: int = 5
    pyramid_scales: Optional[Tuple[int, ...]] = None  # None = pick from image size
    gradient: str = "sobel"
    klt: KltConfig = field(default_factory=KltConfig)

    def __post_init__(self):
        if self.number_of_samples < 2:
            raise ValueError(f"number_of_samples must be >= 2, got {self.number_of_samples}")
        if self.maximum_error_fb < 0:
            raise ValueError("maximum_error_fb must be non-negative")
        if self.min_correspondences < 0:
            raise ValueError("min_correspondences must be non-negative")
        if self.robust_cycles < 1:
            raise ValueError("robust_cycles must be >= 1")
        if self.robust_max_error < 0:
            raise ValueError("robust_max_error must be non-negative")
        if self.tracker_feature_radius < 1:
            raise ValueError("tracker_feature_radius must be >= 1")
        if self.gradient not in ("sobel", "scharr"):
            raise ValueError(f"Unknown gradient operator: {self.gradient}")
        if self.pyramid_scales is not None:
            scales = tuple(int(s) for s in self.pyramid_scales)
            if not scales or scales[0] != 1:
                raise ValueError("pyramid_scales must start with 1")
            for prev, cur in zip(scales, scales[1:]):
                if cur <= prev or cur % prev != 0:
                    raise ValueError(
                        f"pyramid_scales must be increasing integer multiples, got {scales}"
                    )
            self.pyramid_scales = scales

        if self.min_correspondences > self.total_samples:
            logger.warning(
                f"min_correspondences={self.min_correspondences} exceeds the "
                f"{self.number_of_samples}x{self.number_of_samples} sample grid; "
                f"every update will fail"
            )

    @property
    def squared_error_fb(self) -> float:
        """Forward-backward threshold as a squared distance."""
        return self.maximum_error_fb * self.maximum_error_fb

    @property
    def total_samples(self) -> int:
        return self.number_of_samples * self.number_of_samples
