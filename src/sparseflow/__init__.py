"""
SparseFlow - Rigid-region visual tracker built on sparse optical flow

Keeps the pose (center, width, height, rotation) of a rectangular region up
to date across video frames.

Features:
- Double-buffered image pyramids with precomputed gradients
- Grid-sampled pyramidal KLT with forward-backward validation
- Least-median-of-squares similarity fit (scale, rotation, translation)
- Explicit ACTIVE / LOST lifecycle, no silent recovery

Quick Start:
    from sparseflow import SparseFlowObjectTracker, SfotConfig, RotatedRectangle

    tracker = SparseFlowObjectTracker(SfotConfig(number_of_samples=10))
    tracker.init(first_frame, RotatedRectangle(cx=320, cy=240, width=80, height=60))

    for frame in frames:
        result = tracker.update(frame)
        if not result.success:
            print("lost:", result.failure)
            break
        print(result.region)
"""

__version__ = "1.0.0"

# Configuration
from .config import KltConfig, SfotConfig

# Geometry
from .geometry import (
    AssociatedPair,
    RotatedRectangle,
    ScaleTranslateRotate2D,
    apply_motion,
    sample_grid,
)

# Collaborators
from .pyramid import (
    GradientOperator,
    ImagePyramid,
    PyramidBuffers,
    PyramidPair,
    PyramidRole,
    ScharrGradient,
    SobelGradient,
    create_gradient,
    select_pyramid_scales,
)
from .klt import KltTrackFault, PointTracker, PyramidKltFeature, PyramidKltTracker
from .robust import (
    DistanceScaleTranslateRotate2DSq,
    GenerateScaleTranslateRotate2D,
    LeastMedianOfSquares,
    ModelDistance,
    ModelGenerator,
    RobustEstimator,
    create_similarity_lmeds,
)
from .correspondence import ForwardBackwardEngine, forward_backward_error
from .motion import MotionEstimatorAdapter, TrackFailure

# Core tracking
from .sparseflow_core import (
    SparseFlowObjectTracker,
    TrackerError,
    TrackerNotInitializedError,
    TrackerStatus,
    TrackResult,
)

# Video and rendering
from .video_pipeline import FrameMetadata, FrameProcessor, FrameReader, PerformanceOverlay
from .annotation_layer import ColorScheme, draw_tracked_region

__all__ = [
    # Version
    "__version__",

    # Configuration
    "KltConfig",
    "SfotConfig",

    # Geometry
    "AssociatedPair",
    "RotatedRectangle",
    "ScaleTranslateRotate2D",
    "apply_motion",
    "sample_grid",

    # Pyramids
    "GradientOperator",
    "ImagePyramid",
    "PyramidBuffers",
    "PyramidPair",
    "PyramidRole",
    "ScharrGradient",
    "SobelGradient",
    "create_gradient",
    "select_pyramid_scales",

    # Point tracking
    "KltTrackFault",
    "PointTracker",
    "PyramidKltFeature",
    "PyramidKltTracker",
    "ForwardBackwardEngine",
    "forward_backward_error",

    # Robust fitting
    "DistanceScaleTranslateRotate2DSq",
    "GenerateScaleTranslateRotate2D",
    "LeastMedianOfSquares",
    "ModelDistance",
    "ModelGenerator",
    "RobustEstimator",
    "create_similarity_lmeds",
    "MotionEstimatorAdapter",
    "TrackFailure",

    # Core Tracking
    "SparseFlowObjectTracker",
    "TrackerError",
    "TrackerNotInitializedError",
    "TrackerStatus",
    "TrackResult",

    # Video
    "FrameMetadata",
    "FrameProcessor",
    "FrameReader",
    "PerformanceOverlay",

    # Annotation
    "ColorScheme",
    "draw_tracked_region",
]
