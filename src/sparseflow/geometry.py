"""
SparseFlow Geometry - Region, correspondence and motion primitives.

The tracked object is a rotated rectangle. Motion between two frames is a
similarity transform (uniform scale, rotation, translation) that maps a
previous-frame point to its current-frame location:

    x' = s * (x*cos(t) - y*sin(t)) + tx
    y' = s * (x*sin(t) + y*cos(t)) + ty
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np


@dataclass
class RotatedRectangle:
    """Pose of the tracked region in image coordinates (theta in radians)."""
    cx: float
    cy: float
    width: float
    height: float
    theta: float = 0.0

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Region width and height must be positive, got {self.width}x{self.height}"
            )

    def set(self, other: "RotatedRectangle") -> None:
        """Overwrite this region with the pose of another."""
        self.cx = other.cx
        self.cy = other.cy
        self.width = other.width
        self.height = other.height
        self.theta = other.theta

    def copy(self) -> "RotatedRectangle":
        return RotatedRectangle(self.cx, self.cy, self.width, self.height, self.theta)

    @property
    def center(self) -> Tuple[float, float]:
        return self.cx, self.cy

    def corners(self) -> np.ndarray:
        """Four corners as a (4, 2) array, counter-clockwise in the local frame."""
        c = math.cos(self.theta)
        s = math.sin(self.theta)
        hw = 0.5 * self.width
        hh = 0.5 * self.height
        local = np.array([[-hw, -hh], [hw, -hh], [hw, hh], [-hw, hh]], dtype=np.float64)
        rot = np.array([[c, -s], [s, c]], dtype=np.float64)
        return local @ rot.T + np.array([self.cx, self.cy])

    @classmethod
    def from_bbox(cls, x: float, y: float, w: float, h: float) -> "RotatedRectangle":
        """Axis-aligned (x, y, w, h) box, e.g. from cv2.selectROI."""
        return cls(x + 0.5 * w, y + 0.5 * h, float(w), float(h), 0.0)


@dataclass
class AssociatedPair:
    """A sample location in the previous frame and where it was found in the current one."""
    x1: float
    y1: float
    x2: float
    y2: float


def pairs_to_arrays(pairs: Sequence[AssociatedPair]) -> Tuple[np.ndarray, np.ndarray]:
    """Split correspondences into (N, 2) source and destination arrays."""
    if len(pairs) == 0:
        empty = np.empty((0, 2), dtype=np.float64)
        return empty, empty.copy()
    data = np.array([(p.x1, p.y1, p.x2, p.y2) for p in pairs], dtype=np.float64)
    return data[:, 0:2], data[:, 2:4]


@dataclass
class ScaleTranslateRotate2D:
    """2D similarity transform."""
    scale: float = 1.0
    theta: float = 0.0
    trans_x: float = 0.0
    trans_y: float = 0.0

    def transform(self, x: float, y: float) -> Tuple[float, float]:
        c = math.cos(self.theta)
        s = math.sin(self.theta)
        return (
            (x * c - y * s) * self.scale + self.trans_x,
            (x * s + y * c) * self.scale + self.trans_y,
        )

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply to an (N, 2) array."""
        c = math.cos(self.theta)
        s = math.sin(self.theta)
        x = points[:, 0]
        y = points[:, 1]
        out = np.empty_like(points, dtype=np.float64)
        out[:, 0] = (x * c - y * s) * self.scale + self.trans_x
        out[:, 1] = (x * s + y * c) * self.scale + self.trans_y
        return out

    def to_matrix(self) -> np.ndarray:
        """2x3 matrix, the form cv2.warpAffine expects."""
        c = math.cos(self.theta) * self.scale
        s = math.sin(self.theta) * self.scale
        return np.array([[c, -s, self.trans_x], [s, c, self.trans_y]], dtype=np.float64)


def sample_grid(region: RotatedRectangle, n: int) -> np.ndarray:
    """
    Lay an n x n grid over the region, boundary included.

    Local parametric positions (p*j - 0.5, p*i - 0.5) with p = 1/(n-1) are
    scaled by the region size, rotated by its angle and moved to its center.

    Returns:
        (n*n, 2) float64 array of (x, y), row-major (y outer, x inner)
    """
    if n < 2:
        raise ValueError(f"Grid resolution must be >= 2, got {n}")

    p = 1.0 / (n - 1)
    steps = np.arange(n, dtype=np.float64) * p - 0.5
    local_x, local_y = np.meshgrid(steps * region.width, steps * region.height)
    local_x = local_x.reshape(-1)
    local_y = local_y.reshape(-1)

    c = math.cos(region.theta)
    s = math.sin(region.theta)

    points = np.empty((n * n, 2), dtype=np.float64)
    points[:, 0] = region.cx + local_x * c - local_y * s
    points[:, 1] = region.cy + local_x * s + local_y * c
    return points


def apply_motion(region: RotatedRectangle, model: ScaleTranslateRotate2D) -> None:
    """
    Move the region by a fitted frame-to-frame motion, in place.

    The center is a point, so it goes through the full transform. Width and
    height are extents and only take the scale. Rotation accumulates.
    """
    region.width *= model.scale
    region.height *= model.scale

    region.cx, region.cy = model.transform(region.cx, region.cy)

    region.theta += model.theta

