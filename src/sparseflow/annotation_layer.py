"""
SparseFlow Annotation Layer - Draws the tracked region onto frames.

The region is drawn as its rotated outline plus a tick from the center to
the middle of the right edge, so the rotation is visible. Color follows the
tracker status; nothing is drawn for an uninitialized tracker.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import cv2

from .geometry import RotatedRectangle
from .sparseflow_core import TrackerStatus


@dataclass
class ColorScheme:
    """BGR colors per tracker status."""
    active: Tuple[int, int, int] = (0, 255, 128)    # Green
    lost: Tuple[int, int, int] = (0, 0, 255)        # Red
    text: Tuple[int, int, int] = (255, 255, 255)    # White
    background: Tuple[int, int, int] = (0, 0, 0)    # Black


def draw_tracked_region(
    frame: np.ndarray,
    region: Optional[RotatedRectangle],
    status: TrackerStatus,
    colors: Optional[ColorScheme] = None,
    thickness: int = 2,
    label: str = ""
) -> np.ndarray:
    """
    Draw a tracked region onto a BGR frame, in place.

    Returns:
        The same frame, for chaining
    """
    if region is None or status == TrackerStatus.UNINITIALIZED:
        return frame

    colors = colors or ColorScheme()
    color = colors.lost if status == TrackerStatus.LOST else colors.active

    corners = np.round(region.corners()).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(frame, [corners], True, color, thickness, cv2.LINE_AA)

    center = (int(round(region.cx)), int(round(region.cy)))
    heading = (
        int(round(region.cx + 0.5 * region.width * math.cos(region.theta))),
        int(round(region.cy + 0.5 * region.width * math.sin(region.theta)))
    )
    cv2.line(frame, center, heading, color, max(1, thickness - 1), cv2.LINE_AA)
    cv2.circle(frame, center, 3, color, -1, cv2.LINE_AA)

    text = label or status.value.upper()
    top = int(np.min(corners[:, 0, 1]))
    left = int(np.min(corners[:, 0, 0]))
    org = (max(0, left), max(12, top - 6))
    cv2.putText(frame, text, org, cv2.FONT_HERSHEY_SIMPLEX, 0.5,
                colors.background, 3, cv2.LINE_AA)
    cv2.putText(frame, text, org, cv2.FONT_HERSHEY_SIMPLEX, 0.5,
                colors.text, 1, cv2.LINE_AA)

    return frame
