"""
SparseFlow Pyramid Store - Double-buffered image pyramids with gradients.

Two slots hold the "previous" and "current" frames. Every buffer is allocated
once in initialize() and overwritten in place on each process() call, so the
per-frame cost never includes allocation. After a successful update the roles
are swapped by exchanging references, never by copying pixels.

┌───────────────────────────┐        swap_roles()        ┌───────────────────────────┐
│ PREVIOUS slot             │ ◄────────────────────────► │ CURRENT slot              │
│  layers[i]   (float32)    │                            │  layers[i]   (float32)    │
│  deriv_x[i], deriv_y[i]   │                            │  deriv_x[i], deriv_y[i]   │
└───────────────────────────┘                            └───────────────────────────┘
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import cv2


logger = logging.getLogger(__name__)


class PyramidRole(Enum):
    """Which frame a pyramid slot currently holds."""
    PREVIOUS = "previous"
    CURRENT = "current"


def select_pyramid_scales(image_width: int, image_height: int, min_size: int) -> Tuple[int, ...]:
    """
    Pick power-of-two layer scales so the coarsest layer stays usable.

    Args:
        image_width, image_height: Full resolution size
        min_size: Smallest useful side length of the coarsest layer

    Returns:
        Scales starting at 1, e.g. (1, 2, 4)
    """
    w = max(image_width, image_height)
    max_scale = w // max(1, min_size)

    n = 1
    scale = 1
    while scale * 2 < max_scale:
        n += 1
        scale *= 2

    return tuple(2 ** i for i in range(n))


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    """Accept 2-D gray, single-channel or BGR frames."""
    if frame.ndim == 2:
        return frame
    if frame.ndim == 3 and frame.shape[2] == 1:
        return frame[:, :, 0]
    if frame.ndim == 3 and frame.shape[2] == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    raise ValueError(f"Expected a grayscale or BGR image, got shape {frame.shape}")


class ImagePyramid:
    """
    Multi-scale smoothed pyramid.

    Layer 0 is the input as float32. Each further layer is a 3x3 Gaussian
    blur of the layer above, subsampled by the integer ratio between scales.
    """

    BLUR_KERNEL = (3, 3)

    def __init__(self, scales: Sequence[int]):
        self.scales: Tuple[int, ...] = tuple(int(s) for s in scales)
        self._layers: List[np.ndarray] = []
        self._scratch: List[np.ndarray] = []
        self._width = 0
        self._height = 0

    def initialize(self, width: int, height: int):
        """Allocate every layer for images of the given size."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid image size {width}x{height}")

        self._width = width
        self._height = height
        self._layers = []

        w, h = width, height
        prev_scale = 1
        for scale in self.scales:
            ratio = scale // prev_scale
            # Matches the size produced by slicing with [::ratio]
            w = -(-w // ratio)
            h = -(-h // ratio)
            self._layers.append(np.zeros((h, w), dtype=np.float32))
            prev_scale = scale

        self._scratch = [np.zeros_like(layer) for layer in self._layers[:-1]]

    def process(self, gray: np.ndarray):
        """Rebuild every layer from a single-channel image."""
        if gray.shape[:2] != (self._height, self._width):
            raise ValueError(
                f"Image size {gray.shape[1]}x{gray.shape[0]} does not match "
                f"pyramid size {self._width}x{self._height}"
            )

        np.copyto(self._layers[0], gray)

        for i in range(1, len(self._layers)):
            ratio = self.scales[i] // self.scales[i - 1]
            blurred = self._scratch[i - 1]
            cv2.GaussianBlur(self._layers[i - 1], self.BLUR_KERNEL, 0, dst=blurred)
            np.copyto(self._layers[i], blurred[::ratio, ::ratio])

    @property
    def num_layers(self) -> int:
        return len(self._layers)

    def get_layer(self, index: int) -> np.ndarray:
        return self._layers[index]

    def get_scale(self, index: int) -> int:
        return self.scales[index]

    def get_width(self, index: int) -> int:
        return self._layers[index].shape[1]

    def get_height(self, index: int) -> int:
        return self._layers[index].shape[0]


class GradientOperator(ABC):
    """Computes x/y derivative images of one pyramid layer, in place."""

    @abstractmethod
    def process(self, layer: np.ndarray, deriv_x: np.ndarray, deriv_y: np.ndarray):
        ...


class SobelGradient(GradientOperator):
    """3x3 Sobel, normalized to intensity units per pixel."""

    SCALE = 1.0 / 8.0

    def process(self, layer, deriv_x, deriv_y):
        cv2.Sobel(layer, cv2.CV_32F, 1, 0, dst=deriv_x, ksize=3,
                  scale=self.SCALE, borderType=cv2.BORDER_REPLICATE)
        cv2.Sobel(layer, cv2.CV_32F, 0, 1, dst=deriv_y, ksize=3,
                  scale=self.SCALE, borderType=cv2.BORDER_REPLICATE)


class ScharrGradient(GradientOperator):
    """3x3 Scharr, normalized to intensity units per pixel."""

    SCALE = 1.0 / 32.0

    def process(self, layer, deriv_x, deriv_y):
        cv2.Scharr(layer, cv2.CV_32F, 1, 0, dst=deriv_x,
                   scale=self.SCALE, borderType=cv2.BORDER_REPLICATE)
        cv2.Scharr(layer, cv2.CV_32F, 0, 1, dst=deriv_y,
                   scale=self.SCALE, borderType=cv2.BORDER_REPLICATE)


def create_gradient(name: str) -> GradientOperator:
    """Gradient operator by config name ("sobel" or "scharr")."""
    operators = {
        "sobel": SobelGradient,
        "scharr": ScharrGradient,
    }
    if name not in operators:
        raise ValueError(f"Unknown gradient operator: {name}")
    return operators[name]()


class PyramidBuffers:
    """One slot: an image pyramid plus per-layer derivative images."""

    def __init__(self, scales: Sequence[int]):
        self.pyramid = ImagePyramid(scales)
        self.deriv_x: List[np.ndarray] = []
        self.deriv_y: List[np.ndarray] = []

    def initialize(self, width: int, height: int):
        self.pyramid.initialize(width, height)
        self.deriv_x = [np.zeros_like(self.pyramid.get_layer(i)) for i in range(self.num_layers)]
        self.deriv_y = [np.zeros_like(self.pyramid.get_layer(i)) for i in range(self.num_layers)]

    def process(self, gray: np.ndarray, gradient: GradientOperator):
        self.pyramid.process(gray)
        for i in range(self.num_layers):
            gradient.process(self.pyramid.get_layer(i), self.deriv_x[i], self.deriv_y[i])

    @property
    def num_layers(self) -> int:
        return self.pyramid.num_layers

    def get_layer(self, index: int) -> np.ndarray:
        return self.pyramid.get_layer(index)

    def get_scale(self, index: int) -> int:
        return self.pyramid.get_scale(index)


class PyramidPair:
    """
    Double-buffered pyramid store owned by a single tracker.

    Both slots always share the same layer geometry. Scales are either fixed
    up front or chosen from the image size when the store is initialized.
    """

    def __init__(
        self,
        gradient: GradientOperator,
        scales: Optional[Sequence[int]] = None,
        min_layer_size: int = 55
    ):
        """
        Args:
            gradient: Operator used to fill the derivative buffers
            scales: Explicit layer scales, None = select_pyramid_scales()
            min_layer_size: Coarsest layer side length used for automatic selection
        """
        self.gradient = gradient
        self.fixed_scales = tuple(scales) if scales is not None else None
        self.min_layer_size = min_layer_size

        self._slots: Dict[PyramidRole, PyramidBuffers] = {}
        self._width = 0
        self._height = 0

    def initialize(self, width: int, height: int):
        """Allocate both pyramids and all derivative buffers."""
        scales = self.fixed_scales or select_pyramid_scales(width, height, self.min_layer_size)

        previous = PyramidBuffers(scales)
        current = PyramidBuffers(scales)
        previous.initialize(width, height)
        current.initialize(width, height)

        self._slots = {
            PyramidRole.PREVIOUS: previous,
            PyramidRole.CURRENT: current,
        }
        self._width = width
        self._height = height

        logger.info(
            f"Pyramid store allocated: {width}x{height}, scales={scales}, "
            f"layers={[(current.pyramid.get_width(i), current.pyramid.get_height(i)) for i in range(current.num_layers)]}"
        )

    def process(self, image: np.ndarray, role: PyramidRole):
        """Rebuild the named slot from a frame (BGR frames are converted to gray)."""
        if not self.is_initialized:
            raise RuntimeError("PyramidPair.initialize() must be called before process()")
        self._slots[role].process(to_grayscale(image), self.gradient)

    def swap_roles(self):
        """Make the current frame the previous one. Reference exchange only."""
        self._slots[PyramidRole.PREVIOUS], self._slots[PyramidRole.CURRENT] = (
            self._slots[PyramidRole.CURRENT],
            self._slots[PyramidRole.PREVIOUS],
        )

    def get(self, role: PyramidRole) -> PyramidBuffers:
        return self._slots[role]

    @property
    def previous(self) -> PyramidBuffers:
        return self._slots[PyramidRole.PREVIOUS]

    @property
    def current(self) -> PyramidBuffers:
        return self._slots[PyramidRole.CURRENT]

    @property
    def is_initialized(self) -> bool:
        return bool(self._slots)

    @property
    def frame_size(self) -> Tuple[int, int]:
        return (self._width, self._height)

    @property
    def num_layers(self) -> int:
        return self.current.num_layers if self._slots else 0
