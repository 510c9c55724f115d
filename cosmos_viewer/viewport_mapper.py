"""Image-fraction <-> screen-pixel conversion decoupled from any viewer widget.

Viewport coordinates follow the deep-zoom convention: the image spans
``x`` in ``[0, 1]`` and ``y`` in ``[0, height / width]``. ``zoom`` counts
container widths per viewport unit, so zoom 1 fits the image width exactly.
Rotation is clockwise in degrees around the container centre.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from cosmos_errors import ImageDimensionsUnknown

Point = Tuple[float, float]


@dataclass(frozen=True)
class ImageDimensions:
    """Native pixel size reported by the tile pyramid (never the displayed size)."""

    width: float
    height: float

    @property
    def aspect(self) -> float:
        return self.height / self.width


@dataclass(frozen=True)
class ViewportState:
    zoom: float
    center_x: float
    center_y: float
    rotation: float = 0.0
    container_width: float = 1.0
    container_height: float = 1.0

    @property
    def pixels_per_unit(self) -> float:
        return self.container_width * self.zoom

    def with_changes(self, **changes: float) -> "ViewportState":
        return replace(self, **changes)


def require_dimensions(dims: Optional[ImageDimensions]) -> ImageDimensions:
    """Reject missing or degenerate native sizes instead of substituting 1x1."""

    if dims is None:
        raise ImageDimensionsUnknown("native image dimensions are not known yet")
    width = dims.width
    height = dims.height
    if not (_finite_positive(width) and _finite_positive(height)):
        raise ImageDimensionsUnknown(f"invalid native image dimensions {width!r}x{height!r}")
    return dims


def _require_state(state: ViewportState) -> ViewportState:
    if not _finite_positive(state.zoom):
        raise ValueError(f"viewport zoom must be positive and finite, got {state.zoom!r}")
    if not (_finite_positive(state.container_width) and _finite_positive(state.container_height)):
        raise ValueError("viewport container size must be positive and finite")
    if not all(math.isfinite(value) for value in (state.center_x, state.center_y, state.rotation)):
        raise ValueError("viewport centre and rotation must be finite")
    return state


def _finite_positive(value: float) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0.0


# Engine-equivalent primitives ------------------------------------------------


def image_to_viewport_point(image_x: float, image_y: float, dims: ImageDimensions) -> Point:
    width = require_dimensions(dims).width
    return image_x / width, image_y / width


def viewport_point_to_image(viewport_x: float, viewport_y: float, dims: ImageDimensions) -> Point:
    width = require_dimensions(dims).width
    return viewport_x * width, viewport_y * width


def pixel_from_viewport_point(viewport_x: float, viewport_y: float, state: ViewportState) -> Point:
    state = _require_state(state)
    scale = state.pixels_per_unit
    dx = (viewport_x - state.center_x) * scale
    dy = (viewport_y - state.center_y) * scale
    if state.rotation:
        theta = math.radians(state.rotation)
        cos_t = math.cos(theta)
        sin_t = math.sin(theta)
        dx, dy = dx * cos_t - dy * sin_t, dx * sin_t + dy * cos_t
    return state.container_width / 2.0 + dx, state.container_height / 2.0 + dy


def viewport_point_from_pixel(screen_x: float, screen_y: float, state: ViewportState) -> Point:
    state = _require_state(state)
    dx = screen_x - state.container_width / 2.0
    dy = screen_y - state.container_height / 2.0
    if state.rotation:
        theta = math.radians(state.rotation)
        cos_t = math.cos(theta)
        sin_t = math.sin(theta)
        dx, dy = dx * cos_t + dy * sin_t, -dx * sin_t + dy * cos_t
    scale = state.pixels_per_unit
    return state.center_x + dx / scale, state.center_y + dy / scale


# Fraction mapping ------------------------------------------------------------


def image_fraction_to_viewport_pixel(
    x_fraction: float,
    y_fraction: float,
    state: ViewportState,
    dims: Optional[ImageDimensions],
) -> Point:
    """Project a stored fraction to container pixels for the given view."""

    dims = require_dimensions(dims)
    viewport_x, viewport_y = image_to_viewport_point(x_fraction * dims.width, y_fraction * dims.height, dims)
    return pixel_from_viewport_point(viewport_x, viewport_y, state)


def viewport_pixel_to_image_fraction(
    screen_x: float,
    screen_y: float,
    state: ViewportState,
    dims: Optional[ImageDimensions],
) -> Point:
    """Inverse of :func:`image_fraction_to_viewport_pixel`.

    Results are not clamped: a click just outside the image yields a fraction
    outside ``[0, 1]`` and the caller decides whether to reject it.
    """

    dims = require_dimensions(dims)
    viewport_x, viewport_y = viewport_point_from_pixel(screen_x, screen_y, state)
    image_x, image_y = viewport_point_to_image(viewport_x, viewport_y, dims)
    return image_x / dims.width, image_y / dims.height


def fraction_in_bounds(x_fraction: float, y_fraction: float) -> bool:
    return 0.0 <= x_fraction <= 1.0 and 0.0 <= y_fraction <= 1.0


def home_state(dims: ImageDimensions, container_width: float, container_height: float) -> ViewportState:
    """View that fits the whole image centred in the container."""

    dims = require_dimensions(dims)
    if not (_finite_positive(container_width) and _finite_positive(container_height)):
        raise ValueError("container size must be positive and finite")
    fit_zoom = (container_height * dims.width) / (container_width * dims.height)
    return ViewportState(
        zoom=min(1.0, fit_zoom),
        center_x=0.5,
        center_y=dims.aspect / 2.0,
        rotation=0.0,
        container_width=float(container_width),
        container_height=float(container_height),
    )
