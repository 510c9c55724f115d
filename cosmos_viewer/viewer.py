"""Headless model of the deep-zoom engine the overlay is drawn on.

Only the capability surface the annotation layer depends on is modelled:
viewport <-> image conversion, the opened tile pyramid, lifecycle events and
pointer navigation. Tile fetching and compositing stay with the real engine.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import requests

from cosmos_errors import ImageDimensionsUnknown, TileResolutionFailure
from cosmos_viewer.tile_source import TilePyramid, load_tile_source
from cosmos_viewer.viewport_mapper import (
    ImageDimensions,
    Point,
    ViewportState,
    home_state,
    image_to_viewport_point,
    pixel_from_viewport_point,
    viewport_point_from_pixel,
    viewport_point_to_image,
)

_LOGGER = logging.getLogger("Cosmos.Viewer.Engine")

OPEN = "open"
OPEN_FAILED = "open-failed"
ANIMATION = "animation"
ANIMATION_FINISH = "animation-finish"
CANVAS_CLICK = "canvas-click"
RESIZE = "resize"

TileLoader = Callable[[str, Optional[Tuple[int, int]]], TilePyramid]


@dataclass
class ViewerEvent:
    name: str
    position: Optional[Point] = None
    source: Optional[str] = None
    message: Optional[str] = None
    prevent_default_action: bool = False
    extra: Dict[str, object] = field(default_factory=dict)


EventHandler = Callable[[ViewerEvent], None]


class ViewerLike(Protocol):
    pyramid: Optional[TilePyramid]

    def add_handler(self, name: str, handler: EventHandler) -> None: ...
    def remove_handler(self, name: str, handler: EventHandler) -> None: ...
    def open(self, reference: str, *, image_size: Optional[Tuple[int, int]] = None) -> bool: ...
    def viewport_state(self) -> Optional[ViewportState]: ...
    def image_dimensions(self) -> Optional[ImageDimensions]: ...
    def set_mouse_navigation_enabled(self, enabled: bool) -> None: ...


class HeadlessViewer:
    """In-process viewport with the same event contract as the browser engine."""

    def __init__(
        self,
        *,
        container_size: Tuple[float, float] = (1024.0, 768.0),
        loader: Optional[TileLoader] = None,
        max_zoom_pixel_ratio: float = 3.0,
        min_zoom: float = 0.25,
        zoom_per_click: float = 2.0,
        zoom_per_scroll: float = 1.2,
    ) -> None:
        self._container = (float(container_size[0]), float(container_size[1]))
        self._loader = loader or self._load_shared
        self._http: Optional[requests.Session] = None
        self._max_zoom_pixel_ratio = max_zoom_pixel_ratio
        self._min_zoom = min_zoom
        self._zoom_per_click = zoom_per_click
        self._zoom_per_scroll = zoom_per_scroll
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._state: Optional[ViewportState] = None
        self._mouse_navigation = True
        self.pyramid: Optional[TilePyramid] = None
        self.source_reference: Optional[str] = None

    # Events --------------------------------------------------------------

    def add_handler(self, name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(name, []).append(handler)

    def remove_handler(self, name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def raise_event(self, event: ViewerEvent) -> ViewerEvent:
        for handler in list(self._handlers.get(event.name, ())):
            try:
                handler(event)
            except Exception:
                _LOGGER.exception("Handler for %s failed", event.name)
        return event

    # Lifecycle -----------------------------------------------------------

    def open(self, reference: str, *, image_size: Optional[Tuple[int, int]] = None) -> bool:
        try:
            pyramid = self._loader(reference, image_size)
        except TileResolutionFailure as exc:
            _LOGGER.warning("Open failed for %s: %s", reference, exc.reason)
            self.raise_event(ViewerEvent(OPEN_FAILED, source=reference, message=str(exc)))
            return False
        self.pyramid = pyramid
        self.source_reference = reference
        dims = pyramid.dimensions
        width, height = self._container
        if dims is not None:
            self._state = home_state(dims, width, height)
        else:
            self._state = ViewportState(1.0, 0.5, 0.5, 0.0, width, height)
        self.raise_event(ViewerEvent(OPEN, source=reference))
        return True

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def _load_shared(self, reference: str, image_size: Optional[Tuple[int, int]]) -> TilePyramid:
        if self._http is None:
            self._http = requests.Session()
        return load_tile_source(reference, session=self._http, image_size=image_size)

    # Capability surface --------------------------------------------------

    def viewport_state(self) -> Optional[ViewportState]:
        return self._state

    def image_dimensions(self) -> Optional[ImageDimensions]:
        if self.pyramid is None:
            return None
        return self.pyramid.dimensions

    @property
    def container_size(self) -> Tuple[float, float]:
        return self._container

    @property
    def mouse_navigation_enabled(self) -> bool:
        return self._mouse_navigation

    def set_mouse_navigation_enabled(self, enabled: bool) -> None:
        self._mouse_navigation = bool(enabled)

    def viewport_to_image(self, point: Point) -> Point:
        return viewport_point_to_image(point[0], point[1], self._require_dims())

    def image_to_viewport(self, point: Point) -> Point:
        return image_to_viewport_point(point[0], point[1], self._require_dims())

    def pixel_from_viewport_point(self, point: Point) -> Point:
        return pixel_from_viewport_point(point[0], point[1], self._require_state())

    def viewport_point_from_pixel(self, point: Point) -> Point:
        return viewport_point_from_pixel(point[0], point[1], self._require_state())

    # Navigation ----------------------------------------------------------

    def zoom_by(self, factor: float, ref_point: Optional[Point] = None) -> None:
        state = self._require_state()
        if factor <= 0:
            raise ValueError("zoom factor must be positive")
        ref_x, ref_y = ref_point if ref_point is not None else (state.center_x, state.center_y)
        self._set_state(
            state.with_changes(
                zoom=state.zoom * factor,
                center_x=ref_x + (state.center_x - ref_x) / factor,
                center_y=ref_y + (state.center_y - ref_y) / factor,
            )
        )

    def pan_by(self, dx: float, dy: float) -> None:
        state = self._require_state()
        self._set_state(state.with_changes(center_x=state.center_x + dx, center_y=state.center_y + dy))

    def pan_to(self, center_x: float, center_y: float) -> None:
        self._set_state(self._require_state().with_changes(center_x=center_x, center_y=center_y))

    def set_rotation(self, degrees: float) -> None:
        self._set_state(self._require_state().with_changes(rotation=float(degrees) % 360.0))

    def resize(self, width: float, height: float) -> None:
        self._container = (float(width), float(height))
        if self._state is not None:
            self._state = self._state.with_changes(container_width=float(width), container_height=float(height))
        self.raise_event(ViewerEvent(RESIZE, extra={"width": float(width), "height": float(height)}))
        self._emit_animation()

    def apply_constraints(self) -> None:
        state = self._require_state()
        max_zoom = self._max_zoom()
        zoom = min(max(state.zoom, self._min_zoom), max_zoom) if max_zoom else max(state.zoom, self._min_zoom)
        if zoom != state.zoom:
            self._set_state(state.with_changes(zoom=zoom))

    # Pointer input -------------------------------------------------------

    def click(self, screen_x: float, screen_y: float) -> ViewerEvent:
        """Deliver a quick click: ``canvas-click`` first, then click-to-zoom unless prevented."""

        event = self.raise_event(ViewerEvent(CANVAS_CLICK, position=(float(screen_x), float(screen_y))))
        if self._state is None or event.prevent_default_action or not self._mouse_navigation:
            return event
        self.zoom_by(self._zoom_per_click, self.viewport_point_from_pixel((screen_x, screen_y)))
        self.apply_constraints()
        return event

    def drag(self, delta_x: float, delta_y: float) -> None:
        if self._state is None or not self._mouse_navigation:
            return
        state = self._state
        origin = viewport_point_from_pixel(state.container_width / 2.0, state.container_height / 2.0, state)
        moved = viewport_point_from_pixel(
            state.container_width / 2.0 + delta_x, state.container_height / 2.0 + delta_y, state
        )
        self.pan_by(origin[0] - moved[0], origin[1] - moved[1])

    def scroll(self, screen_x: float, screen_y: float, clicks: int) -> None:
        if self._state is None or not self._mouse_navigation or clicks == 0:
            return
        self.zoom_by(self._zoom_per_scroll ** clicks, self.viewport_point_from_pixel((screen_x, screen_y)))
        self.apply_constraints()

    # Internal helpers ----------------------------------------------------

    def _max_zoom(self) -> Optional[float]:
        dims = self.image_dimensions()
        if dims is None:
            return None
        return dims.width * self._max_zoom_pixel_ratio / self._container[0]

    def _set_state(self, state: ViewportState) -> None:
        self._state = state
        self._emit_animation()

    def _emit_animation(self) -> None:
        self.raise_event(ViewerEvent(ANIMATION))
        self.raise_event(ViewerEvent(ANIMATION_FINISH))

    def _require_state(self) -> ViewportState:
        if self._state is None:
            raise RuntimeError("no image is open")
        return self._state

    def _require_dims(self) -> ImageDimensions:
        dims = self.image_dimensions()
        if dims is None:
            raise ImageDimensionsUnknown("native image dimensions are not known yet")
        return dims
