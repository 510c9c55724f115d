"""Projects the active dataset's pins onto the viewer and handles pin placement."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Hashable, Optional, Protocol, Set, Tuple

from annotation_model import POINT_KIND, PointAnnotation, new_annotation_id
from cosmos_errors import CosmosError, ImageDimensionsUnknown, ValidationError
from cosmos_viewer.annotation_session import AnnotationSession
from cosmos_viewer.datasets import Dataset
from cosmos_viewer.viewer import (
    ANIMATION,
    ANIMATION_FINISH,
    CANVAS_CLICK,
    OPEN,
    OPEN_FAILED,
    RESIZE,
    ViewerEvent,
    ViewerLike,
)
from cosmos_viewer.viewport_mapper import (
    fraction_in_bounds,
    image_fraction_to_viewport_pixel,
    viewport_pixel_to_image_fraction,
)

_LOGGER = logging.getLogger("Cosmos.Viewer.OverlayRenderer")

TILE_FALLBACK_WARNING = "Tile source failed to load. Switched to fallback."
FALLBACK_FAILED_WARNING = "Tile source failed to load and the fallback is unavailable."
OUT_OF_BOUNDS_WARNING = "Click inside the image to place a pin."
DIMENSIONS_UNKNOWN_WARNING = "Image size is not known yet; try again once it has loaded."

_VIEW_EVENTS = (ANIMATION, ANIMATION_FINISH, RESIZE)


class OverlayState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


class MarkerSurface(Protocol):
    """Host-side marker layer; handles are opaque to the renderer."""

    def create_marker(self, annotation_id: str, x: float, y: float, label: str) -> Hashable: ...
    def move_marker(self, handle: Hashable, x: float, y: float) -> None: ...
    def update_marker(self, handle: Hashable, label: str) -> None: ...
    def release_marker(self, handle: Hashable) -> None: ...


@dataclass
class _Marker:
    handle: Hashable
    x: float
    y: float
    label: str


WarningCallback = Callable[[Optional[str]], None]


class OverlayRenderer:
    """Keeps one marker per point annotation in sync with the viewport.

    Screen positions are recomputed from stored fractions on every view change
    and never adjusted incrementally. Notes have no image anchor and are not
    drawn.
    """

    def __init__(
        self,
        viewer: ViewerLike,
        session: AnnotationSession,
        surface: MarkerSurface,
        *,
        fallback_tile_source: str,
        on_warning: Optional[WarningCallback] = None,
    ) -> None:
        self._viewer = viewer
        self._session = session
        self._surface = surface
        self._fallback = fallback_tile_source
        self._on_warning = on_warning
        self._state = OverlayState.UNLOADED
        self._dataset: Optional[Dataset] = None
        self._markers: Dict[str, _Marker] = {}
        self._placement_mode = False
        self._placement_label = ""
        self._opening_fallback = False
        self._warning: Optional[str] = None
        self._attached = False
        self._handlers = {
            OPEN: self._handle_open,
            OPEN_FAILED: self._handle_open_failed,
            CANVAS_CLICK: self._handle_canvas_click,
        }
        for name in _VIEW_EVENTS:
            self._handlers[name] = self._handle_view_changed

    # Wiring --------------------------------------------------------------

    def attach(self) -> None:
        if self._attached:
            return
        for name, handler in self._handlers.items():
            self._viewer.add_handler(name, handler)
        self._session.add_listener(self._handle_session_changed)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        for name, handler in self._handlers.items():
            self._viewer.remove_handler(name, handler)
        self._session.remove_listener(self._handle_session_changed)
        self._release_all()
        self._attached = False

    # State ---------------------------------------------------------------

    @property
    def state(self) -> OverlayState:
        return self._state

    @property
    def dataset(self) -> Optional[Dataset]:
        return self._dataset

    @property
    def warning(self) -> Optional[str]:
        return self._warning

    @property
    def placement_mode(self) -> bool:
        return self._placement_mode

    def marker_positions(self) -> Dict[str, Tuple[float, float]]:
        return {annotation_id: (marker.x, marker.y) for annotation_id, marker in self._markers.items()}

    def marker_labels(self) -> Dict[str, str]:
        return {annotation_id: marker.label for annotation_id, marker in self._markers.items()}

    # Commands ------------------------------------------------------------

    def show_dataset(self, dataset: Dataset) -> None:
        """Discard current markers, open ``dataset`` and request its annotations."""

        _LOGGER.debug("Showing dataset %s", dataset.id)
        self._release_all()
        self._dataset = dataset
        self._state = OverlayState.LOADING
        self._opening_fallback = False
        self._viewer.open(dataset.source_reference, image_size=dataset.image_size)
        self._session.select_dataset(dataset.id)

    def set_placement_mode(self, enabled: bool, label: str = "") -> None:
        self._placement_mode = bool(enabled)
        self._placement_label = label if enabled else ""
        self._viewer.set_mouse_navigation_enabled(not self._placement_mode)
        _LOGGER.debug("Placement mode %s", "on" if self._placement_mode else "off")

    def place_at(self, screen_x: float, screen_y: float, label: Optional[str] = None) -> Optional[PointAnnotation]:
        """Create a pin under the given container pixel.

        Returns ``None`` and sets a warning when the click falls outside
        the image or the native image size is not known yet.
        """

        state = self._viewer.viewport_state()
        if self._dataset is None or state is None:
            return None
        try:
            x_fraction, y_fraction = viewport_pixel_to_image_fraction(
                screen_x, screen_y, state, self._viewer.image_dimensions()
            )
        except ImageDimensionsUnknown:
            _LOGGER.info("Deferring placement at (%.1f, %.1f): image size unknown", screen_x, screen_y)
            self._set_warning(DIMENSIONS_UNKNOWN_WARNING)
            return None
        if not fraction_in_bounds(x_fraction, y_fraction):
            _LOGGER.info("Rejected placement outside image at (%.4f, %.4f)", x_fraction, y_fraction)
            self._set_warning(OUT_OF_BOUNDS_WARNING)
            return None
        pin = PointAnnotation(
            id=new_annotation_id(POINT_KIND),
            x_fraction=x_fraction,
            y_fraction=y_fraction,
            label=self._placement_label if label is None else label,
        )
        try:
            created = self._session.create(pin)
        except ValidationError as exc:
            self._set_warning(str(exc))
            return None
        assert isinstance(created, PointAnnotation)
        return created

    def render(self) -> None:
        """Reconcile markers against the cached annotations for the current view."""

        if self._state is not OverlayState.READY:
            return
        state = self._viewer.viewport_state()
        dims = self._viewer.image_dimensions()
        if state is None or dims is None:
            self._release_all()
            return
        seen: Set[str] = set()
        for annotation in self._session.annotations:
            if not isinstance(annotation, PointAnnotation):
                continue
            x, y = image_fraction_to_viewport_pixel(annotation.x_fraction, annotation.y_fraction, state, dims)
            seen.add(annotation.id)
            marker = self._markers.get(annotation.id)
            if marker is None:
                handle = self._surface.create_marker(annotation.id, x, y, annotation.label)
                self._markers[annotation.id] = _Marker(handle, x, y, annotation.label)
                continue
            if (marker.x, marker.y) != (x, y):
                self._surface.move_marker(marker.handle, x, y)
                marker.x, marker.y = x, y
            if marker.label != annotation.label:
                self._surface.update_marker(marker.handle, annotation.label)
                marker.label = annotation.label
        for annotation_id in [key for key in self._markers if key not in seen]:
            self._surface.release_marker(self._markers.pop(annotation_id).handle)

    def report_error(self, error: CosmosError) -> None:
        self._set_warning(str(error))

    def clear_warning(self) -> None:
        self._set_warning(None)

    # Event handlers ------------------------------------------------------

    def _handle_open(self, _event: ViewerEvent) -> None:
        if self._opening_fallback:
            self._opening_fallback = False
        else:
            self._set_warning(None)
        self.render()

    def _handle_open_failed(self, event: ViewerEvent) -> None:
        if self._opening_fallback or event.source == self._fallback:
            _LOGGER.error("Fallback tile source %s failed to open", self._fallback)
            self._opening_fallback = False
            self._set_warning(FALLBACK_FAILED_WARNING)
            return
        _LOGGER.warning("Tile source %s failed (%s); opening fallback", event.source, event.message)
        self._set_warning(TILE_FALLBACK_WARNING)
        self._opening_fallback = True
        self._viewer.open(self._fallback)

    def _handle_view_changed(self, _event: ViewerEvent) -> None:
        self.render()

    def _handle_canvas_click(self, event: ViewerEvent) -> None:
        if not self._placement_mode or event.position is None:
            return
        event.prevent_default_action = True
        self.place_at(event.position[0], event.position[1])

    def _handle_session_changed(self, session: AnnotationSession) -> None:
        if self._dataset is None or session.dataset_id != self._dataset.id:
            return
        if session.is_loaded:
            self._state = OverlayState.READY
            self.render()
        else:
            self._state = OverlayState.LOADING

    # Internal helpers ----------------------------------------------------

    def _release_all(self) -> None:
        for marker in self._markers.values():
            self._surface.release_marker(marker.handle)
        self._markers.clear()

    def _set_warning(self, message: Optional[str]) -> None:
        if message == self._warning:
            return
        self._warning = message
        if self._on_warning is not None:
            self._on_warning(message)
