"""Top-level controller tying the viewer, annotation cache and overlay together."""
from __future__ import annotations

import dataclasses
import logging
from typing import Dict, Iterable, Optional, Tuple

from annotation_model import NOTE_KIND, NoteAnnotation, PointAnnotation, new_annotation_id
from cosmos_errors import CosmosError, ValidationError
from cosmos_viewer.annotation_client import AnnotationClient
from cosmos_viewer.annotation_session import AnnotationBackend, AnnotationSession, Dispatcher
from cosmos_viewer.client_config import ViewerSettings
from cosmos_viewer.datasets import SAMPLE_DATASETS, Dataset
from cosmos_viewer.overlay_renderer import MarkerSurface, OverlayRenderer, WarningCallback
from cosmos_viewer.tile_interceptor import TileSourceInterceptor
from cosmos_viewer.viewer import OPEN, HeadlessViewer, ViewerEvent

_LOGGER = logging.getLogger("Cosmos.Viewer.Explorer")


class ExplorerController:
    def __init__(
        self,
        viewer: HeadlessViewer,
        surface: MarkerSurface,
        settings: ViewerSettings,
        *,
        backend: Optional[AnnotationBackend] = None,
        dispatcher: Optional[Dispatcher] = None,
        datasets: Iterable[Dataset] = SAMPLE_DATASETS,
        on_warning: Optional[WarningCallback] = None,
    ) -> None:
        self._viewer = viewer
        self._settings = settings
        self._datasets: Dict[str, Dataset] = {dataset.id: dataset for dataset in datasets}
        self._session = AnnotationSession(
            backend if backend is not None else AnnotationClient(settings),
            dispatcher,
            max_write_attempts=settings.max_write_attempts,
            retry_backoff=settings.retry_backoff,
            on_error=self._report_error,
        )
        self._renderer = OverlayRenderer(
            viewer,
            self._session,
            surface,
            fallback_tile_source=settings.fallback_tile_source,
            on_warning=on_warning,
        )
        self._interceptor = TileSourceInterceptor(settings.enhancement)
        self._enhance = False
        self._viewer.add_handler(OPEN, self._apply_enhancement)
        self._renderer.attach()

    # Accessors -----------------------------------------------------------

    @property
    def session(self) -> AnnotationSession:
        return self._session

    @property
    def renderer(self) -> OverlayRenderer:
        return self._renderer

    @property
    def enhancement_enabled(self) -> bool:
        return self._enhance

    @property
    def datasets(self) -> Tuple[Dataset, ...]:
        return tuple(self._datasets.values())

    @property
    def notes(self) -> Tuple[NoteAnnotation, ...]:
        return tuple(entry for entry in self._session.annotations if isinstance(entry, NoteAnnotation))

    @property
    def pins(self) -> Tuple[PointAnnotation, ...]:
        return tuple(entry for entry in self._session.annotations if isinstance(entry, PointAnnotation))

    def add_datasets(self, datasets: Iterable[Dataset]) -> None:
        for dataset in datasets:
            self._datasets.setdefault(dataset.id, dataset)

    # Navigation ----------------------------------------------------------

    def select_dataset(self, dataset_id: str) -> Dataset:
        dataset = self._datasets.get(dataset_id)
        if dataset is None:
            raise KeyError(f"Unknown dataset {dataset_id!r}")
        _LOGGER.info("Selecting dataset %s", dataset_id)
        self._renderer.show_dataset(dataset)
        return dataset

    def zoom_in(self) -> None:
        self._zoom(self._settings.zoom_step)

    def zoom_out(self) -> None:
        self._zoom(self._settings.zoom_out_step)

    def set_enhancement(self, enabled: bool) -> None:
        """Toggle tile enhancement; stays in effect for pyramids opened later."""

        self._enhance = bool(enabled)
        if self._viewer.pyramid is not None:
            self._interceptor.apply(self._viewer.pyramid, self._enhance)
        _LOGGER.info("Tile enhancement %s", "enabled" if self._enhance else "disabled")

    # Annotations ---------------------------------------------------------

    def set_placement_mode(self, enabled: bool, label: str = "") -> None:
        self._renderer.set_placement_mode(enabled, label)

    def add_note(self, text: str) -> NoteAnnotation:
        note = self._session.create(NoteAnnotation(id=new_annotation_id(NOTE_KIND), text=text))
        assert isinstance(note, NoteAnnotation)
        return note

    def delete_annotation(self, annotation_id: str) -> None:
        self._session.delete(annotation_id)

    def rename_pin(self, annotation_id: str, label: str) -> PointAnnotation:
        existing = self._session.find(annotation_id)
        if not isinstance(existing, PointAnnotation):
            raise ValidationError(f"No pin with id {annotation_id!r}")
        renamed = self._session.update(dataclasses.replace(existing, label=label))
        assert isinstance(renamed, PointAnnotation)
        return renamed

    def close(self) -> None:
        self._renderer.detach()
        self._viewer.remove_handler(OPEN, self._apply_enhancement)

    # Internal helpers ----------------------------------------------------

    def _zoom(self, factor: float) -> None:
        if self._viewer.viewport_state() is None:
            return
        self._viewer.zoom_by(factor)
        self._viewer.apply_constraints()

    def _apply_enhancement(self, _event: ViewerEvent) -> None:
        if self._viewer.pyramid is not None:
            self._interceptor.apply(self._viewer.pyramid, self._enhance)

    def _report_error(self, error: CosmosError) -> None:
        self._renderer.report_error(error)
