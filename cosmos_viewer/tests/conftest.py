from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from cosmos_errors import TileResolutionFailure
from cosmos_viewer.tile_source import DeepZoomTileSource, SingleImageTileSource, TilePyramid


def pytest_runtest_setup(item):
    if item.get_closest_marker("pyqt_required"):
        if not os.getenv("PYQT_TESTS"):
            pytest.skip("PYQT_TESTS not set; skipping PyQt-dependent test")


@pytest.fixture
def qt_app():
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    from PyQt6.QtWidgets import QApplication

    app = QApplication.instance() or QApplication([])
    yield app


class FakeLoader:
    """Opens every ``.dzi`` reference as a fixed-size pyramid without any network access."""

    def __init__(self, width: int = 4000, height: int = 3000) -> None:
        self.width = width
        self.height = height
        self.failing: Set[str] = set()
        self.opened: List[str] = []

    def __call__(self, reference: str, image_size: Optional[Tuple[int, int]]) -> TilePyramid:
        self.opened.append(reference)
        if reference in self.failing:
            raise TileResolutionFailure(reference, "HTTP 404")
        if reference.endswith(".dzi"):
            return TilePyramid(DeepZoomTileSource(reference, self.width, self.height))
        width, height = image_size if image_size else (None, None)
        return TilePyramid(SingleImageTileSource(reference, width, height))


class ManualDispatcher:
    """Holds submitted work until the test decides which job completes next."""

    def __init__(self) -> None:
        self.jobs: List[Tuple[Callable[[], object], Callable[[Any, Optional[BaseException]], None]]] = []

    def submit(self, work, on_done) -> None:
        self.jobs.append((work, on_done))

    def run(self, index: int = 0) -> None:
        work, on_done = self.jobs.pop(index)
        try:
            result = work()
        except Exception as exc:
            on_done(None, exc)
            return
        on_done(result, None)

    def run_all(self) -> None:
        while self.jobs:
            self.run(0)


class RecordingSurface:
    def __init__(self) -> None:
        self.markers: Dict[int, Dict[str, Any]] = {}
        self.released: List[int] = []
        self.moves = 0
        self._next = 0

    def create_marker(self, annotation_id: str, x: float, y: float, label: str) -> int:
        self._next += 1
        self.markers[self._next] = {"id": annotation_id, "x": x, "y": y, "label": label}
        return self._next

    def move_marker(self, handle: int, x: float, y: float) -> None:
        self.moves += 1
        self.markers[handle].update(x=x, y=y)

    def update_marker(self, handle: int, label: str) -> None:
        self.markers[handle]["label"] = label

    def release_marker(self, handle: int) -> None:
        self.released.append(handle)
        del self.markers[handle]

    def by_id(self) -> Dict[str, Dict[str, Any]]:
        return {marker["id"]: marker for marker in self.markers.values()}


@pytest.fixture
def fake_loader() -> FakeLoader:
    return FakeLoader()


@pytest.fixture
def manual_dispatcher() -> ManualDispatcher:
    return ManualDispatcher()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()
