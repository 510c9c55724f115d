"""PyQt6 marker layer and main-thread completion bridge."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtWidgets import QLabel, QWidget

_LOGGER = logging.getLogger("Cosmos.Viewer.QtMarkers")

PIN_GLYPH = "●"
_MARKER_STYLE = "color: #f472d0; background: rgba(11, 11, 18, 160); border-radius: 4px; padding: 1px 4px;"


class QtMarkerSurface:
    """One transparent ``QLabel`` per pin, parented to the viewer widget.

    The label's top-left sits at the pin position shifted by half the glyph so
    the dot itself lands on the anchor.
    """

    def __init__(self, parent: QWidget) -> None:
        self._parent = parent
        self._labels: Dict[int, QLabel] = {}
        self._next_handle = 1

    def create_marker(self, annotation_id: str, x: float, y: float, label: str) -> int:
        widget = QLabel(self._parent)
        widget.setObjectName(f"pin:{annotation_id}")
        widget.setStyleSheet(_MARKER_STYLE)
        widget.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents, True)
        widget.setText(self._format(label))
        widget.adjustSize()
        handle = self._next_handle
        self._next_handle += 1
        self._labels[handle] = widget
        self._place(widget, x, y)
        widget.show()
        return handle

    def move_marker(self, handle: int, x: float, y: float) -> None:
        widget = self._labels.get(handle)
        if widget is not None:
            self._place(widget, x, y)

    def update_marker(self, handle: int, label: str) -> None:
        widget = self._labels.get(handle)
        if widget is None:
            return
        widget.setText(self._format(label))
        widget.adjustSize()

    def release_marker(self, handle: int) -> None:
        widget = self._labels.pop(handle, None)
        if widget is None:
            return
        widget.hide()
        widget.deleteLater()

    def marker_count(self) -> int:
        return len(self._labels)

    def widget_for(self, handle: int) -> Optional[QLabel]:
        return self._labels.get(handle)

    @staticmethod
    def _format(label: str) -> str:
        return f"{PIN_GLYPH} {label}" if label else PIN_GLYPH

    @staticmethod
    def _place(widget: QLabel, x: float, y: float) -> None:
        offset = widget.height() // 2
        widget.move(int(round(x)) - offset, int(round(y)) - offset)


class QtMainThreadDispatcher(QObject):
    """Deliver callable for ``ThreadedDispatcher`` that hops onto the Qt thread.

    Signals emitted from a worker thread are queued to the receiver's thread,
    so completions run wherever this object lives.
    """

    completion_ready = pyqtSignal(object)

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.completion_ready.connect(self._run, Qt.ConnectionType.QueuedConnection)

    def __call__(self, callback: Callable[[], None]) -> None:
        self.completion_ready.emit(callback)

    def _run(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            _LOGGER.exception("Annotation completion failed on the UI thread")
