"""Viewport renderer: pan/zoom state, tile cache and frame composition."""

from __future__ import annotations

import logging
import math
from concurrent.futures import Future

from PySide6.QtCore import QObject, QPoint, Qt, Property, Signal, Slot
from PySide6.QtGui import QImage, QPainter

from gigaview.config import TILE_SIZE

from . import viewport
from .store import TileStore
from .types import LevelInfo, Point, Size, TileCoord
from .viewport import CursorAction, PanDirection, ViewportState

logger = logging.getLogger(__name__)


class _TileFetchSignals(QObject):
    """Carries fetch completions from pool threads to the renderer's thread."""

    fetched = Signal(object, object, int)  # coord, png bytes, generation
    failed = Signal(object, str, int)  # coord, error message, generation


class ViewportRenderer(QObject):
    """Composes the visible tiles of a TileStore into a frame image.

    The renderer is Uninitialized until it has both a store and a nonzero
    viewport size, then Ready. Resizing or zooming out fully re-fits the
    view. All state lives on the renderer's thread: tile fetches complete on
    pool threads and are delivered back through a queued connection.

    A completion is always cached. It is drawn only if the tile is visible
    under the state current at delivery time, and it is dropped entirely if
    the store was replaced after the fetch started.
    """

    frameChanged = Signal()
    stateChanged = Signal()
    tileFetchFailed = Signal(int, int, int, str)  # level, row, col, message

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._store: TileStore | None = None
        self._levels: tuple[LevelInfo, ...] = ()
        self._viewport_size = Size(0.0, 0.0)
        self._display_area: Size | None = None
        self._state: ViewportState | None = None
        self._frame = QImage()

        self._cache: dict[TileCoord, QImage] = {}
        self._pending: set[TileCoord] = set()
        self._generation = 0

        self._signals = _TileFetchSignals()
        self._signals.fetched.connect(self._on_tile_fetched, Qt.ConnectionType.QueuedConnection)
        self._signals.failed.connect(self._on_tile_failed, Qt.ConnectionType.QueuedConnection)

    # -- Store and geometry ---------------------------------------------------

    @property
    def store(self) -> TileStore | None:
        return self._store

    @property
    def levels(self) -> tuple[LevelInfo, ...]:
        return self._levels

    @property
    def state(self) -> ViewportState | None:
        return self._state

    @property
    def viewportSize(self) -> Size:
        return self._viewport_size

    def setStore(self, store: TileStore | None) -> None:
        """Attach a tile store, discarding the cache and re-fitting the view.

        The renderer does not take ownership; closing the previous store is
        up to the caller.
        """
        self._store = store
        self._levels = tuple(store.levels) if store is not None else ()
        self._cache.clear()
        self._pending.clear()
        self._generation += 1
        logger.debug("Attached store %r (generation %d)", store, self._generation)
        if self._display_area is not None:
            self._viewport_size = self._fitted_size(self._display_area)
        self._reset()

    @Slot(float, float)
    def setViewportSize(self, width: float, height: float) -> None:
        """Set the frame size directly and re-fit the view."""
        self._display_area = None
        self._viewport_size = Size(max(0.0, float(width)), max(0.0, float(height)))
        self._reset()

    @Slot(float, float)
    def setDisplayArea(self, width: float, height: float) -> None:
        """Fit the frame inside a display area, keeping the image aspect ratio.

        The area is remembered, so a store attached later is fitted to it
        before its first frame.
        """
        self._display_area = Size(max(0.0, float(width)), max(0.0, float(height)))
        self._viewport_size = self._fitted_size(self._display_area)
        self._reset()

    def _fitted_size(self, area: Size) -> Size:
        if self._store is None:
            return Size(0.0, 0.0)
        return viewport.fit_viewport_size(area, self._store.original_dimensions)

    @Slot()
    def zoomOutFully(self) -> None:
        """Return to the fitted view."""
        self._reset()

    def _reset(self) -> None:
        self._state = None
        if self._store is not None:
            self._state = viewport.initial_state(self._levels, self._viewport_size)
        self._allocate_frame()
        self.stateChanged.emit()
        self.render()

    def _allocate_frame(self) -> None:
        if self._state is None:
            self._frame = QImage()
            return
        width = math.ceil(self._viewport_size.width)
        height = math.ceil(self._viewport_size.height)
        if self._frame.isNull() or (self._frame.width(), self._frame.height()) != (width, height):
            self._frame = QImage(width, height, QImage.Format.Format_ARGB32_Premultiplied)
            self._frame.fill(Qt.GlobalColor.transparent)

    # -- Transitions ----------------------------------------------------------

    def _commit(self, state: ViewportState) -> bool:
        if state == self._state:
            return False
        self._state = state
        self.stateChanged.emit()
        self.render()
        return True

    @Slot(int, float, float, result=bool)
    def zoomTo(self, target_index: int, x: float, y: float) -> bool:
        """Zoom to a level keeping screen point (x, y) stationary.

        Returns:
            True if the view changed
        """
        if self._state is None:
            return False
        return self._commit(
            viewport.zoom_state(self._state, self._levels, target_index, Point(x, y))
        )

    def _centre(self) -> Point:
        return Point(self._viewport_size.width / 2, self._viewport_size.height / 2)

    @Slot(result=bool)
    def zoomIn(self) -> bool:
        """Zoom in one level about the viewport centre."""
        if self._state is None or self._state.zoom_index >= len(self._levels) - 1:
            return False
        centre = self._centre()
        return self.zoomTo(self._state.zoom_index + 1, centre.x, centre.y)

    @Slot(result=bool)
    def zoomOut(self) -> bool:
        """Zoom out one level about the viewport centre."""
        if self._state is None or self._state.zoom_index <= self._state.min_zoom_index:
            return False
        centre = self._centre()
        return self.zoomTo(self._state.zoom_index - 1, centre.x, centre.y)

    @Slot(float, float, bool, result=bool)
    def click(self, x: float, y: float, modified: bool = False) -> bool:
        """Plain click zooms in about (x, y); a modified click zooms out."""
        action = self.cursorAction(modified)
        if action == CursorAction.ZOOM_IN.value:
            return self.zoomTo(self._state.zoom_index + 1, x, y)
        if action == CursorAction.ZOOM_OUT.value:
            return self.zoomTo(self._state.zoom_index - 1, x, y)
        return False

    @Slot(str, result=bool)
    def panBy(self, direction: str) -> bool:
        """Pan a quarter of the viewport.

        Returns:
            False if the axis cannot pan (the world fits the viewport on it)
        """
        if self._state is None:
            return False
        state = viewport.pan_state(self._state, self._levels, PanDirection(direction))
        if state is None:
            return False
        self._commit(state)
        return True

    # -- Queries --------------------------------------------------------------

    @Slot(str, result=bool)
    def canPan(self, direction: str) -> bool:
        if self._state is None:
            return False
        return viewport.can_pan(self._state, self._levels, PanDirection(direction))

    @Slot(bool, result=str)
    def cursorAction(self, modified: bool) -> str:
        if self._state is None:
            return CursorAction.NONE.value
        return viewport.cursor_action(self._state, len(self._levels), modified).value

    def displayedResolution(self) -> tuple[int, int]:
        """Source pixels currently on screen as (width, height)."""
        if self._state is None:
            return 0, 0
        return viewport.displayed_resolution(self._state, self._levels)

    @Property(bool, notify=stateChanged)
    def isReady(self) -> bool:
        return self._state is not None

    @Property(int, notify=stateChanged)
    def zoomIndex(self) -> int:
        return self._state.zoom_index if self._state else 0

    @Property(int, notify=stateChanged)
    def minZoomIndex(self) -> int:
        return self._state.min_zoom_index if self._state else 0

    @Property(int, notify=stateChanged)
    def numLevels(self) -> int:
        return len(self._levels)

    @Property(int, notify=stateChanged)
    def displayedZoom(self) -> int:
        return viewport.displayed_zoom(self._state) if self._state else 1

    @Property(bool, notify=stateChanged)
    def showPanControls(self) -> bool:
        return self._state is not None and viewport.displayed_zoom(self._state) > 1

    def cachedTileCount(self) -> int:
        return len(self._cache)

    def frame(self) -> QImage:
        """The composed frame; null while Uninitialized."""
        return self._frame

    # -- Composition ----------------------------------------------------------

    def render(self) -> None:
        """Recompose the frame from cached tiles and request missing ones."""
        state = self._state
        if state is None or self._frame.isNull():
            self.frameChanged.emit()
            return

        self._frame.fill(Qt.GlobalColor.transparent)
        info = self._levels[state.zoom_index]
        rows, cols = viewport.visible_tile_range(state.pan, state.viewport_size, info)

        missing = []
        painter = QPainter(self._frame)
        try:
            for row in rows:
                for col in cols:
                    coord = TileCoord(state.zoom_index, row, col)
                    image = self._cache.get(coord)
                    if image is not None:
                        self._draw_tile(painter, state, coord, image)
                    elif coord not in self._pending:
                        missing.append(coord)
        finally:
            painter.end()

        for coord in missing:
            self._request(coord)
        self.frameChanged.emit()

    def _draw_tile(
        self, painter: QPainter, state: ViewportState, coord: TileCoord, image: QImage
    ) -> None:
        # One floor for the whole frame keeps neighbouring tiles edge to edge
        origin_x = math.floor(-state.pan.x)
        origin_y = math.floor(-state.pan.y)
        painter.drawImage(
            QPoint(coord.col * TILE_SIZE + origin_x, coord.row * TILE_SIZE + origin_y), image
        )

    def _request(self, coord: TileCoord) -> None:
        store = self._store
        generation = self._generation
        self._pending.add(coord)
        try:
            future = store.get(*coord)
        except RuntimeError as e:
            self._pending.discard(coord)
            self._report_failure(coord, f"could not request tile: {e}")
            return

        signals = self._signals

        def _done(f: Future) -> None:
            if f.cancelled():
                signals.failed.emit(coord, "fetch cancelled", generation)
                return
            error = f.exception()
            if error is not None:
                signals.failed.emit(coord, str(error) or type(error).__name__, generation)
            else:
                signals.fetched.emit(coord, f.result(), generation)

        future.add_done_callback(_done)

    @Slot(object, object, int)
    def _on_tile_fetched(self, coord: TileCoord, data: bytes, generation: int) -> None:
        if generation != self._generation:
            return
        self._pending.discard(coord)

        image = QImage.fromData(data, "PNG")
        if image.isNull():
            self._report_failure(coord, "tile data is not a decodable PNG")
            return
        if image.format() != QImage.Format.Format_ARGB32_Premultiplied:
            image = image.convertToFormat(QImage.Format.Format_ARGB32_Premultiplied)
        self._cache[coord] = image

        state = self._state
        if state is None or self._frame.isNull():
            return
        if not viewport.is_tile_visible(state, self._levels, *coord):
            return

        painter = QPainter(self._frame)
        try:
            self._draw_tile(painter, state, coord, image)
        finally:
            painter.end()
        self.frameChanged.emit()

    @Slot(object, str, int)
    def _on_tile_failed(self, coord: TileCoord, message: str, generation: int) -> None:
        if generation != self._generation:
            return
        self._pending.discard(coord)
        self._report_failure(coord, message)

    def _report_failure(self, coord: TileCoord, message: str) -> None:
        logger.warning("Tile fetch failed for %s: %s", tuple(coord), message)
        self.tileFetchFailed.emit(coord.level, coord.row, coord.col, message)
