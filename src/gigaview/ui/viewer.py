"""Widget that shows a ViewportRenderer frame and turns input into intents."""

from __future__ import annotations

import logging

from PySide6.QtCore import QRectF, Qt
from PySide6.QtGui import QColor, QKeyEvent, QMouseEvent, QPainter, QPaintEvent, QPen
from PySide6.QtWidgets import QSizePolicy, QWidget

from gigaview.core.renderer import ViewportRenderer
from gigaview.core.viewport import CursorAction, PanDirection

logger = logging.getLogger(__name__)

FRAME_BORDER_WIDTH = 4
BACKGROUND_COLOR = QColor(15, 23, 42)
FRAME_COLOR = QColor(0, 0, 0)

_KEY_PAN = {
    Qt.Key.Key_Left: PanDirection.LEFT,
    Qt.Key.Key_Right: PanDirection.RIGHT,
    Qt.Key.Key_Up: PanDirection.UP,
    Qt.Key.Key_Down: PanDirection.DOWN,
}

_CURSORS = {
    CursorAction.ZOOM_IN.value: Qt.CursorShape.CrossCursor,
    CursorAction.ZOOM_OUT.value: Qt.CursorShape.PointingHandCursor,
    CursorAction.NONE.value: Qt.CursorShape.ArrowCursor,
}


class ViewportWidget(QWidget):
    """Paints the renderer's frame centred with a white border.

    Click zooms in about the cursor, shift-click zooms out. Arrow keys pan,
    ``+``/``-`` zoom about the centre and ``0`` zooms out fully.
    """

    def __init__(self, renderer: ViewportRenderer, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._renderer = renderer
        self._shift_down = False

        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setMouseTracking(True)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.setMinimumSize(200, 150)

        renderer.frameChanged.connect(self.update)
        renderer.stateChanged.connect(self._update_cursor)

    @property
    def renderer(self) -> ViewportRenderer:
        return self._renderer

    def frameRect(self) -> QRectF:
        """Where the frame is drawn in widget coordinates."""
        size = self._renderer.viewportSize
        return QRectF(
            (self.width() - size.width) / 2,
            (self.height() - size.height) / 2,
            size.width,
            size.height,
        )

    def refit(self) -> None:
        """Re-fit the renderer to the current widget size."""
        self._renderer.setDisplayArea(self.width(), self.height())

    # -- Events ---------------------------------------------------------------

    def resizeEvent(self, event) -> None:
        super().resizeEvent(event)
        self.refit()

    def paintEvent(self, event: QPaintEvent) -> None:
        painter = QPainter(self)
        try:
            painter.fillRect(self.rect(), BACKGROUND_COLOR)
            if not self._renderer.isReady:
                return

            rect = self.frameRect()
            pen = QPen(Qt.GlobalColor.white, FRAME_BORDER_WIDTH)
            pen.setJoinStyle(Qt.PenJoinStyle.MiterJoin)
            painter.setPen(pen)
            half = FRAME_BORDER_WIDTH / 2
            painter.drawRect(rect.adjusted(-half, -half, half, half))

            painter.fillRect(rect, FRAME_COLOR)
            painter.drawImage(rect.topLeft(), self._renderer.frame())
        finally:
            painter.end()

    def mousePressEvent(self, event: QMouseEvent) -> None:
        if event.button() != Qt.MouseButton.LeftButton:
            super().mousePressEvent(event)
            return

        rect = self.frameRect()
        pos = event.position()
        if not rect.contains(pos):
            return

        local = pos - rect.topLeft()
        modified = bool(event.modifiers() & Qt.KeyboardModifier.ShiftModifier)
        self._renderer.click(local.x(), local.y(), modified)
        event.accept()

    def mouseMoveEvent(self, event: QMouseEvent) -> None:
        self._set_shift(bool(event.modifiers() & Qt.KeyboardModifier.ShiftModifier))
        super().mouseMoveEvent(event)

    def keyPressEvent(self, event: QKeyEvent) -> None:
        key = event.key()
        if key == Qt.Key.Key_Shift:
            self._set_shift(True)
        elif key in _KEY_PAN:
            self._renderer.panBy(_KEY_PAN[key].value)
        elif key in (Qt.Key.Key_Plus, Qt.Key.Key_Equal):
            self._renderer.zoomIn()
        elif key == Qt.Key.Key_Minus:
            self._renderer.zoomOut()
        elif key == Qt.Key.Key_0:
            self._renderer.zoomOutFully()
        else:
            super().keyPressEvent(event)
            return
        event.accept()

    def keyReleaseEvent(self, event: QKeyEvent) -> None:
        if event.key() == Qt.Key.Key_Shift:
            self._set_shift(False)
            event.accept()
            return
        super().keyReleaseEvent(event)

    # -- Cursor ---------------------------------------------------------------

    def _set_shift(self, down: bool) -> None:
        if down != self._shift_down:
            self._shift_down = down
            self._update_cursor()

    def _update_cursor(self) -> None:
        action = self._renderer.cursorAction(self._shift_down)
        self.setCursor(_CURSORS[action])

    def cursorAction(self) -> str:
        """Action a click would take right now."""
        return self._renderer.cursorAction(self._shift_down)
