"""Main window and application setup for the gigaview viewer."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from PySide6.QtCore import Qt, Slot
from PySide6.QtGui import QAction, QKeySequence
from PySide6.QtWidgets import (
    QApplication,
    QFileDialog,
    QLabel,
    QMainWindow,
    QMenu,
    QMessageBox,
    QProgressBar,
    QToolBar,
    QWidget,
)

from gigaview.config import ARCHIVE_SUFFIX, IMAGE_EXTENSIONS
from gigaview.core.renderer import ViewportRenderer
from gigaview.core.store import ArchiveTileStore, MemoryTileStore, TileStore
from gigaview.core.viewport import PanDirection
from gigaview.preprocess.metadata import ManifestError, archive_path_for_image
from gigaview.preprocess.pyramid import Pyramid
from gigaview.ui.preprocess import BuildWorker, ExportWorker
from gigaview.ui.settings import Settings
from gigaview.ui.viewer import ViewportWidget

logger = logging.getLogger(__name__)

WINDOW_TITLE = "gigaview"

_PAN_LABELS = {
    PanDirection.LEFT: "Pan &Left",
    PanDirection.RIGHT: "Pan &Right",
    PanDirection.UP: "Pan &Up",
    PanDirection.DOWN: "Pan &Down",
}


def _image_filter() -> str:
    patterns = " ".join(f"*{ext}" for ext in sorted(IMAGE_EXTENSIONS))
    return f"Images ({patterns});;All files (*)"


class MainWindow(QMainWindow):
    """Viewer window: one ViewportWidget plus menus and a status bar."""

    def __init__(self, settings: Settings | None = None, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowTitle(WINDOW_TITLE)
        self.resize(1200, 800)

        self._settings = settings if settings is not None else Settings(self)
        self._store: TileStore | None = None
        self._pyramid: Pyramid | None = None
        self._source_path: Path | None = None
        self._build_worker: BuildWorker | None = None
        self._export_worker: ExportWorker | None = None

        self.renderer = ViewportRenderer(self)
        self.viewer = ViewportWidget(self.renderer, self)
        self.setCentralWidget(self.viewer)

        self._setup_menus()
        self._setup_status_bar()

        self.renderer.stateChanged.connect(self._update_view_status)
        self.renderer.tileFetchFailed.connect(self._on_tile_fetch_failed)
        # Queued: an entry may reopen a file from inside its own triggered signal
        self._settings.recentFilesChanged.connect(
            self._rebuild_recent_menu, Qt.ConnectionType.QueuedConnection
        )
        self._rebuild_recent_menu()
        self._update_actions()

    # -- Setup ----------------------------------------------------------------

    def _setup_menus(self) -> None:
        file_menu = self.menuBar().addMenu("&File")

        self.act_open_image = QAction("Open &Image...", self)
        self.act_open_image.setShortcut(QKeySequence.StandardKey.Open)
        self.act_open_image.triggered.connect(self._choose_image)
        file_menu.addAction(self.act_open_image)

        self.act_open_archive = QAction("Open Tile &Archive...", self)
        self.act_open_archive.setShortcut(QKeySequence("Ctrl+Shift+O"))
        self.act_open_archive.triggered.connect(self._choose_archive)
        file_menu.addAction(self.act_open_archive)

        self.recent_menu = QMenu("Open &Recent", self)
        file_menu.addMenu(self.recent_menu)

        self.act_export = QAction("&Export Tile Archive...", self)
        self.act_export.setShortcut(QKeySequence("Ctrl+E"))
        self.act_export.triggered.connect(self._choose_export_path)
        file_menu.addAction(self.act_export)

        file_menu.addSeparator()
        act_quit = QAction("&Quit", self)
        act_quit.setShortcut(QKeySequence.StandardKey.Quit)
        act_quit.triggered.connect(self.close)
        file_menu.addAction(act_quit)

        view_menu = self.menuBar().addMenu("&View")

        self.act_zoom_in = QAction("Zoom &In", self)
        self.act_zoom_in.setShortcut(QKeySequence.StandardKey.ZoomIn)
        self.act_zoom_in.triggered.connect(self.renderer.zoomIn)
        view_menu.addAction(self.act_zoom_in)

        self.act_zoom_out = QAction("Zoom &Out", self)
        self.act_zoom_out.setShortcut(QKeySequence.StandardKey.ZoomOut)
        self.act_zoom_out.triggered.connect(self.renderer.zoomOut)
        view_menu.addAction(self.act_zoom_out)

        self.act_zoom_fit = QAction("Zoom Out &Fully", self)
        self.act_zoom_fit.setShortcut(QKeySequence("Ctrl+0"))
        self.act_zoom_fit.triggered.connect(self.renderer.zoomOutFully)
        view_menu.addAction(self.act_zoom_fit)
        view_menu.addSeparator()

        # Overlaid on the viewer so showing it never resizes the display area.
        # Arrow keys pan through the viewer, so these carry no shortcut.
        self.pan_toolbar = QToolBar("Pan", self.viewer)
        self.pan_toolbar.setObjectName("panToolBar")
        self.pan_actions: dict[PanDirection, QAction] = {}
        for direction, label in _PAN_LABELS.items():
            action = QAction(label, self)
            action.triggered.connect(
                lambda checked=False, d=direction: self.renderer.panBy(d.value)
            )
            view_menu.addAction(action)
            self.pan_toolbar.addAction(action)
            self.pan_actions[direction] = action
        self.pan_toolbar.move(8, 8)
        self.pan_toolbar.adjustSize()

    def _setup_status_bar(self) -> None:
        status = self.statusBar()
        self._progress = QProgressBar(self)
        self._progress.setMaximumWidth(200)
        self._progress.setVisible(False)
        self._zoom_label = QLabel(self)
        self._resolution_label = QLabel(self)
        status.addPermanentWidget(self._progress)
        status.addPermanentWidget(self._zoom_label)
        status.addPermanentWidget(self._resolution_label)

    # -- Opening --------------------------------------------------------------

    def openPath(self, path: str | Path) -> None:
        """Open a tile archive, or build the pyramid of any other image."""
        path = Path(path)
        if path.suffix.lower() == ".zip":
            self.openArchive(path)
        else:
            self.buildImage(path)

    def openArchive(self, path: str | Path) -> bool:
        """Show a persisted tile set.

        Returns:
            True if the archive was opened
        """
        path = Path(path)
        try:
            store = ArchiveTileStore(path)
        except (ManifestError, OSError) as e:
            logger.error("Cannot open tile archive %s: %s", path, e)
            QMessageBox.critical(self, WINDOW_TITLE, f"Cannot open {path.name}:\n{e}")
            return False

        self._cancel_build()
        self._pyramid = None
        self._source_path = path
        self._settings.lastArchiveDir = str(path.parent)
        self._settings.add_recent_file(str(path))
        self._attach(store)
        self.setWindowTitle(f"{path.name} - {WINDOW_TITLE}")
        return True

    def buildImage(self, path: str | Path) -> None:
        """Build the pyramid of an image in the background and show it."""
        path = Path(path)
        self._cancel_build()

        self._source_path = path
        self._settings.lastImageDir = str(path.parent)
        worker = BuildWorker(path, parent=self)
        worker.progressChanged.connect(self._on_build_progress)
        worker.pyramidReady.connect(self._on_pyramid_ready)
        worker.errorOccurred.connect(self._on_build_error)
        worker.finished.connect(worker.deleteLater)
        self._build_worker = worker

        self._progress.setRange(0, 0)
        self._progress.setVisible(True)
        self.statusBar().showMessage(f"Building pyramid for {path.name}...")
        worker.start()

    def _cancel_build(self) -> None:
        worker = self._build_worker
        self._build_worker = None
        if worker is not None:
            # Drop results already queued by a finished build
            worker.progressChanged.disconnect(self._on_build_progress)
            worker.pyramidReady.disconnect(self._on_pyramid_ready)
            worker.errorOccurred.disconnect(self._on_build_error)
            # Not joined here; the build stops at its next tile row and
            # finished->deleteLater cleans it up
            worker.cancel()
        self._progress.setVisible(False)

    def _attach(self, store: TileStore) -> None:
        old = self._store
        self._store = store
        # The renderer refits to the remembered display area before drawing
        self.renderer.setStore(store)
        if old is not None:
            old.close()
        self._update_actions()
        self.viewer.setFocus()

    # -- Slots ----------------------------------------------------------------

    @Slot(int, int)
    def _on_build_progress(self, level: int, total: int) -> None:
        done = total - level
        self._progress.setRange(0, total)
        self._progress.setValue(done)
        self.statusBar().showMessage(f"Tiled level {level} ({done}/{total})")

    @Slot(object)
    def _on_pyramid_ready(self, pyramid: Pyramid) -> None:
        self._build_worker = None
        self._progress.setVisible(False)
        self._pyramid = pyramid
        path = self._source_path
        if path is not None:
            self._settings.add_recent_file(str(path))
            self.setWindowTitle(f"{path.name} - {WINDOW_TITLE}")
        self._attach(MemoryTileStore(pyramid))
        self.statusBar().showMessage(
            f"Built {pyramid.num_levels} levels, {len(pyramid.tiles)} tiles", 5000
        )

    @Slot(str)
    def _on_build_error(self, message: str) -> None:
        self._build_worker = None
        self._progress.setVisible(False)
        self.statusBar().showMessage("Build failed", 5000)
        QMessageBox.critical(self, WINDOW_TITLE, f"Could not build the image pyramid.\n\n{message}")

    @Slot(int, int, int, str)
    def _on_tile_fetch_failed(self, level: int, row: int, col: int, message: str) -> None:
        self.statusBar().showMessage(f"Tile {level}/{row}_{col} failed: {message}", 5000)

    @Slot()
    def _update_view_status(self) -> None:
        renderer = self.renderer
        if not renderer.isReady:
            self._zoom_label.clear()
            self._resolution_label.clear()
        else:
            width, height = renderer.displayedResolution()
            self._zoom_label.setText(f"{renderer.displayedZoom}x")
            self._resolution_label.setText(f"{width} x {height} px")
        self._update_actions()

    def _update_actions(self) -> None:
        renderer = self.renderer
        ready = renderer.isReady
        self.act_zoom_in.setEnabled(ready and renderer.zoomIndex < renderer.numLevels - 1)
        self.act_zoom_out.setEnabled(ready and renderer.zoomIndex > renderer.minZoomIndex)
        self.act_zoom_fit.setEnabled(ready and renderer.zoomIndex != renderer.minZoomIndex)
        self.act_export.setEnabled(self._pyramid is not None and self._export_worker is None)
        for direction, action in self.pan_actions.items():
            action.setEnabled(ready and renderer.canPan(direction.value))
        self.pan_toolbar.setVisible(renderer.showPanControls)

    @Slot()
    def _rebuild_recent_menu(self) -> None:
        self.recent_menu.clear()
        paths = self._settings.get_recent_files()
        for path in paths:
            action = self.recent_menu.addAction(Path(path).name)
            action.setData(path)
            action.setToolTip(path)
            action.triggered.connect(lambda checked=False, p=path: self.openPath(p))
        self.recent_menu.setEnabled(bool(paths))

    # -- Dialogs --------------------------------------------------------------

    @Slot()
    def _choose_image(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self, "Open Image", self._settings.lastImageDir, _image_filter()
        )
        if path:
            self.buildImage(path)

    @Slot()
    def _choose_archive(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self,
            "Open Tile Archive",
            self._settings.lastArchiveDir,
            f"Tile archives (*{ARCHIVE_SUFFIX} *.zip)",
        )
        if path:
            self.openArchive(path)

    @Slot()
    def _choose_export_path(self) -> None:
        if self._pyramid is None:
            return
        start_dir = self._settings.lastArchiveDir or str(Path.home())
        suggested = archive_path_for_image(self._source_path or Path("image"), Path(start_dir))
        path, _ = QFileDialog.getSaveFileName(
            self, "Export Tile Archive", str(suggested), "Tile archives (*.zip)"
        )
        if path:
            self.exportArchive(path)

    def exportArchive(self, path: str | Path) -> None:
        """Write the current in-memory pyramid to a tile archive."""
        if self._pyramid is None or self._export_worker is not None:
            return
        path = Path(path)
        self._settings.lastArchiveDir = str(path.parent)

        worker = ExportWorker(self._pyramid, path, parent=self)
        worker.progressChanged.connect(self._on_export_progress)
        worker.exported.connect(self._on_exported)
        worker.errorOccurred.connect(self._on_export_error)
        worker.finished.connect(worker.deleteLater)
        self._export_worker = worker
        self._update_actions()
        self._progress.setVisible(True)
        worker.start()

    @Slot(int, int)
    def _on_export_progress(self, written: int, total: int) -> None:
        self._progress.setRange(0, total)
        self._progress.setValue(written)

    @Slot(str)
    def _on_exported(self, path: str) -> None:
        self._export_worker = None
        self._progress.setVisible(False)
        self._update_actions()
        self.statusBar().showMessage(f"Exported {Path(path).name}", 5000)

    @Slot(str)
    def _on_export_error(self, message: str) -> None:
        self._export_worker = None
        self._progress.setVisible(False)
        self._update_actions()
        QMessageBox.critical(self, WINDOW_TITLE, f"Export failed:\n{message}")

    def closeEvent(self, event) -> None:
        self._cancel_build()
        # Abandoned builds still hold libvips images
        for worker in self.findChildren(BuildWorker):
            worker.cancel()
            worker.wait()
        if self._export_worker is not None:
            self._export_worker.wait()
        if self._store is not None:
            self.renderer.setStore(None)
            self._store.close()
            self._store = None
        super().closeEvent(event)


def run_app(args: list[str] | None = None) -> int:
    """Run the gigaview viewer application.

    Args:
        args: Command line arguments (defaults to sys.argv). A single
            positional argument opens that image or tile archive.

    Returns:
        Exit code
    """
    if args is None:
        args = sys.argv

    app = QApplication(args)
    app.setApplicationName("gigaview")
    app.setOrganizationName("gigaview")

    window = MainWindow()
    window.show()

    paths = [a for a in app.arguments()[1:] if not a.startswith("-")]
    if paths:
        window.openPath(paths[0])

    logger.info("gigaview viewer started")
    return app.exec()
