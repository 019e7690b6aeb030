"""Background workers for building and exporting tile pyramids."""

from __future__ import annotations

import logging
from pathlib import Path

from PySide6.QtCore import QObject, Signal, QThread

from gigaview.preprocess.archive import write_tile_archive
from gigaview.preprocess.pyramid import ResourceExhausted, build_pyramid

logger = logging.getLogger(__name__)

OFFLINE_BUILD_HINT = (
    "Use the offline builder for very large images: "
    "python -m gigaview.preprocess IMAGE -o OUTPUT_DIR"
)


class BuildWorker(QThread):
    """Builds a pyramid from an image file off the UI thread.

    Emits ``progressChanged(level, total_levels)`` after each level, then
    exactly one of ``pyramidReady(pyramid)`` or ``errorOccurred(message)``.
    A cancelled build reports "Build cancelled" and publishes nothing.
    """

    progressChanged = Signal(int, int)  # level just tiled, total levels
    pyramidReady = Signal(object)  # Pyramid
    errorOccurred = Signal(str)  # error message

    def __init__(
        self,
        image_path: str | Path,
        max_pixels: int | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.image_path = Path(image_path)
        self.max_pixels = max_pixels
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next tile row."""
        self._cancelled = True

    def run(self) -> None:
        """Run the build in the background thread."""
        def progress_callback(level: int, total: int) -> None:
            if self._cancelled:
                raise InterruptedError("Build cancelled")
            self.progressChanged.emit(level, total)

        try:
            if self._cancelled:
                raise InterruptedError("Build cancelled")

            logger.info("Building pyramid for %s", self.image_path)
            pyramid = build_pyramid(
                self.image_path,
                progress_callback=progress_callback,
                max_pixels=self.max_pixels,
                cancel_check=lambda: self._cancelled,
            )
            self.pyramidReady.emit(pyramid)

        except InterruptedError:
            logger.info("Build of %s cancelled", self.image_path.name)
            self.errorOccurred.emit("Build cancelled")
        except ResourceExhausted as e:
            logger.warning("Build of %s failed: %s", self.image_path.name, e)
            self.errorOccurred.emit(f"{e}\n\n{OFFLINE_BUILD_HINT}")
        except Exception as e:
            logger.exception("Build failed")
            self.errorOccurred.emit(str(e))


class ExportWorker(QThread):
    """Writes a built pyramid to a tile archive off the UI thread."""

    progressChanged = Signal(int, int)  # tiles written, total tiles
    exported = Signal(str)  # archive path
    errorOccurred = Signal(str)  # error message

    def __init__(self, pyramid, path: str | Path, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.pyramid = pyramid
        self.path = Path(path)

    def run(self) -> None:
        try:
            result = write_tile_archive(
                self.pyramid,
                self.path,
                progress_callback=lambda done, total: self.progressChanged.emit(done, total),
            )
            self.exported.emit(str(result))
        except Exception as e:
            logger.exception("Export failed")
            self.errorOccurred.emit(str(e))
