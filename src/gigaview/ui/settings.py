"""QSettings wrapper for persisting user preferences."""

from __future__ import annotations

import json

from PySide6.QtCore import QObject, QSettings, Signal, Property

MAX_RECENT_FILES = 10


class Settings(QObject):
    """QSettings wrapper for viewer preferences.

    Values persist between application sessions.
    """

    lastImageDirChanged = Signal()
    lastArchiveDirChanged = Signal()
    recentFilesChanged = Signal()

    def __init__(self, parent: QObject | None = None, settings: QSettings | None = None) -> None:
        super().__init__(parent)
        self._settings = settings if settings is not None else QSettings("gigaview", "gigaview")

    # Directory last used to open a source image
    @Property(str, notify=lastImageDirChanged)
    def lastImageDir(self) -> str:
        return self._settings.value("viewer/lastImageDir", "", str)

    @lastImageDir.setter
    def lastImageDir(self, value: str) -> None:
        if self.lastImageDir != value:
            self._settings.setValue("viewer/lastImageDir", value)
            self.lastImageDirChanged.emit()

    # Directory last used to open or export a tile archive
    @Property(str, notify=lastArchiveDirChanged)
    def lastArchiveDir(self) -> str:
        return self._settings.value("viewer/lastArchiveDir", "", str)

    @lastArchiveDir.setter
    def lastArchiveDir(self, value: str) -> None:
        if self.lastArchiveDir != value:
            self._settings.setValue("viewer/lastArchiveDir", value)
            self.lastArchiveDirChanged.emit()

    def _load_recent_files(self) -> list[str]:
        raw = self._settings.value("viewer/recentFiles", "[]", str)
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return []
        if not isinstance(parsed, list):
            return []
        return [str(p) for p in parsed if isinstance(p, str) and p]

    def get_recent_files(self) -> list[str]:
        """Return recently opened images and archives (most-recent first)."""
        return self._load_recent_files()

    def add_recent_file(self, path: str) -> None:
        """Move ``path`` to the front of the recent files list."""
        paths = [p for p in self._load_recent_files() if p != path]
        paths.insert(0, path)
        self._settings.setValue("viewer/recentFiles", json.dumps(paths[:MAX_RECENT_FILES]))
        self.recentFilesChanged.emit()
