"""Tile stores: asynchronous access to encoded tiles by (level, row, col)."""

from __future__ import annotations

import logging
import threading
import zipfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from gigaview.config import TILE_FETCH_WORKERS
from gigaview.preprocess.metadata import (
    ManifestError,
    PyramidManifest,
    read_manifest,
    tile_path,
)
from gigaview.preprocess.pyramid import Pyramid

from .types import LevelInfo, Size, TileCoord

logger = logging.getLogger(__name__)


class TileNotFoundError(LookupError):
    """A requested tile is outside the level grid or absent from the store."""


class TileStore:
    """Base class for tile sources consumed by the viewport renderer.

    Reads run on a small thread pool so ``get`` never blocks the caller.
    Completions arrive in no particular order. Subclasses implement
    ``_read_tile``, which runs on a pool thread.
    """

    def __init__(
        self, manifest: PyramidManifest, max_workers: int = TILE_FETCH_WORKERS
    ) -> None:
        self._manifest = manifest
        self._levels = tuple(manifest.levels)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="tile-fetch"
        )
        self._closed = False

    @property
    def manifest(self) -> PyramidManifest:
        return self._manifest

    @property
    def levels(self) -> tuple[LevelInfo, ...]:
        return self._levels

    @property
    def num_levels(self) -> int:
        return len(self._levels)

    @property
    def original_dimensions(self) -> Size:
        return self._manifest.original_dimensions

    def get(self, level: int, row: int, col: int) -> Future:
        """Fetch the encoded bytes of one tile.

        Returns:
            Future resolving to PNG bytes, or failing with TileNotFoundError
            or the underlying read error
        """
        if self._closed:
            raise RuntimeError("Tile store is closed")
        return self._executor.submit(self._fetch, TileCoord(level, row, col))

    def _fetch(self, coord: TileCoord) -> bytes:
        self._check_coord(coord)
        return self._read_tile(coord)

    def _check_coord(self, coord: TileCoord) -> None:
        level, row, col = coord
        if not 0 <= level < len(self._levels):
            raise TileNotFoundError(f"No level {level} (have {len(self._levels)})")
        info = self._levels[level]
        if not (0 <= row < info.rows and 0 <= col < info.cols):
            raise TileNotFoundError(
                f"Tile ({row}, {col}) is outside the {info.rows}x{info.cols} "
                f"grid of level {level}"
            )

    def _read_tile(self, coord: TileCoord) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        """Stop accepting requests. Pending reads are cancelled."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> TileStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class MemoryTileStore(TileStore):
    """Serves tiles of a freshly built in-memory Pyramid."""

    def __init__(self, pyramid: Pyramid, max_workers: int = TILE_FETCH_WORKERS) -> None:
        super().__init__(pyramid.manifest, max_workers)
        self._pyramid = pyramid

    @property
    def pyramid(self) -> Pyramid:
        return self._pyramid

    def _read_tile(self, coord: TileCoord) -> bytes:
        try:
            return self._pyramid.tiles[coord]
        except KeyError:
            raise TileNotFoundError(f"Tile {tuple(coord)} is not in the pyramid") from None


class ArchiveTileStore(TileStore):
    """Serves tiles from a persisted ``_tiles.zip`` archive.

    The manifest is read and validated when the store is opened, so a
    malformed archive fails here before any tile is requested.

    Raises:
        ManifestError: If the archive is not a zip or its manifest is
            missing or invalid
    """

    def __init__(self, path: Path, max_workers: int = TILE_FETCH_WORKERS) -> None:
        self._path = Path(path)
        try:
            archive = zipfile.ZipFile(self._path)
        except zipfile.BadZipFile as e:
            raise ManifestError(f"{self._path.name} is not a tile archive: {e}") from e

        try:
            manifest = read_manifest(archive)
        except BaseException:
            archive.close()
            raise

        super().__init__(manifest, max_workers)
        self._archive = archive
        # ZipFile reads share one file handle
        self._lock = threading.Lock()
        logger.info(
            "Opened tile archive %s: %dx%d px, %d levels",
            self._path,
            int(manifest.original_dimensions.width),
            int(manifest.original_dimensions.height),
            manifest.num_levels,
        )

    @property
    def path(self) -> Path:
        return self._path

    def _read_tile(self, coord: TileCoord) -> bytes:
        name = tile_path(*coord)
        with self._lock:
            try:
                return self._archive.read(name)
            except KeyError:
                raise TileNotFoundError(f"{name} is missing from {self._path.name}") from None

    def close(self) -> None:
        super().close()
        with self._lock:
            self._archive.close()
