"""Export of built pyramids as persisted tile sets."""

from __future__ import annotations

import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import Callable

from gigaview.config import ARCHIVE_COMPRESSION_LEVEL

from .metadata import MANIFEST_NAME, tile_path
from .pyramid import Pyramid

logger = logging.getLogger(__name__)


def write_tile_archive(
    pyramid: Pyramid,
    path: Path,
    progress_callback: Callable[[int, int], None] | None = None,
) -> Path:
    """Atomically write a pyramid as a zip tile set.

    The archive is assembled in a temp file in the target directory, then
    moved over ``path`` with ``os.replace()`` (atomic on POSIX and Windows,
    same filesystem). A failed or cancelled export leaves no partial file.

    Args:
        pyramid: Finished pyramid to export
        path: Destination ``.zip`` path
        progress_callback: Optional callback(tiles_written, total_tiles); may
            raise InterruptedError to cancel

    Returns:
        The archive path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    coords = sorted(pyramid.tiles)
    total = len(coords)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent, suffix=".tmp", prefix=path.stem
    )
    try:
        with os.fdopen(fd, "wb") as f, zipfile.ZipFile(
            f,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=ARCHIVE_COMPRESSION_LEVEL,
        ) as archive:
            archive.writestr(MANIFEST_NAME, pyramid.manifest.to_text())
            for written, coord in enumerate(coords, start=1):
                archive.writestr(
                    tile_path(coord.level, coord.row, coord.col),
                    pyramid.tiles[coord],
                )
                if progress_callback:
                    progress_callback(written, total)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise

    logger.info("Wrote %d tiles to %s", total, path)
    return path
