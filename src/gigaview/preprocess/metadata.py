"""Manifest types and validation for persisted tile sets.

A persisted tile set is a zip archive holding ``image_data.js`` and one PNG
per tile at ``tiles/<level>/<row>_<col>.png``. The manifest is a JSON object
wrapped in a ``window.imageData = ...;`` assignment so the same archive can
be dropped next to a static HTML page.
"""

from __future__ import annotations

import json
import logging
import re
import zipfile
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from gigaview.config import ARCHIVE_SUFFIX, TILE_FORMAT, TILE_SIZE
from gigaview.core.types import LevelInfo, Size

logger = logging.getLogger(__name__)

MANIFEST_NAME = "image_data.js"
MANIFEST_PREFIX = "window.imageData ="
TILES_DIR = "tiles"

_TILE_NAME_RE = re.compile(rf"^tiles/(\d+)/(\d+)_(\d+)\.{re.escape(TILE_FORMAT)}$")


class ManifestError(ValueError):
    """A persisted tile set is missing its manifest or the manifest is invalid."""


class ArchiveStatus(Enum):
    """Status of an existing tile archive."""

    NOT_EXISTS = "not_exists"  # No archive file
    COMPLETE = "complete"  # Valid manifest and every tile present
    INCOMPLETE = "incomplete"  # Manifest valid but tiles missing
    CORRUPTED = "corrupted"  # Not a zip, or manifest invalid


def num_levels_for(width: int, height: int, tile_size: int = TILE_SIZE) -> int:
    """Number of pyramid levels for a source of the given size.

    Equal to ``ceil(log2(max(width, height) / tile_size)) + 1`` with a floor
    of 1, computed in integers so exact powers of two never pick up an
    extra level from floating-point error.
    """
    max_dim = max(width, height)
    levels = 1
    while tile_size << (levels - 1) < max_dim:
        levels += 1
    return levels


def level_dimensions(
    width: int, height: int, num_levels: int
) -> list[tuple[int, int]]:
    """Bitmap size of every level, coarsest first.

    Each level is the floor-half of the next finer one, so the chain is
    computed from full resolution downwards rather than by dividing the
    original size by the level's scale factor.
    """
    dims = [(width, height)]
    w, h = width, height
    for _ in range(num_levels - 1):
        w, h = w // 2, h // 2
        dims.append((w, h))
    dims.reverse()
    return dims


def calculate_levels(
    width: int, height: int, tile_size: int = TILE_SIZE
) -> list[LevelInfo]:
    """Calculate level info from image dimensions and tile size.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        tile_size: Tile size in pixels

    Returns:
        List of LevelInfo, index 0 = lowest resolution
    """
    num_levels = num_levels_for(width, height, tile_size)
    max_level = num_levels - 1

    levels = []
    for i, (lw, lh) in enumerate(level_dimensions(width, height, num_levels)):
        levels.append(LevelInfo(
            level=i,
            downsample=2 ** (max_level - i),
            width=lw,
            height=lh,
            cols=(lw + tile_size - 1) // tile_size,
            rows=(lh + tile_size - 1) // tile_size,
        ))
    return levels


def tile_path(level: int, row: int, col: int, ext: str = TILE_FORMAT) -> str:
    """Archive member name for a tile."""
    return f"{TILES_DIR}/{level}/{row}_{col}.{ext}"


def parse_tile_path(name: str) -> tuple[int, int, int] | None:
    """Parse an archive member name into ``(level, row, col)``.

    Returns None for anything that isn't a tile file.
    """
    match = _TILE_NAME_RE.match(name)
    if match is None:
        return None
    level, row, col = (int(g) for g in match.groups())
    return level, row, col


def archive_path_for_image(image_path: Path, output_dir: Path) -> Path:
    """Output archive path for a source image (``<stem>_tiles.zip``)."""
    return Path(output_dir) / f"{Path(image_path).stem}{ARCHIVE_SUFFIX}"


@dataclass(frozen=True)
class PyramidManifest:
    """Manifest record of a persisted tile set."""

    original_dimensions: Size
    num_levels: int

    @property
    def levels(self) -> list[LevelInfo]:
        """Per-level geometry implied by the original dimensions."""
        width, height = self.original_dimensions
        return calculate_levels(int(width), int(height))

    def to_dict(self) -> dict:
        return {
            "originalDimensions": {
                "width": int(self.original_dimensions.width),
                "height": int(self.original_dimensions.height),
            },
            "numLevels": self.num_levels,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PyramidManifest:
        """Build a manifest from its decoded JSON form.

        Raises:
            ManifestError: If required fields are absent, mistyped, or
                ``numLevels`` disagrees with the dimensions
        """
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a JSON object")

        dims = data.get("originalDimensions")
        num_levels = data.get("numLevels")
        if not isinstance(dims, dict) or num_levels is None:
            raise ManifestError(
                "Manifest requires 'originalDimensions' and 'numLevels'"
            )

        try:
            width = _as_int(dims["width"])
            height = _as_int(dims["height"])
            num_levels = _as_int(num_levels)
        except KeyError as e:
            raise ManifestError(f"originalDimensions is missing {e}") from e
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Manifest field has an invalid value: {e}") from e

        if width <= 0 or height <= 0:
            raise ManifestError(f"Invalid originalDimensions {width}x{height}")

        expected = num_levels_for(width, height)
        if num_levels != expected:
            raise ManifestError(
                f"numLevels={num_levels} does not match {width}x{height} "
                f"with {TILE_SIZE}px tiles (expected {expected})"
            )

        return cls(original_dimensions=Size(width, height), num_levels=num_levels)

    def to_text(self) -> str:
        """Render as ``image_data.js`` contents."""
        return f"{MANIFEST_PREFIX} {json.dumps(self.to_dict(), indent=2)};"

    @classmethod
    def from_text(cls, text: str) -> PyramidManifest:
        """Parse ``image_data.js`` contents (the bare JSON form is accepted too).

        Raises:
            ManifestError: If the text is not a valid manifest
        """
        body = text.strip()
        if body.startswith(MANIFEST_PREFIX):
            body = body[len(MANIFEST_PREFIX):].strip()
        if body.endswith(";"):
            body = body[:-1].rstrip()
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Manifest is not valid JSON: {e}") from e
        return cls.from_dict(data)


def _as_int(value: object) -> int:
    """Accept ints and integral floats (JSON writers may emit ``1024.0``)."""
    if isinstance(value, bool):
        raise TypeError(f"expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise TypeError(f"expected an integer, got {value!r}")


def read_manifest(archive: zipfile.ZipFile) -> PyramidManifest:
    """Read and validate the manifest from an open tile archive.

    Raises:
        ManifestError: If the manifest is missing or invalid
    """
    try:
        raw = archive.read(MANIFEST_NAME)
    except KeyError as e:
        raise ManifestError(f"{MANIFEST_NAME} not found in the archive") from e
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise ManifestError(f"{MANIFEST_NAME} is damaged: {e}") from e
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"{MANIFEST_NAME} is not UTF-8 text") from e
    return PyramidManifest.from_text(text)


def check_archive_status(archive_path: Path) -> ArchiveStatus:
    """Check the status of an existing tile archive.

    Args:
        archive_path: Path to the ``.zip`` tile set

    Returns:
        ArchiveStatus indicating the state
    """
    archive_path = Path(archive_path)
    if not archive_path.exists():
        return ArchiveStatus.NOT_EXISTS

    try:
        with zipfile.ZipFile(archive_path) as archive:
            manifest = read_manifest(archive)
            present = {
                coord
                for coord in map(parse_tile_path, archive.namelist())
                if coord is not None
            }
    except (zipfile.BadZipFile, ManifestError, OSError) as e:
        logger.debug("Archive %s is unreadable: %s", archive_path, e)
        return ArchiveStatus.CORRUPTED

    width, height = manifest.original_dimensions
    for info in calculate_levels(int(width), int(height)):
        for row in range(info.rows):
            for col in range(info.cols):
                if (info.level, row, col) not in present:
                    return ArchiveStatus.INCOMPLETE

    return ArchiveStatus.COMPLETE
