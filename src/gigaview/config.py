"""Centralized configuration for gigaview.

Every tunable lives here. Values marked below can be overridden through
GIGAVIEW_* environment variables; the tile layout constants cannot.

Environment Variables:
    GIGAVIEW_VIPS_PATH: Directory holding vips-dev-* installs on Windows (default: C:/vips)
    GIGAVIEW_FETCH_WORKERS: Tile fetch thread count per tile store (default: 4)
    GIGAVIEW_MAX_SOURCE_PIXELS: Largest source image the in-process builder
        accepts, in pixels (default: 268435456, i.e. 16384 x 16384)
    GIGAVIEW_VIPS_CONCURRENCY: libvips threads in the offline builder (default: 8)
    GIGAVIEW_LOG_LEVEL: Root log level for the entry points (default: INFO)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_env_int(name: str, default: int) -> int:
    """Read an integer override, warning and falling back on junk."""
    value = os.environ.get(name)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Invalid integer for %s: %r, using default %d", name, value, default
            )
    return default


def _get_env_str(name: str, default: str) -> str:
    """Read a string override."""
    return os.environ.get(name, default)


def _get_env_path(name: str, default: str) -> Path:
    """Read a path override."""
    return Path(os.environ.get(name, default))


# =============================================================================
# libvips Location (Windows)
# =============================================================================

#: Where side-by-side libvips builds are unpacked on Windows
VIPS_BASE_PATH: Path = _get_env_path("GIGAVIEW_VIPS_PATH", "C:/vips")

#: DLLs to preload for VIPS support
VIPS_REQUIRED_DLLS: tuple[str, ...] = ("libvips-42.dll",)


# =============================================================================
# Tile Pyramid Layout
# =============================================================================

#: Edge length of every tile in pixels. Part of the persisted tile set
#: contract, so it is not overridable.
TILE_SIZE: int = 128

#: Lossless encoding used for tile bytes
TILE_FORMAT: str = "png"

#: Largest source image (in pixels) the in-process builder will accept
MAX_SOURCE_PIXELS: int = _get_env_int("GIGAVIEW_MAX_SOURCE_PIXELS", 16384 * 16384)


# =============================================================================
# Viewer Configuration
# =============================================================================

#: Fraction of the display area the viewport frame may occupy on each axis
VIEWPORT_FILL_FRACTION: float = 0.95

#: Fraction of the viewport size moved by one discrete pan step
PAN_STEP_FRACTION: float = 0.25

#: Worker threads per tile store for asynchronous tile fetches
TILE_FETCH_WORKERS: int = _get_env_int("GIGAVIEW_FETCH_WORKERS", 4)

#: Root log level used by the application entry points
LOG_LEVEL: str = _get_env_str("GIGAVIEW_LOG_LEVEL", "INFO")


# =============================================================================
# Offline Builder
# =============================================================================

#: libvips worker threads per builder process
VIPS_CONCURRENCY: str = _get_env_str("GIGAVIEW_VIPS_CONCURRENCY", "8")

#: Default parallel images for batch preprocessing
DEFAULT_PARALLEL_IMAGES: int = 2

#: zlib level used when writing tile archives
ARCHIVE_COMPRESSION_LEVEL: int = 6

#: Suffix appended to the image stem for tile archives
ARCHIVE_SUFFIX: str = "_tiles.zip"

#: Source image extensions picked up by the batch builder
IMAGE_EXTENSIONS: frozenset[str] = frozenset({
    ".png", ".jpg", ".jpeg", ".tif", ".tiff", ".webp", ".bmp", ".gif"
})


# =============================================================================
# Validation
# =============================================================================


def _validate_config() -> None:
    """Clamp out-of-range overrides, logging each correction."""
    global TILE_FETCH_WORKERS, MAX_SOURCE_PIXELS

    if TILE_FETCH_WORKERS < 1:
        logger.warning(
            "TILE_FETCH_WORKERS=%d is too low, clamping to 1", TILE_FETCH_WORKERS
        )
        TILE_FETCH_WORKERS = 1

    if MAX_SOURCE_PIXELS < 1:
        logger.warning(
            "MAX_SOURCE_PIXELS=%d is too low, clamping to 1", MAX_SOURCE_PIXELS
        )
        MAX_SOURCE_PIXELS = 1


_validate_config()
