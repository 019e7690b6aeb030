"""Pyramid generation for large images."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

from gigaview.config import MAX_SOURCE_PIXELS, TILE_SIZE
from gigaview.core.types import LevelInfo, Size, TileCoord

from .metadata import PyramidManifest, calculate_levels

logger = logging.getLogger(__name__)

# Import backends first to set up DLL paths on Windows
from .backends import get_backend, pyvips


class ResourceExhausted(RuntimeError):
    """The source image exceeds what the in-process builder can hold.

    Callers are expected to fall back to the offline builder
    (``python -m gigaview.preprocess``).
    """


@dataclass(frozen=True)
class Pyramid:
    """An immutable, fully built tile pyramid.

    Attributes:
        original_dimensions: Source image size in pixels
        levels: Per-level geometry, index 0 = lowest resolution
        tiles: PNG bytes keyed by TileCoord(level, row, col)
    """

    original_dimensions: Size
    levels: tuple[LevelInfo, ...]
    tiles: Mapping[TileCoord, bytes] = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.tiles, MappingProxyType):
            object.__setattr__(self, "tiles", MappingProxyType(dict(self.tiles)))

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def manifest(self) -> PyramidManifest:
        return PyramidManifest(
            original_dimensions=self.original_dimensions,
            num_levels=self.num_levels,
        )

    def tile(self, level: int, row: int, col: int) -> bytes:
        """Encoded bytes of one tile.

        Raises:
            KeyError: If the coordinate is outside the level's grid
        """
        return self.tiles[TileCoord(level, row, col)]


class PyramidBuilder:
    """Builds a tile pyramid from a decoded source bitmap.

    Level ``num_levels - 1`` is the source at full resolution. Each coarser
    level is the previous one Lanczos-halved with floor rounding. Every
    level is cut into ``tile_size`` square PNG tiles; right and bottom edge
    tiles are padded with transparency.

    Output format:
        - Pyramid value with tiles held in memory
        - Level 0 = lowest resolution, level N = highest resolution
    """

    def __init__(
        self,
        tile_size: int = TILE_SIZE,
        max_pixels: int | None = None,
    ) -> None:
        self.tile_size = tile_size
        self.max_pixels = MAX_SOURCE_PIXELS if max_pixels is None else max_pixels
        self._backend = get_backend()

    def build(
        self,
        image: Any,
        progress_callback: Callable[[int, int], None] | None = None,
        cancel_check: Callable[[], bool] | None = None,
    ) -> Pyramid:
        """Build a pyramid from a pyvips image.

        Args:
            image: Decoded source as pyvips.Image (width and height > 0)
            progress_callback: Optional callback(level, total_levels), called
                after each level is tiled. It may raise InterruptedError to
                cancel the build.
            cancel_check: Optional predicate polled before each tile row;
                the build stops with InterruptedError once it returns True

        Returns:
            The finished Pyramid

        Raises:
            ValueError: If the image has no pixels
            ResourceExhausted: If the image is too large to process in memory
            InterruptedError: If the build is cancelled
        """
        width, height = image.width, image.height
        if width <= 0 or height <= 0:
            raise ValueError(f"Source image has no pixels ({width}x{height})")

        if width * height > self.max_pixels:
            raise ResourceExhausted(
                f"Image of {width}x{height} px exceeds the in-process limit of "
                f"{self.max_pixels} px; use the offline builder instead"
            )

        levels = calculate_levels(width, height, self.tile_size)
        logger.info(
            "Building %d pyramid levels for %dx%d px source", len(levels), width, height
        )

        try:
            tiles = self._build_tiles(image, levels, progress_callback, cancel_check)
        except MemoryError as e:
            raise ResourceExhausted(
                f"Out of memory building pyramid for {width}x{height} px image"
            ) from e
        except pyvips.Error as e:
            raise ResourceExhausted(
                f"libvips could not process {width}x{height} px image: {e}"
            ) from e

        logger.info("Generated %d tiles across %d levels", len(tiles), len(levels))
        return Pyramid(
            original_dimensions=Size(width, height),
            levels=tuple(levels),
            tiles=tiles,
        )

    def _build_tiles(
        self,
        image: Any,
        levels: list[LevelInfo],
        progress_callback: Callable[[int, int], None] | None,
        cancel_check: Callable[[], bool] | None = None,
    ) -> dict[TileCoord, bytes]:
        """Tile every level from finest to coarsest.

        Args:
            image: Full-resolution source
            levels: Level geometry from calculate_levels()
            progress_callback: Optional callback(level, total_levels)
            cancel_check: Optional predicate polled before each tile row

        Returns:
            Tile bytes keyed by coordinate
        """
        backend = self._backend
        total = len(levels)
        tiles: dict[TileCoord, bytes] = {}

        current = backend.ensure_rgba(image).copy_memory()

        for info in reversed(levels):
            if current is not None:
                if (current.width, current.height) != (info.width, info.height):
                    raise RuntimeError(
                        f"Level {info.level} is {current.width}x{current.height}, "
                        f"expected {info.width}x{info.height}"
                    )
                tiles.update(self._tile_level(current, info, cancel_check))
            logger.debug(
                "Level %d: %dx%d px, %dx%d tiles",
                info.level, info.width, info.height, info.cols, info.rows,
            )

            if progress_callback:
                progress_callback(info.level, total)

            if info.level > 0 and current is not None:
                current = backend.halve(current)

        return tiles

    def _tile_level(
        self,
        image: Any,
        info: LevelInfo,
        cancel_check: Callable[[], bool] | None = None,
    ) -> dict[TileCoord, bytes]:
        """Cut one level bitmap into encoded tiles."""
        backend = self._backend
        size = self.tile_size
        tiles = {}
        for row in range(info.rows):
            if cancel_check is not None and cancel_check():
                raise InterruptedError("Build cancelled")
            for col in range(info.cols):
                tile = backend.extract_tile(image, col * size, row * size, size)
                tiles[TileCoord(info.level, row, col)] = backend.encode_png(tile)
        return tiles


def load_source(image_path: Path) -> Any:
    """Decode a source image file for building.

    Raises:
        ResourceExhausted: If libvips cannot open the file
    """
    image_path = Path(image_path)
    try:
        return get_backend().load_image(image_path)
    except pyvips.Error as e:
        raise ResourceExhausted(f"Cannot decode {image_path.name}: {e}") from e


def build_pyramid(
    image_path: Path,
    progress_callback: Callable[[int, int], None] | None = None,
    max_pixels: int | None = None,
    cancel_check: Callable[[], bool] | None = None,
) -> Pyramid:
    """Decode an image file and build its tile pyramid.

    Args:
        image_path: Path to any image format libvips can load
        progress_callback: Progress callback(level, total_levels)
        max_pixels: Override for the in-process size limit
        cancel_check: Predicate polled before each tile row

    Returns:
        The finished Pyramid

    Raises:
        ResourceExhausted: If the image cannot be decoded or is too large
        InterruptedError: If the build is cancelled
    """
    builder = PyramidBuilder(max_pixels=max_pixels)
    return builder.build(load_source(image_path), progress_callback, cancel_check)
