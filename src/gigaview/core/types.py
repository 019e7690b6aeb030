"""Shared type definitions for gigaview core module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple


class TileCoord(NamedTuple):
    """Coordinate of a tile in the pyramid.

    Attributes:
        level: Pyramid level (0 = lowest resolution)
        row: Row index (0-based, from the top)
        col: Column index (0-based, from the left)
    """

    level: int
    row: int
    col: int


class Size(NamedTuple):
    """Width/height pair in pixels."""

    width: float
    height: float


class Point(NamedTuple):
    """x/y pair in pixels."""

    x: float
    y: float


@dataclass(frozen=True)
class LevelInfo:
    """Information about a pyramid level.

    Attributes:
        level: Level index (0 = lowest resolution)
        downsample: Scale factor relative to full resolution (1 = full res)
        width: Level bitmap width in pixels
        height: Level bitmap height in pixels
        cols: Number of tile columns at this level
        rows: Number of tile rows at this level
    """

    level: int
    downsample: int
    width: int
    height: int
    cols: int
    rows: int

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    @property
    def tile_count(self) -> int:
        return self.cols * self.rows
