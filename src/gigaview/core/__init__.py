"""Viewport state, tile stores and the tile renderer."""

from .types import LevelInfo, Point, Size, TileCoord
from .viewport import CursorAction, PanDirection, ViewportState

__all__ = [
    "LevelInfo",
    "Point",
    "Size",
    "TileCoord",
    "CursorAction",
    "PanDirection",
    "ViewportState",
]
