"""Pan/zoom state and coordinate transforms for the tile viewport.

Everything here is pure: functions take a ViewportState plus the pyramid's
level geometry and return a new state (or a derived value). The renderer
owns the current state and swaps it wholesale after each transition.

Coordinate spaces:
    screen: pixels inside the viewport frame, origin top-left
    world: pixels of the current level's full bitmap
    tile grid: (row, col) of TILE_SIZE squares within a level
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Sequence

from gigaview.config import PAN_STEP_FRACTION, TILE_SIZE, VIEWPORT_FILL_FRACTION

from .types import LevelInfo, Point, Size


class PanDirection(str, Enum):
    """Discrete pan directions."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class CursorAction(str, Enum):
    """What a click at the current state would do."""

    ZOOM_IN = "zoom-in"
    ZOOM_OUT = "zoom-out"
    NONE = "none"


@dataclass(frozen=True)
class ViewportState:
    """Immutable snapshot of the viewer's pan/zoom state.

    Attributes:
        zoom_index: Current pyramid level, in [min_zoom_index, num_levels - 1]
        min_zoom_index: Coarsest level the user may zoom out to
        pan: Top-left of the viewport in the current level's world pixels.
            Negative on an axis where the world is smaller than the viewport.
        viewport_size: Frame size in screen pixels
    """

    zoom_index: int
    min_zoom_index: int
    pan: Point
    viewport_size: Size


def scale_for(index: int, num_levels: int) -> int:
    """Downsample factor of a level relative to full resolution."""
    return 2 ** (num_levels - 1 - index)


def world_size(levels: Sequence[LevelInfo], index: int) -> Size:
    """World bitmap size of a level."""
    return levels[index].size


def fit_viewport_size(
    area: Size,
    image: Size,
    fill: float = VIEWPORT_FILL_FRACTION,
) -> Size:
    """Largest frame with the image's aspect ratio inside ``fill`` of the area.

    The frame takes ``fill`` of the area's width unless that makes it too
    tall, in which case it takes ``fill`` of the height instead.
    """
    if area.width <= 0 or area.height <= 0 or image.width <= 0 or image.height <= 0:
        return Size(0.0, 0.0)

    aspect = image.width / image.height
    width = area.width * fill
    height = width / aspect
    if height > area.height * fill:
        height = area.height * fill
        width = height * aspect
    return Size(width, height)


def _clamp_axis(pan: float, world: float, view: float) -> float:
    if world < view:
        return (world - view) / 2
    return max(0.0, min(pan, world - view))


def clamp_pan(pan: Point, world: Size, view: Size) -> Point:
    """Clamp a pan offset so the viewport stays over the world bitmap.

    An axis on which the world is smaller than the viewport is centred,
    which yields a negative offset.
    """
    return Point(
        _clamp_axis(pan.x, world.width, view.width),
        _clamp_axis(pan.y, world.height, view.height),
    )


def find_base_index(levels: Sequence[LevelInfo], view: Size) -> int:
    """Most detailed level that still fits the viewport on both axes.

    Levels are scanned from the coarsest up and the scan stops at the first
    level that does not fit. Returns 0 when even level 0 is too large.
    """
    base = 0
    for info in levels:
        if info.width > view.width or info.height > view.height:
            break
        base = info.level
    return base


def initial_state(
    levels: Sequence[LevelInfo], view: Size
) -> ViewportState | None:
    """Fitted state for a viewport, or None if there is nothing to show yet."""
    if not levels or view.width <= 0 or view.height <= 0:
        return None

    base = find_base_index(levels, view)
    return ViewportState(
        zoom_index=base,
        min_zoom_index=base,
        pan=clamp_pan(Point(0.0, 0.0), world_size(levels, base), view),
        viewport_size=view,
    )


def zoom_about_point(
    pan: Point, screen_point: Point, old_index: int, new_index: int
) -> Point:
    """Pan that keeps the world point under ``screen_point`` stationary.

    Not clamped. Level scales are powers of two, so the ratio and the
    products are exact in floating point.
    """
    ratio = 2.0 ** (new_index - old_index)
    return Point(
        (pan.x + screen_point.x) * ratio - screen_point.x,
        (pan.y + screen_point.y) * ratio - screen_point.y,
    )


def zoom_state(
    state: ViewportState,
    levels: Sequence[LevelInfo],
    target_index: int,
    screen_point: Point,
) -> ViewportState:
    """Zoom to a level about a screen point.

    Returns ``state`` itself when the target equals the current level.
    Otherwise the target is clamped to [min_zoom_index, num_levels - 1] and
    zoom index and pan change together.
    """
    if target_index == state.zoom_index:
        return state

    target = max(state.min_zoom_index, min(target_index, len(levels) - 1))
    pan = zoom_about_point(state.pan, screen_point, state.zoom_index, target)
    return replace(
        state,
        zoom_index=target,
        pan=clamp_pan(pan, world_size(levels, target), state.viewport_size),
    )


def _axis_pannable(
    state: ViewportState, levels: Sequence[LevelInfo], direction: PanDirection
) -> bool:
    world = world_size(levels, state.zoom_index)
    view = state.viewport_size
    if direction in (PanDirection.LEFT, PanDirection.RIGHT):
        return world.width > view.width
    return world.height > view.height


def pan_state(
    state: ViewportState,
    levels: Sequence[LevelInfo],
    direction: PanDirection,
    step: float = PAN_STEP_FRACTION,
) -> ViewportState | None:
    """Pan by a fraction of the viewport.

    Returns None when the axis cannot pan because the world fits inside
    the viewport on it.
    """
    direction = PanDirection(direction)
    if not _axis_pannable(state, levels, direction):
        return None

    view = state.viewport_size
    dx = dy = 0.0
    if direction is PanDirection.LEFT:
        dx = -view.width * step
    elif direction is PanDirection.RIGHT:
        dx = view.width * step
    elif direction is PanDirection.UP:
        dy = -view.height * step
    else:
        dy = view.height * step

    pan = Point(state.pan.x + dx, state.pan.y + dy)
    return replace(
        state,
        pan=clamp_pan(pan, world_size(levels, state.zoom_index), view),
    )


def can_pan(
    state: ViewportState, levels: Sequence[LevelInfo], direction: PanDirection
) -> bool:
    """Whether a pan button in ``direction`` would move the view.

    The far edge has a 1px tolerance for float rounding.
    """
    direction = PanDirection(direction)
    if not _axis_pannable(state, levels, direction):
        return False

    world = world_size(levels, state.zoom_index)
    view = state.viewport_size
    if direction is PanDirection.LEFT:
        return state.pan.x > 0
    if direction is PanDirection.RIGHT:
        return state.pan.x < world.width - view.width - 1
    if direction is PanDirection.UP:
        return state.pan.y > 0
    return state.pan.y < world.height - view.height - 1


def visible_tile_range(
    pan: Point,
    view: Size,
    info: LevelInfo,
    tile_size: int = TILE_SIZE,
) -> tuple[range, range]:
    """Rows and columns of ``info``'s grid that intersect the viewport.

    Returns:
        Tuple of (rows, cols) ranges, possibly empty
    """
    row_start = max(0, math.floor(pan.y / tile_size))
    row_end = min(info.rows, math.ceil((pan.y + view.height) / tile_size))
    col_start = max(0, math.floor(pan.x / tile_size))
    col_end = min(info.cols, math.ceil((pan.x + view.width) / tile_size))
    return range(row_start, max(row_start, row_end)), range(col_start, max(col_start, col_end))


def is_tile_visible(
    state: ViewportState,
    levels: Sequence[LevelInfo],
    level: int,
    row: int,
    col: int,
    tile_size: int = TILE_SIZE,
) -> bool:
    """Whether a tile would be drawn in a frame composed for ``state``."""
    if level != state.zoom_index:
        return False
    rows, cols = visible_tile_range(
        state.pan, state.viewport_size, levels[level], tile_size
    )
    return row in rows and col in cols


def displayed_zoom(state: ViewportState) -> int:
    """Zoom factor relative to the fitted view (1, 2, 4, ...)."""
    return 2 ** (state.zoom_index - state.min_zoom_index)


def displayed_resolution(
    state: ViewportState, levels: Sequence[LevelInfo]
) -> tuple[int, int]:
    """Extent of the source image currently on screen, in source pixels."""
    world = world_size(levels, state.zoom_index)
    scale = scale_for(state.zoom_index, len(levels))
    view = state.viewport_size
    return (
        round(min(world.width, view.width) * scale),
        round(min(world.height, view.height) * scale),
    )


def cursor_action(
    state: ViewportState, num_levels: int, modified: bool
) -> CursorAction:
    """Action a plain (or shift-modified) click would take."""
    if modified:
        if state.zoom_index > state.min_zoom_index:
            return CursorAction.ZOOM_OUT
    elif state.zoom_index < num_levels - 1:
        return CursorAction.ZOOM_IN
    return CursorAction.NONE
