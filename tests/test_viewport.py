"""Tests for viewport state transitions and coordinate transforms."""

from __future__ import annotations

import itertools

import pytest

from gigaview.core.types import LevelInfo, Point, Size
from gigaview.core.viewport import (
    CursorAction,
    PanDirection,
    ViewportState,
    can_pan,
    clamp_pan,
    cursor_action,
    displayed_resolution,
    displayed_zoom,
    find_base_index,
    fit_viewport_size,
    initial_state,
    is_tile_visible,
    pan_state,
    visible_tile_range,
    zoom_about_point,
    zoom_state,
)
from gigaview.preprocess.metadata import calculate_levels

VIEW = Size(600.0, 400.0)


@pytest.fixture
def levels() -> list[LevelInfo]:
    """4000x3000 source: 6 levels, level 2 is 500x375 and level 3 is 1000x750."""
    return calculate_levels(4000, 3000)


@pytest.fixture
def zoomed(levels) -> ViewportState:
    """State at level 3 (1000x750 world) with room to pan on both axes."""
    return ViewportState(zoom_index=3, min_zoom_index=2, pan=Point(100.0, 50.0), viewport_size=VIEW)


class TestClampPan:
    """Tests for clamp_pan()."""

    def test_within_bounds_unchanged(self) -> None:
        assert clamp_pan(Point(100, 50), Size(1000, 750), VIEW) == (100, 50)

    def test_clamps_to_far_edge(self) -> None:
        assert clamp_pan(Point(900, 900), Size(1000, 750), VIEW) == (400, 350)

    def test_clamps_negative_to_zero(self) -> None:
        assert clamp_pan(Point(-10, -0.5), Size(1000, 750), VIEW) == (0, 0)

    def test_undersized_world_is_centred(self) -> None:
        assert clamp_pan(Point(123, 456), Size(500, 375), VIEW) == (-50, -12.5)

    def test_mixed_axes(self) -> None:
        assert clamp_pan(Point(700, 5), Size(1000, 300), VIEW) == (400, -50)

    def test_world_equal_to_view_pins_zero(self) -> None:
        assert clamp_pan(Point(30, 30), Size(600, 400), VIEW) == (0, 0)

    @pytest.mark.parametrize("x, y", [(-500, -500), (0, 0), (250, 125), (5000, 5000)])
    def test_idempotent(self, x: float, y: float) -> None:
        world = Size(1000, 750)
        once = clamp_pan(Point(x, y), world, VIEW)
        assert clamp_pan(once, world, VIEW) == once
        assert 0 <= once.x <= world.width - VIEW.width
        assert 0 <= once.y <= world.height - VIEW.height


class TestFitViewportSize:
    """Tests for fit_viewport_size()."""

    def test_width_bound(self) -> None:
        size = fit_viewport_size(Size(1000, 1000), Size(4000, 3000))
        assert size.width == pytest.approx(950)
        assert size.height == pytest.approx(712.5)

    def test_height_bound(self) -> None:
        size = fit_viewport_size(Size(1000, 500), Size(4000, 3000))
        assert size.height == pytest.approx(475)
        assert size.width == pytest.approx(475 * 4 / 3)

    def test_empty_area(self) -> None:
        assert fit_viewport_size(Size(0, 500), Size(4000, 3000)) == (0, 0)


class TestInitialState:
    """Tests for find_base_index() and initial_state()."""

    def test_600x400_view_of_4000x3000(self, levels) -> None:
        assert find_base_index(levels, VIEW) == 2

        state = initial_state(levels, VIEW)
        assert state.zoom_index == 2
        assert state.min_zoom_index == 2
        assert state.pan == (-50, -12.5)
        assert state.viewport_size == VIEW

    def test_nothing_fits_defaults_to_zero(self) -> None:
        levels = calculate_levels(1024, 1024)
        assert find_base_index(levels, Size(100, 100)) == 0
        state = initial_state(levels, Size(100, 100))
        assert state.zoom_index == 0
        assert state.pan == (0, 0)

    def test_scan_stops_at_first_level_that_does_not_fit(self) -> None:
        levels = [
            LevelInfo(level=0, downsample=4, width=50, height=50, cols=1, rows=1),
            LevelInfo(level=1, downsample=2, width=500, height=10, cols=4, rows=1),
            LevelInfo(level=2, downsample=1, width=90, height=90, cols=1, rows=1),
        ]
        assert find_base_index(levels, Size(100, 100)) == 0

    def test_level_equal_to_view_fits(self) -> None:
        levels = calculate_levels(1024, 1024)
        assert find_base_index(levels, Size(256, 256)) == 1

    def test_zero_view_is_uninitialized(self, levels) -> None:
        assert initial_state(levels, Size(0, 0)) is None
        assert initial_state([], VIEW) is None


class TestZoom:
    """Tests for zoom_about_point() and zoom_state()."""

    def test_worked_example(self) -> None:
        # pan (100,50), point (300,200), scale 4 -> 2: world (400,250) -> (800,500)
        assert zoom_about_point(Point(100, 50), Point(300, 200), 3, 4) == (500, 300)

    def test_zoom_state_commits_clamped_pan(self, levels, zoomed) -> None:
        state = zoom_state(zoomed, levels, 4, Point(300, 200))
        assert state.zoom_index == 4
        assert state.pan == (500, 300)
        assert state.min_zoom_index == zoomed.min_zoom_index

    def test_same_level_is_noop(self, levels, zoomed) -> None:
        assert zoom_state(zoomed, levels, 3, Point(10, 10)) is zoomed

    def test_target_clamped_to_range(self, levels, zoomed) -> None:
        assert zoom_state(zoomed, levels, 99, Point(0, 0)).zoom_index == 5
        assert zoom_state(zoomed, levels, -3, Point(0, 0)).zoom_index == 2

    def test_zoom_out_to_fitted_level_recentres(self, levels, zoomed) -> None:
        state = zoom_state(zoomed, levels, 2, Point(300, 200))
        assert state.pan == (-50, -12.5)

    @pytest.mark.parametrize(
        "px, py", list(itertools.product([0.0, 123.5, 300.0, 599.0], [0.0, 77.25, 399.0]))
    )
    def test_point_under_cursor_is_stationary(self, levels, px: float, py: float) -> None:
        start = ViewportState(4, 2, Point(700.0, 500.0), VIEW)
        screen = Point(px, py)
        before = (start.pan.x + screen.x, start.pan.y + screen.y)

        zoomed_in = zoom_state(start, levels, 5, screen)
        after = (zoomed_in.pan.x + screen.x, zoomed_in.pan.y + screen.y)
        assert abs(after[0] / 2 - before[0]) < 1
        assert abs(after[1] / 2 - before[1]) < 1

        back = zoom_state(zoomed_in, levels, 4, screen)
        assert abs(back.pan.x - start.pan.x) < 1
        assert abs(back.pan.y - start.pan.y) < 1

    def test_repeated_round_trips_do_not_drift(self, levels) -> None:
        state = ViewportState(4, 2, Point(733.3, 511.7), VIEW)
        screen = Point(211.9, 143.1)
        for _ in range(50):
            state = zoom_state(state, levels, 5, screen)
            state = zoom_state(state, levels, 4, screen)
        assert state.pan.x == pytest.approx(733.3, abs=1e-6)
        assert state.pan.y == pytest.approx(511.7, abs=1e-6)


class TestPan:
    """Tests for pan_state() and can_pan()."""

    def test_pan_by_quarter_viewport(self, levels, zoomed) -> None:
        assert pan_state(zoomed, levels, PanDirection.RIGHT).pan == (250, 50)
        assert pan_state(zoomed, levels, PanDirection.DOWN).pan == (100, 150)
        assert pan_state(zoomed, levels, PanDirection.LEFT).pan == (0, 50)
        assert pan_state(zoomed, levels, PanDirection.UP).pan == (100, 0)

    def test_accepts_direction_strings(self, levels, zoomed) -> None:
        assert pan_state(zoomed, levels, "right").pan == (250, 50)

    def test_disabled_axis_returns_none(self, levels) -> None:
        fitted = initial_state(levels, VIEW)
        for direction in PanDirection:
            assert pan_state(fitted, levels, direction) is None
            assert not can_pan(fitted, levels, direction)

    def test_repeated_pan_stops_at_edge(self, levels, zoomed) -> None:
        state = zoomed
        for _ in range(10):
            state = pan_state(state, levels, PanDirection.RIGHT)
        assert state.pan.x == 400
        assert pan_state(state, levels, PanDirection.RIGHT) == state

    def test_can_pan_at_edges(self, levels) -> None:
        at_origin = ViewportState(3, 2, Point(0, 0), VIEW)
        assert not can_pan(at_origin, levels, PanDirection.LEFT)
        assert not can_pan(at_origin, levels, PanDirection.UP)
        assert can_pan(at_origin, levels, PanDirection.RIGHT)
        assert can_pan(at_origin, levels, PanDirection.DOWN)

        near_far_edge = ViewportState(3, 2, Point(399.5, 349.5), VIEW)
        assert not can_pan(near_far_edge, levels, PanDirection.RIGHT)
        assert not can_pan(near_far_edge, levels, PanDirection.DOWN)
        assert can_pan(near_far_edge, levels, PanDirection.LEFT)


class TestVisibleTiles:
    """Tests for visible_tile_range() and is_tile_visible()."""

    def test_interior_window(self, levels) -> None:
        rows, cols = visible_tile_range(Point(100, 50), VIEW, levels[3])
        assert rows == range(0, 4)
        assert cols == range(0, 6)

    def test_clipped_to_grid_when_centred(self, levels) -> None:
        info = levels[2]
        assert (info.cols, info.rows) == (4, 3)
        rows, cols = visible_tile_range(Point(-50, -12.5), VIEW, info)
        assert rows == range(0, 3)
        assert cols == range(0, 4)

    def test_tile_boundaries(self, levels) -> None:
        rows, cols = visible_tile_range(Point(128, 256), Size(128, 128), levels[3])
        assert rows == range(2, 3)
        assert cols == range(1, 2)

    def test_is_tile_visible(self, levels, zoomed) -> None:
        assert is_tile_visible(zoomed, levels, 3, 0, 0)
        assert is_tile_visible(zoomed, levels, 3, 3, 5)
        assert not is_tile_visible(zoomed, levels, 3, 4, 0)
        assert not is_tile_visible(zoomed, levels, 3, 0, 6)
        assert not is_tile_visible(zoomed, levels, 2, 0, 0)


class TestAffordances:
    """Tests for displayed zoom, displayed resolution and cursor action."""

    def test_displayed_zoom(self) -> None:
        assert displayed_zoom(ViewportState(2, 2, Point(0, 0), VIEW)) == 1
        assert displayed_zoom(ViewportState(5, 2, Point(0, 0), VIEW)) == 8

    def test_displayed_resolution(self, levels, zoomed) -> None:
        fitted = initial_state(levels, VIEW)
        assert displayed_resolution(fitted, levels) == (4000, 3000)
        assert displayed_resolution(zoomed, levels) == (2400, 1600)

    def test_cursor_action(self, levels) -> None:
        fitted = initial_state(levels, VIEW)
        assert cursor_action(fitted, 6, modified=False) is CursorAction.ZOOM_IN
        assert cursor_action(fitted, 6, modified=True) is CursorAction.NONE

        finest = ViewportState(5, 2, Point(0, 0), VIEW)
        assert cursor_action(finest, 6, modified=False) is CursorAction.NONE
        assert cursor_action(finest, 6, modified=True) is CursorAction.ZOOM_OUT
        assert CursorAction.ZOOM_IN.value == "zoom-in"
