import math

import pytest

from antarctica_map.services.events import EventBus, EventType, WarningEvent
from antarctica_map.services.geometry import Size, tiles_per_edge
from antarctica_map.services.resolver import (
    FALLBACK_COORDINATE,
    ResolverContext,
    TileCoordinate,
    TileCoordinateResolver,
)


def _resolver(image=(8192, 8192), tile=(512, 512)):
    events = EventBus()
    received = []
    events.subscribe(received.append)
    context = ResolverContext.for_sizes(Size(*image), Size(*tile))
    return TileCoordinateResolver(context, events), received


def test_context_derives_max_level_index():
    assert ResolverContext.for_sizes(Size(8192, 8192), Size(512, 512)).max_level_index == 4
    assert ResolverContext.for_sizes(Size(512, 512), Size(512, 512)).max_level_index == 0
    assert ResolverContext.for_sizes(Size(256, 256), Size(512, 512)).max_level_index == 0


@pytest.mark.parametrize("scale", [0.0, -1.0, -1e-300, math.inf, -math.inf, math.nan])
def test_invalid_scale_falls_back_with_one_warning(scale):
    resolver, received = _resolver()

    coordinate = resolver.resolve((100.0, 200.0), scale)

    assert coordinate == TileCoordinate(0, 0, 0)
    assert len(received) == 1
    assert isinstance(received[0], WarningEvent)
    assert received[0].type is EventType.WARNING
    assert received[0].message == "Received invalid scale"


def test_single_level_pyramid_always_resolves_to_origin_tile():
    resolver, received = _resolver(image=(512, 512), tile=(512, 512))

    for origin in [(0, 0), (511, 511), (10_000, 10_000), (-50, 3)]:
        assert resolver.resolve(origin, 1.0) == TileCoordinate(0, 0, 0)
    assert received == []


def test_full_resolution_scale_selects_deepest_level():
    resolver, _ = _resolver()

    coordinate = resolver.resolve((512 * 5, 512 * 9), 1.0)

    assert coordinate == TileCoordinate(column=5, row=9, level=4)


def test_zoomed_out_scale_selects_shallower_level():
    resolver, _ = _resolver()

    # At scale 0.125 the 8192px image is drawn at 1024px: two tiles per edge.
    coordinate = resolver.resolve((4096 + 10, 100), 0.125)

    assert coordinate == TileCoordinate(column=1, row=0, level=1)


def test_columns_and_rows_clamp_to_grid():
    resolver, _ = _resolver()

    far = resolver.resolve((1e12, 1e12), 1.0)
    negative = resolver.resolve((-1e6, -5.0), 1.0)

    assert far == TileCoordinate(column=15, row=15, level=4)
    assert negative == TileCoordinate(column=0, row=0, level=4)


def test_scales_beyond_full_resolution_clamp_to_max_level():
    resolver, received = _resolver()

    coordinate = resolver.resolve((0, 0), 1e300)

    assert coordinate.level == 4
    assert received == []


def test_tiny_scale_clamps_to_level_zero():
    resolver, received = _resolver()

    coordinate = resolver.resolve((1e9, 1e9), math.ulp(0.0))

    assert coordinate == TileCoordinate(0, 0, 0)
    assert received == []


@pytest.mark.parametrize(
    "scale", [1e-12, 0.001, 0.0625, 0.25, 0.5, 0.999, 1.0, 3.0, 1e9]
)
@pytest.mark.parametrize("origin", [(0, 0), (777.7, 123.4), (8191, 8191), (4e5, 3e3)])
def test_resolved_coordinates_stay_in_range(scale, origin):
    resolver, _ = _resolver()

    coordinate = resolver.resolve(origin, scale)

    assert 0 <= coordinate.level <= resolver.context.max_level_index
    edge = tiles_per_edge(coordinate.level)
    assert 0 <= coordinate.column <= edge - 1
    assert 0 <= coordinate.row <= edge - 1


def test_non_finite_column_position_warns_about_x_axis():
    resolver, received = _resolver()

    coordinate = resolver.resolve((math.inf, 10.0), 1.0)

    assert coordinate == FALLBACK_COORDINATE
    assert [event.axis for event in received] == ["x"]
    assert "Column" in received[0].message


def test_non_finite_row_position_warns_about_y_axis():
    resolver, received = _resolver()

    coordinate = resolver.resolve((10.0, math.nan), 1.0)

    assert coordinate == FALLBACK_COORDINATE
    assert [event.axis for event in received] == ["y"]
    assert "Row" in received[0].message


def test_overflowing_position_falls_back():
    resolver, received = _resolver()

    coordinate = resolver.resolve((1e308, 0.0), 1e10)

    assert coordinate == FALLBACK_COORDINATE
    assert len(received) == 1


def test_integer_scale_too_large_for_a_float_is_invalid():
    resolver, received = _resolver()

    coordinate = resolver.resolve((0, 0), 10**400)

    assert coordinate == FALLBACK_COORDINATE
    assert [event.message for event in received] == ["Received invalid scale"]


@pytest.mark.parametrize(
    "origin, axis",
    [((10**400, 0), "x"), ((-(10**400), 0), "x"), ((0, 10**400), "y")],
)
def test_integer_origin_too_large_for_a_float_warns_about_its_axis(origin, axis):
    resolver, received = _resolver()

    coordinate = resolver.resolve(origin, 1.0)

    assert coordinate == FALLBACK_COORDINATE
    assert [event.axis for event in received] == [axis]


def test_zero_tile_height_is_caught_as_non_finite_row():
    context = ResolverContext(image_size=Size(512, 512), tile_size=Size(512, 0), max_level_index=0)
    received = []
    events = EventBus()
    events.subscribe(received.append)

    coordinate = TileCoordinateResolver(context, events).resolve((10, 10), 1.0)

    assert coordinate == FALLBACK_COORDINATE
    assert len(received) == 1
    assert received[0].axis == "y"


def test_zero_tile_width_falls_back_with_one_warning():
    context = ResolverContext(image_size=Size(512, 512), tile_size=Size(0, 512), max_level_index=0)
    received = []
    events = EventBus()
    events.subscribe(received.append)

    coordinate = TileCoordinateResolver(context, events).resolve((10, 10), 1.0)

    assert coordinate == FALLBACK_COORDINATE
    assert len(received) == 1


def test_resolver_without_subscribers_still_resolves():
    context = ResolverContext.for_sizes(Size(1024, 1024), Size(512, 512))

    assert TileCoordinateResolver(context).resolve((600, 0), 1.0) == TileCoordinate(1, 0, 1)


def test_malformed_origin_is_a_contract_error():
    resolver, _ = _resolver()

    with pytest.raises(TypeError):
        resolver.resolve((1.0, 2.0, 3.0), 1.0)
    with pytest.raises(TypeError):
        resolver.resolve(None, 1.0)


def test_coordinate_rejects_negative_values():
    with pytest.raises(ValueError):
        TileCoordinate(column=-1, row=0, level=0)


def test_coordinate_description_and_equality():
    coordinate = TileCoordinate(column=3, row=1, level=2)

    assert coordinate.description == "2_3_1"
    assert str(coordinate) == "2_3_1"
    assert coordinate == TileCoordinate(3, 1, 2)
    assert len({coordinate, TileCoordinate(3, 1, 2)}) == 1
