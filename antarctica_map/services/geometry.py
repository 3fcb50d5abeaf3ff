"""Tile pyramid math for the quadtree-tiled polar map.

All helpers here are pure: they take plain numbers or ``NamedTuple`` values and
never validate their inputs. Callers (the resolver and the tile source) are
responsible for only passing finite, positive scales.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:  # pragma: no cover - import only used for annotations
    from .resolver import TileCoordinate


class Size(NamedTuple):
    width: float
    height: float


class Point(NamedTuple):
    x: float
    y: float


class BoundingBox(NamedTuple):
    """Projected bounding box ordered as WMS 1.3.0 expects for EPSG:3031."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


UNIT_SIZE = Size(1, 1)


def level_by_zoom_scale(
    scale: float, full_size: Size, first_level_size: Size = UNIT_SIZE
) -> float:
    """Return the (fractional, one-based) level of detail for ``scale``."""

    return math.log2(scale * full_size.width / first_level_size.width) + 1


def max_level(full_size: Size, first_level_size: Size = UNIT_SIZE) -> float:
    """Number of levels needed to reach full resolution."""

    return level_by_zoom_scale(1.0, full_size, first_level_size)


def zoom_scale_by_level(level: float) -> float:
    return math.pow(2.0, -level)


def tiles_per_edge(level: int) -> int:
    return max(1, 1 << max(0, level))


def tile_geo_bounding_box(
    coordinate: "TileCoordinate", world_bounds: BoundingBox, tiles_per_edge: int
) -> BoundingBox:
    """Return the projected extent of ``coordinate`` inside ``world_bounds``.

    Tile rows grow downwards from the top of the viewport while the projected
    Y axis grows upwards, so rows are measured from ``max_y``. Columns share
    the projected X direction and are measured from ``min_x``.
    """

    cell_width = (world_bounds.max_x - world_bounds.min_x) / tiles_per_edge
    cell_height = (world_bounds.max_y - world_bounds.min_y) / tiles_per_edge

    min_x = world_bounds.min_x + coordinate.column * cell_width
    max_x = world_bounds.min_x + (coordinate.column + 1) * cell_width
    min_y = world_bounds.max_y - (coordinate.row + 1) * cell_height
    max_y = world_bounds.max_y - coordinate.row * cell_height
    return BoundingBox(min_x, min_y, max_x, max_y)
