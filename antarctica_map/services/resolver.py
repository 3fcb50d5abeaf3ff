from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

from .events import EventBus, WarningEvent
from .geometry import Point, Size, level_by_zoom_scale, max_level, tiles_per_edge

logger = logging.getLogger(__name__)

# Smallest positive (subnormal) double, the floor applied to accepted scales.
_SMALLEST_SCALE = math.ulp(0.0)


@dataclass(frozen=True)
class TileCoordinate:
    """Column, row and zero-based level of one tile in the quadtree."""

    column: int
    row: int
    level: int

    def __post_init__(self) -> None:
        if self.column < 0 or self.row < 0 or self.level < 0:
            raise ValueError(
                f"Tile coordinates must be non-negative (column={self.column}, "
                f"row={self.row}, level={self.level})."
            )

    @property
    def description(self) -> str:
        return f"{self.level}_{self.column}_{self.row}"

    def __str__(self) -> str:
        return self.description


FALLBACK_COORDINATE = TileCoordinate(column=0, row=0, level=0)


@dataclass(frozen=True)
class ResolverContext:
    image_size: Size
    tile_size: Size
    max_level_index: int

    @classmethod
    def for_sizes(cls, image_size: Size, tile_size: Size) -> "ResolverContext":
        image_size = Size(*image_size)
        tile_size = Size(*tile_size)
        try:
            computed_levels = int(max(max_level(image_size, tile_size), 1))
        except (ValueError, ZeroDivisionError, OverflowError):
            logger.warning(
                "Cannot derive detail levels for image %s and tile %s; using a single level.",
                image_size,
                tile_size,
            )
            computed_levels = 1
        return cls(
            image_size=image_size,
            tile_size=tile_size,
            max_level_index=max(0, computed_levels - 1),
        )


def _clamp(value: int, lower: int, upper: int) -> int:
    return min(max(value, lower), upper)


def _floor_clamp(value: float, lower: int, upper: int) -> int:
    if math.isnan(value):
        return lower
    if math.isinf(value):
        return upper if value > 0 else lower
    return _clamp(int(math.floor(value)), lower, upper)


def _as_point(origin: Sequence[float]) -> Point:
    if isinstance(origin, Point):
        return origin
    try:
        x, y = origin
    except (TypeError, ValueError) as exc:
        raise TypeError(f"Viewport origin must be an (x, y) pair, got {origin!r}") from exc
    return Point(_as_axis(x), _as_axis(y))


def _as_axis(value: float) -> float:
    try:
        return float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf


class TileCoordinateResolver:
    """Map a viewport origin and zoom scale onto a clamped tile coordinate.

    ``resolve`` never raises for numeric input. Invalid scales and non-finite
    intermediate results fall back to ``(0, 0, 0)`` and emit exactly one
    warning event.
    """

    def __init__(self, context: ResolverContext, events: EventBus | None = None) -> None:
        self.context = context
        self.events = events or EventBus()

    def resolve(self, origin: Sequence[float], scale: float) -> TileCoordinate:
        point = _as_point(origin)

        try:
            scale = float(scale)
        except (TypeError, ValueError, OverflowError):
            scale = math.nan

        if not math.isfinite(scale) or scale <= 0:
            self._warn("Received invalid scale", value=scale)
            return FALLBACK_COORDINATE

        scale = max(scale, _SMALLEST_SCALE)
        image_size = self.context.image_size
        tile_size = self.context.tile_size

        try:
            raw_level = level_by_zoom_scale(scale, image_size, tile_size)
        except ZeroDivisionError:
            self._warn("Level calculation divided by a zero tile width", value=scale)
            return FALLBACK_COORDINATE
        except ValueError:
            # log2 of an underflowed (zero) product: as zoomed out as possible.
            raw_level = -math.inf

        level_index = _floor_clamp(raw_level - 1, 0, self.context.max_level_index)
        edge = tiles_per_edge(level_index)

        column_position = _axis_position(point.x, tile_size.width, scale)
        if not math.isfinite(column_position):
            self._warn(
                "Column calculation produced non-finite value", value=point.x, axis="x"
            )
            return FALLBACK_COORDINATE

        row_position = _axis_position(point.y, tile_size.height, scale)
        if not math.isfinite(row_position):
            self._warn("Row calculation produced non-finite value", value=point.y, axis="y")
            return FALLBACK_COORDINATE

        column = _floor_clamp(column_position, 0, edge - 1)
        row = _floor_clamp(row_position, 0, edge - 1)
        return TileCoordinate(column=column, row=row, level=level_index)

    def _warn(self, message: str, *, value: float, axis: str | None = None) -> None:
        self.events.emit(WarningEvent(message=message, value=value, axis=axis))


def _axis_position(offset: float, tile_length: float, scale: float) -> float:
    try:
        return offset / tile_length * scale
    except ZeroDivisionError:
        return math.nan
