from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date as dt_date, datetime
from enum import Enum
from typing import Dict, Tuple

from .geometry import BoundingBox

DEFAULT_WMS_ENDPOINT = "https://gibs.earthdata.nasa.gov/wms/epsg3031/best/wms.cgi"
DEFAULT_IMAGE_FORMAT = "image/png"
DEFAULT_CRS = "EPSG:3031"
DEFAULT_DATE = dt_date(2023, 1, 1)

# Polar stereographic extent (metres) that covers the whole Antarctic continent.
ANTARCTICA_BOUNDS: Tuple[int, int, int, int] = (-4_000_000, -4_000_000, 4_000_000, 4_000_000)


class Layer(str, Enum):
    """GIBS layers published in the EPSG:3031 "best" endpoint."""

    MODIS_TERRA_TRUE_COLOR = "MODIS_Terra_CorrectedReflectance_TrueColor"
    MODIS_AQUA_TRUE_COLOR = "MODIS_Aqua_CorrectedReflectance_TrueColor"
    VIIRS_SNPP_TRUE_COLOR = "VIIRS_SNPP_CorrectedReflectance_TrueColor"
    VIIRS_NOAA20_TRUE_COLOR = "VIIRS_NOAA20_CorrectedReflectance_TrueColor"


LAYER_DESCRIPTIONS: Dict[Layer, str] = {
    Layer.MODIS_TERRA_TRUE_COLOR: "Terra MODIS corrected reflectance, true color (~250 m)",
    Layer.MODIS_AQUA_TRUE_COLOR: "Aqua MODIS corrected reflectance, true color (~250 m)",
    Layer.VIIRS_SNPP_TRUE_COLOR: "Suomi NPP VIIRS corrected reflectance, true color (~250 m)",
    Layer.VIIRS_NOAA20_TRUE_COLOR: "NOAA-20 VIIRS corrected reflectance, true color (~250 m)",
}

DEFAULT_LAYER = Layer.MODIS_TERRA_TRUE_COLOR


@dataclass(frozen=True)
class MapRequestParams:
    """Everything needed to ask the WMS service for imagery of one map view.

    Instances are immutable; a different date or extent means a new instance
    (see :meth:`with_date` and :meth:`with_bounds`).
    """

    min_x: int
    min_y: int
    max_x: int
    max_y: int
    width: int
    height: int
    date: dt_date = field(default=DEFAULT_DATE)
    layer: Layer = field(default=DEFAULT_LAYER)
    format: str = field(default=DEFAULT_IMAGE_FORMAT)
    crs: str = field(default=DEFAULT_CRS)

    def __post_init__(self) -> None:
        if self.min_x >= self.max_x:
            raise ValueError("min_x must be smaller than max_x.")
        if self.min_y >= self.max_y:
            raise ValueError("min_y must be smaller than max_y.")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Raster dimensions must be positive.")
        if isinstance(self.layer, str) and not isinstance(self.layer, Layer):
            object.__setattr__(self, "layer", Layer(self.layer))
        if isinstance(self.date, datetime):
            object.__setattr__(self, "date", self.date.date())
        elif not isinstance(self.date, dt_date):
            raise ValueError(f"Imagery date must be a calendar date, got {self.date!r}.")

    @classmethod
    def antarctica(
        cls,
        *,
        date: dt_date = DEFAULT_DATE,
        layer: Layer = DEFAULT_LAYER,
        width: int = 512,
        height: int = 512,
    ) -> "MapRequestParams":
        min_x, min_y, max_x, max_y = ANTARCTICA_BOUNDS
        return cls(
            min_x=min_x,
            min_y=min_y,
            max_x=max_x,
            max_y=max_y,
            width=width,
            height=height,
            date=date,
            layer=layer,
        )

    @property
    def bbox(self) -> str:
        return f"{self.min_x},{self.min_y},{self.max_x},{self.max_y}"

    @property
    def world_bounds(self) -> BoundingBox:
        return BoundingBox(self.min_x, self.min_y, self.max_x, self.max_y)

    @property
    def formatted_date(self) -> str:
        return self.date.isoformat()

    @property
    def cache_key(self) -> str:
        return "|".join(
            (
                self.layer.value,
                self.formatted_date,
                self.bbox,
                f"{self.width}x{self.height}",
            )
        )

    def with_date(self, date: dt_date) -> "MapRequestParams":
        return replace(self, date=date)

    def with_bounds(self, min_x: int, min_y: int, max_x: int, max_y: int) -> "MapRequestParams":
        return replace(self, min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)

    def describe(self) -> str:
        area = (self.max_x - self.min_x) * (self.max_y - self.min_y)
        return "\n".join(
            (
                "MapRequestParams:",
                f"  coordinates: ({self.min_x}, {self.min_y}) -> ({self.max_x}, {self.max_y})",
                f"  dimensions: {self.width}x{self.height}",
                f"  bbox: {self.bbox}",
                f"  area: {area} sq units",
                f"  date: {self.formatted_date}",
                f"  layer: {self.layer.value}",
                f"  format: {self.format}",
                f"  crs: {self.crs}",
            )
        )
