from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date as dt_date

from .services.geometry import Size
from .services.map_request import (
    DEFAULT_DATE,
    DEFAULT_LAYER,
    DEFAULT_WMS_ENDPOINT,
    Layer,
    MapRequestParams,
)
from .services.network import DEFAULT_GRACE_PERIOD, DEFAULT_MAX_CONCURRENT_REQUESTS

logger = logging.getLogger(__name__)

WMS_URL_ENV = "ANTARCTICA_MAP_WMS_URL"
MAX_CONCURRENT_REQUESTS_ENV = "ANTARCTICA_MAP_MAX_CONCURRENT_REQUESTS"
TILE_SIZE_ENV = "ANTARCTICA_MAP_TILE_SIZE"
IMAGE_SIZE_ENV = "ANTARCTICA_MAP_IMAGE_SIZE"
GRACE_PERIOD_ENV = "ANTARCTICA_MAP_GRACE_PERIOD"
REQUEST_TIMEOUT_ENV = "ANTARCTICA_MAP_REQUEST_TIMEOUT"
LAYER_ENV = "ANTARCTICA_MAP_LAYER"
DATE_ENV = "ANTARCTICA_MAP_DATE"

DEFAULT_TILE_PIXELS = 512
DEFAULT_IMAGE_PIXELS = 8192
DEFAULT_REQUEST_TIMEOUT = 60.0


def _env(name: str) -> str:
    return os.getenv(name, "").strip()


def _positive_int(name: str, default: int) -> int:
    raw_value = _env(name)
    if not raw_value:
        return default
    try:
        value = int(raw_value)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer.", name, raw_value)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive.", name, raw_value)
        return default
    return value


def _non_negative_float(name: str, default: float) -> float:
    raw_value = _env(name)
    if not raw_value:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number.", name, raw_value)
        return default
    return max(0.0, value)


def _layer(default: Layer) -> Layer:
    raw_value = _env(LAYER_ENV)
    if not raw_value:
        return default
    try:
        return Layer(raw_value)
    except ValueError:
        logger.warning("Ignoring unknown imagery layer %r; using %s.", raw_value, default.value)
        return default


def _date(default: dt_date) -> dt_date:
    raw_value = _env(DATE_ENV)
    if not raw_value:
        return default
    try:
        return dt_date.fromisoformat(raw_value[:10])
    except ValueError:
        logger.warning("Ignoring %s=%r: expected YYYY-MM-DD.", DATE_ENV, raw_value)
        return default


@dataclass(frozen=True)
class Settings:
    wms_url: str = DEFAULT_WMS_ENDPOINT
    max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS
    tile_pixels: int = DEFAULT_TILE_PIXELS
    image_pixels: int = DEFAULT_IMAGE_PIXELS
    grace_period: float = DEFAULT_GRACE_PERIOD
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    layer: Layer = DEFAULT_LAYER
    date: dt_date = DEFAULT_DATE

    @property
    def tile_size(self) -> Size:
        return Size(self.tile_pixels, self.tile_pixels)

    @property
    def image_size(self) -> Size:
        return Size(self.image_pixels, self.image_pixels)

    def map_params(self) -> MapRequestParams:
        return MapRequestParams.antarctica(
            date=self.date,
            layer=self.layer,
            width=self.tile_pixels,
            height=self.tile_pixels,
        )


def load_settings() -> Settings:
    """Read settings from the environment, falling back to defaults on bad values."""

    return Settings(
        wms_url=_env(WMS_URL_ENV) or DEFAULT_WMS_ENDPOINT,
        max_concurrent_requests=_positive_int(
            MAX_CONCURRENT_REQUESTS_ENV, DEFAULT_MAX_CONCURRENT_REQUESTS
        ),
        tile_pixels=_positive_int(TILE_SIZE_ENV, DEFAULT_TILE_PIXELS),
        image_pixels=_positive_int(IMAGE_SIZE_ENV, DEFAULT_IMAGE_PIXELS),
        grace_period=_non_negative_float(GRACE_PERIOD_ENV, DEFAULT_GRACE_PERIOD),
        request_timeout=_non_negative_float(REQUEST_TIMEOUT_ENV, DEFAULT_REQUEST_TIMEOUT)
        or DEFAULT_REQUEST_TIMEOUT,
        layer=_layer(DEFAULT_LAYER),
        date=_date(DEFAULT_DATE),
    )
