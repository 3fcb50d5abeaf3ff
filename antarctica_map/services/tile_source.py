from __future__ import annotations

import asyncio
import inspect
import io
import logging
from typing import Sequence

import httpx
from PIL import Image, UnidentifiedImageError

from .events import ErrorEvent, EventBus, TileLoadedEvent, TileRequestEvent, log_event
from .geometry import BoundingBox, Size, tile_geo_bounding_box, tiles_per_edge
from .map_request import DEFAULT_WMS_ENDPOINT, MapRequestParams
from .network import (
    REQUEST_TIMEOUT,
    AsyncNetworkProvider,
    BadResponseError,
    FetchError,
    NetworkProvider,
)
from .resolver import ResolverContext, TileCoordinate, TileCoordinateResolver

logger = logging.getLogger(__name__)

DIRECT_MODE = "direct"
DEFAULT_TILE_SIZE = Size(512, 512)
DEFAULT_IMAGE_SIZE = Size(512, 512)


class TileError(Exception):
    """Base class for failures while loading a single tile."""


class InvalidURLError(TileError):
    pass


class TileFetchError(TileError):
    def __init__(self, message: str, cause: BaseException) -> None:
        super().__init__(f"{message}: {cause}")
        self.cause = cause


class TileDecodeError(TileError):
    pass


def build_wms_url(
    endpoint: str,
    params: MapRequestParams,
    bbox: BoundingBox,
    *,
    width: int,
    height: int,
) -> str:
    """Build a WMS 1.3.0 ``GetMap`` URL for ``bbox`` at ``width`` x ``height`` pixels.

    Bounding box values are truncated towards zero to whole projected units.
    """

    bbox_text = ",".join(str(int(value)) for value in bbox)
    url = (
        f"{endpoint}?version=1.3.0&service=WMS&request=GetMap"
        f"&format={params.format}"
        "&STYLE=default"
        f"&bbox={bbox_text}"
        f"&CRS={params.crs}"
        f"&HEIGHT={int(height)}"
        f"&WIDTH={int(width)}"
        f"&TIME={params.formatted_date}"
        f"&layers={params.layer.value}"
    )

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise InvalidURLError(f"Cannot build a WMS URL from {url!r}: {exc}") from exc
    if parsed.scheme not in {"http", "https"} or not parsed.host:
        raise InvalidURLError(f"WMS endpoint must be an absolute http(s) URL, got {endpoint!r}")
    return url


def decode_image(content: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise TileDecodeError(f"unable to decode tile image ({len(content)} bytes): {exc}") from exc
    return image


class TileSource:
    """Resolve viewport positions to tiles and load their imagery from a WMS endpoint.

    ``network_provider`` may be a :class:`NetworkProvider` (used by
    :meth:`load_tile`), an :class:`AsyncNetworkProvider` (used by
    :meth:`load_tile_async`) or ``None``, in which case every tile is loaded
    with a direct request and no deduplication.

    Every lifecycle step is published on ``events``. When no bus is passed in,
    the source creates one and mirrors it into :mod:`logging` unless
    ``log_events`` is disabled. A caller-supplied bus is left as wired.
    """

    def __init__(
        self,
        params: MapRequestParams,
        *,
        image_size: Sequence[float] = DEFAULT_IMAGE_SIZE,
        tile_size: Sequence[float] = DEFAULT_TILE_SIZE,
        network_provider: NetworkProvider | AsyncNetworkProvider | None = None,
        events: EventBus | None = None,
        endpoint: str = DEFAULT_WMS_ENDPOINT,
        log_events: bool = True,
    ) -> None:
        self.params = params
        self.image_size = Size(*image_size)
        self.tile_size = Size(*tile_size)
        self.network_provider = network_provider
        self.endpoint = endpoint
        self.events = events if events is not None else EventBus()
        if log_events and events is None:
            self.events.subscribe(log_event)
        self.context = ResolverContext.for_sizes(self.image_size, self.tile_size)
        self.resolver = TileCoordinateResolver(self.context, self.events)

    @property
    def max_level_index(self) -> int:
        return self.context.max_level_index

    def request_coordinate(self, origin: Sequence[float], scale: float) -> TileCoordinate:
        return self.resolver.resolve(origin, scale)

    def tile_bounds(self, coordinate: TileCoordinate) -> BoundingBox:
        _check_coordinate(coordinate)
        return tile_geo_bounding_box(
            coordinate, self.params.world_bounds, tiles_per_edge(coordinate.level)
        )

    def tile_url(self, coordinate: TileCoordinate) -> str:
        bbox = self.tile_bounds(coordinate)
        return self._build_url(
            bbox,
            width=int(self.tile_size.width),
            height=int(self.tile_size.height),
            coordinate=coordinate.description,
        )

    def map_url(self) -> str:
        return self._build_url(
            self.params.world_bounds,
            width=self.params.width,
            height=self.params.height,
            coordinate="map",
        )

    def load_tile(self, coordinate: TileCoordinate) -> Image.Image:
        """Fetch and decode one tile, blocking the calling thread."""

        url = self.tile_url(coordinate)
        return self._load(url, coordinate.description)

    async def load_tile_async(self, coordinate: TileCoordinate) -> Image.Image:
        url = self.tile_url(coordinate)
        return await self._load_async(url, coordinate.description)

    def load_map(self) -> Image.Image:
        """Fetch the whole extent of ``params`` as one ``width`` x ``height`` image."""

        return self._load(self.map_url(), "map")

    async def load_map_async(self) -> Image.Image:
        return await self._load_async(self.map_url(), "map")

    def _build_url(self, bbox: BoundingBox, *, width: int, height: int, coordinate: str) -> str:
        try:
            return build_wms_url(self.endpoint, self.params, bbox, width=width, height=height)
        except InvalidURLError as exc:
            self.events.emit(
                ErrorEvent(message=f"Failed to create URL: {exc}", coordinate=coordinate)
            )
            raise

    def _load(self, url: str, description: str) -> Image.Image:
        provider = self.network_provider
        if _is_async_provider(provider):
            raise TypeError("load_tile needs a blocking NetworkProvider; use load_tile_async instead.")

        mode = _provider_mode(provider)
        self.events.emit(TileRequestEvent(url=url, coordinate=description, mode=mode))
        try:
            content = provider.fetch(url) if provider is not None else _fetch_direct(url)
        except (FetchError, httpx.HTTPError) as exc:
            raise self._fetch_failed(url, description, exc) from exc
        return self._decode(content, url, description, mode)

    async def _load_async(self, url: str, description: str) -> Image.Image:
        provider = self.network_provider
        if not _is_async_provider(provider):
            return await asyncio.to_thread(self._load, url, description)

        mode = _provider_mode(provider)
        self.events.emit(TileRequestEvent(url=url, coordinate=description, mode=mode))
        try:
            content = await provider.fetch(url)
        except (FetchError, httpx.HTTPError) as exc:
            raise self._fetch_failed(url, description, exc) from exc
        return self._decode(content, url, description, mode)

    def _fetch_failed(self, url: str, description: str, exc: Exception) -> TileFetchError:
        self.events.emit(
            ErrorEvent(message="Failed to load tile data", url=url, coordinate=description)
        )
        return TileFetchError(f"failed to fetch tile {description}", exc)

    def _decode(self, content: bytes, url: str, description: str, mode: str) -> Image.Image:
        try:
            image = decode_image(content)
        except TileDecodeError:
            self.events.emit(
                ErrorEvent(message="Failed to decode tile image", url=url, coordinate=description)
            )
            raise
        self.events.emit(TileLoadedEvent(coordinate=description, byte_size=len(content), mode=mode))
        return image


def _is_async_provider(provider: object) -> bool:
    return provider is not None and inspect.iscoroutinefunction(getattr(provider, "fetch", None))


def _provider_mode(provider: object) -> str:
    if provider is None:
        return DIRECT_MODE
    return getattr(provider, "mode", NetworkProvider.mode)


def _check_coordinate(coordinate: object) -> None:
    if not isinstance(coordinate, TileCoordinate):
        raise TypeError(f"Expected a TileCoordinate, got {type(coordinate).__name__}")


def _fetch_direct(url: str) -> bytes:
    response = httpx.get(url, timeout=REQUEST_TIMEOUT, follow_redirects=True)
    if not 200 <= response.status_code <= 299:
        raise BadResponseError(url, response.status_code)
    return response.content
