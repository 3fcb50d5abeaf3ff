"""Service utilities exposed by the ``antarctica_map.services`` package."""

from .events import EventBus, EventType, ErrorEvent, TileLoadedEvent, TileRequestEvent, WarningEvent
from .geometry import BoundingBox, Point, Size
from .map_request import Layer, MapRequestParams
from .network import AsyncNetworkProvider, BadResponseError, FetchError, NetworkProvider
from .resolver import ResolverContext, TileCoordinate, TileCoordinateResolver
from .tile_source import InvalidURLError, TileDecodeError, TileError, TileFetchError, TileSource

__all__ = [
    "AsyncNetworkProvider",
    "BadResponseError",
    "BoundingBox",
    "ErrorEvent",
    "EventBus",
    "EventType",
    "FetchError",
    "InvalidURLError",
    "Layer",
    "MapRequestParams",
    "NetworkProvider",
    "Point",
    "ResolverContext",
    "Size",
    "TileCoordinate",
    "TileCoordinateResolver",
    "TileDecodeError",
    "TileError",
    "TileFetchError",
    "TileLoadedEvent",
    "TileRequestEvent",
    "TileSource",
    "WarningEvent",
]
