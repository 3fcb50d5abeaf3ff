from __future__ import annotations

import io
import logging
import threading
from typing import Dict, List

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import Response
from PIL import Image
from pydantic import BaseModel
from sqlmodel import Session

from .config import Settings, load_settings
from .database import get_session, init_db
from .services.events import EventBus, log_event
from .services.geometry import tiles_per_edge, zoom_scale_by_level
from .services.map_request import LAYER_DESCRIPTIONS
from .services.network import NetworkProvider
from .services.resolver import TileCoordinate
from .services.tile_source import InvalidURLError, TileDecodeError, TileFetchError, TileSource
from .services.usage import UsageRecorder, list_usage

app = FastAPI(title="Antarctica Map Tiles", version="0.1.0")

logger = logging.getLogger(__name__)

_tile_source: TileSource | None = None
_tile_source_lock = threading.Lock()


class TileCoordinatePayload(BaseModel):
    column: int
    row: int
    level: int
    description: str
    tiles_per_edge: int


class MapConfigPayload(BaseModel):
    wms_url: str
    layer: str
    layer_description: str | None = None
    date: str
    bbox: str
    crs: str
    tile_size: int
    image_size: int
    max_level_index: int
    minimum_zoom_scale: float
    max_concurrent_requests: int


def _build_tile_source(settings: Settings) -> TileSource:
    params = settings.map_params()
    events = EventBus()
    events.subscribe(log_event)
    events.subscribe(UsageRecorder(params.layer))
    provider = NetworkProvider(
        max_concurrent_requests=settings.max_concurrent_requests,
        grace_period=settings.grace_period,
        timeout=settings.request_timeout,
    )
    logger.info(
        "Serving %s tiles for %s from %s (%d concurrent fetches)",
        params.layer.value,
        params.formatted_date,
        settings.wms_url,
        settings.max_concurrent_requests,
    )
    return TileSource(
        params,
        image_size=settings.image_size,
        tile_size=settings.tile_size,
        network_provider=provider,
        events=events,
        endpoint=settings.wms_url,
    )


def get_settings() -> Settings:
    return load_settings()


def get_tile_source() -> TileSource:
    global _tile_source
    with _tile_source_lock:
        if _tile_source is None:
            _tile_source = _build_tile_source(load_settings())
        return _tile_source


def _close_tile_source() -> None:
    global _tile_source
    with _tile_source_lock:
        source, _tile_source = _tile_source, None
    if source is not None and isinstance(source.network_provider, NetworkProvider):
        source.network_provider.close()


def _png_response(image: Image.Image) -> Response:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return Response(content=buffer.getvalue(), media_type="image/png")


def _coordinate_payload(coordinate: TileCoordinate) -> TileCoordinatePayload:
    return TileCoordinatePayload(
        column=coordinate.column,
        row=coordinate.row,
        level=coordinate.level,
        description=coordinate.description,
        tiles_per_edge=tiles_per_edge(coordinate.level),
    )


def _render(load) -> Response:
    try:
        image = load()
    except TileFetchError as exc:
        raise HTTPException(
            status_code=502, detail=f"Imagery service request failed: {exc.cause}"
        ) from exc
    except TileDecodeError as exc:
        raise HTTPException(
            status_code=502, detail=f"Imagery service returned an invalid image: {exc}"
        ) from exc
    except InvalidURLError as exc:
        logger.exception("Tile URL construction failed: %s", exc)
        raise HTTPException(status_code=500, detail="Imagery endpoint is misconfigured") from exc
    return _png_response(image)


@app.on_event("startup")
def on_startup() -> None:
    init_db()


@app.on_event("shutdown")
def on_shutdown() -> None:
    _close_tile_source()


@app.get("/api/config", response_model=MapConfigPayload)
def read_config(
    source: TileSource = Depends(get_tile_source),
    settings: Settings = Depends(get_settings),
) -> MapConfigPayload:
    params = source.params
    levels = source.max_level_index + 1
    return MapConfigPayload(
        wms_url=source.endpoint,
        layer=params.layer.value,
        layer_description=LAYER_DESCRIPTIONS.get(params.layer),
        date=params.formatted_date,
        bbox=params.bbox,
        crs=params.crs,
        tile_size=int(source.tile_size.width),
        image_size=int(source.image_size.width),
        max_level_index=source.max_level_index,
        minimum_zoom_scale=zoom_scale_by_level(levels),
        max_concurrent_requests=settings.max_concurrent_requests,
    )


@app.get("/api/tiles/resolve", response_model=TileCoordinatePayload)
def resolve_tile(
    x: float = Query(0.0),
    y: float = Query(0.0),
    scale: float = Query(...),
    source: TileSource = Depends(get_tile_source),
) -> TileCoordinatePayload:
    return _coordinate_payload(source.request_coordinate((x, y), scale))


@app.get("/api/tiles/{level}/{column}/{row}.png")
def read_tile(
    level: int,
    column: int,
    row: int,
    source: TileSource = Depends(get_tile_source),
) -> Response:
    try:
        coordinate = TileCoordinate(column=column, row=row, level=level)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if level > source.max_level_index:
        raise HTTPException(
            status_code=404,
            detail=f"Level {level} exceeds the deepest level ({source.max_level_index}).",
        )
    edge = tiles_per_edge(level)
    if column >= edge or row >= edge:
        raise HTTPException(
            status_code=404,
            detail=f"Tile {coordinate.description} is outside the {edge}x{edge} grid.",
        )

    return _render(lambda: source.load_tile(coordinate))


@app.get("/api/map.png")
def read_map(source: TileSource = Depends(get_tile_source)) -> Response:
    return _render(source.load_map)


@app.get("/api/usage")
def read_usage(session: Session = Depends(get_session)) -> List[Dict[str, object]]:
    return [
        {
            "layer": stat.layer,
            "tile_count": stat.tile_count,
            "bytes_loaded": stat.bytes_loaded,
            "average_tile_bytes": stat.average_tile_bytes,
            "last_loaded_at": stat.last_loaded_at,
        }
        for stat in list_usage(session)
    ]
