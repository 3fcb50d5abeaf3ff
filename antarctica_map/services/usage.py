from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import List

from sqlalchemy import Update, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..database import init_db, session_scope
from ..models import TileUsageStat
from .events import TileEvent, TileLoadedEvent
from .map_request import Layer

_usage_initialized = False
_usage_lock = threading.Lock()


def _ensure_usage_table() -> None:
    global _usage_initialized
    with _usage_lock:
        if not _usage_initialized:
            init_db()
            _usage_initialized = True


def _increment_usage(session: Session, statement: Update) -> int:
    return session.connection().execute(statement).rowcount


def _apply_usage(session: Session, layer: str, byte_size: int, increment: int) -> TileUsageStat:
    now = datetime.now(UTC)
    statement = (
        update(TileUsageStat)
        .where(TileUsageStat.layer == layer)
        .values(
            tile_count=TileUsageStat.tile_count + increment,
            bytes_loaded=TileUsageStat.bytes_loaded + byte_size,
            last_loaded_at=now,
        )
    )
    if _increment_usage(session, statement) == 0:
        session.add(
            TileUsageStat(
                layer=layer, tile_count=increment, bytes_loaded=byte_size, last_loaded_at=now
            )
        )
        try:
            session.commit()
        except IntegrityError:
            # Another writer created the row first.
            session.rollback()
            _increment_usage(session, statement)
            session.commit()
    else:
        session.commit()

    return session.exec(select(TileUsageStat).where(TileUsageStat.layer == layer)).one()


def record_tile_usage(
    layer: Layer | str,
    *,
    byte_size: int = 0,
    increment: int = 1,
    session: Session | None = None,
) -> TileUsageStat | None:
    """Add ``increment`` decoded tiles (and ``byte_size`` bytes) to the layer totals."""

    if increment <= 0:
        return None

    layer_name = layer.value if isinstance(layer, Layer) else str(layer)
    if session is not None:
        return _apply_usage(session, layer_name, byte_size, increment)

    _ensure_usage_table()
    with session_scope() as scoped:
        return _apply_usage(scoped, layer_name, byte_size, increment)


def list_usage(session: Session) -> List[TileUsageStat]:
    statement = select(TileUsageStat).order_by(TileUsageStat.layer)
    return list(session.exec(statement).all())


class UsageRecorder:
    """Event subscriber that counts every tile decoded for one layer."""

    def __init__(self, layer: Layer | str) -> None:
        self.layer = layer

    def __call__(self, event: TileEvent) -> None:
        if isinstance(event, TileLoadedEvent):
            record_tile_usage(self.layer, byte_size=event.byte_size)
