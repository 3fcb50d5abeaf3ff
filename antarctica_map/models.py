from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class TileUsageStat(SQLModel, table=True):
    """Running totals of tiles decoded per imagery layer."""

    id: Optional[int] = Field(default=None, primary_key=True)
    layer: str = Field(index=True, unique=True)
    tile_count: int = Field(default=0)
    bytes_loaded: int = Field(default=0)
    last_loaded_at: Optional[datetime] = Field(default=None)

    @property
    def average_tile_bytes(self) -> float:
        if self.tile_count <= 0:
            return 0.0
        return self.bytes_loaded / self.tile_count
