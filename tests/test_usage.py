import threading

from sqlmodel import Session, SQLModel, create_engine

import antarctica_map.services.usage as usage
from antarctica_map.models import TileUsageStat
from antarctica_map.services.events import TileLoadedEvent, WarningEvent
from antarctica_map.services.map_request import Layer
from antarctica_map.services.usage import UsageRecorder, list_usage, record_tile_usage


def create_memory_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    return engine


def test_record_tile_usage_accumulates_per_layer():
    engine = create_memory_engine()
    with Session(engine) as session:
        record_tile_usage(Layer.MODIS_TERRA_TRUE_COLOR, byte_size=100, session=session)
        record_tile_usage(Layer.MODIS_TERRA_TRUE_COLOR, byte_size=300, session=session)
        record_tile_usage("VIIRS_SNPP_CorrectedReflectance_TrueColor", byte_size=50, session=session)

        stats = list_usage(session)

    assert [stat.layer for stat in stats] == [
        "MODIS_Terra_CorrectedReflectance_TrueColor",
        "VIIRS_SNPP_CorrectedReflectance_TrueColor",
    ]
    terra = stats[0]
    assert terra.tile_count == 2
    assert terra.bytes_loaded == 400
    assert terra.average_tile_bytes == 200
    assert terra.last_loaded_at is not None


def test_non_positive_increment_is_ignored():
    engine = create_memory_engine()
    with Session(engine) as session:
        assert record_tile_usage(Layer.MODIS_TERRA_TRUE_COLOR, increment=0, session=session) is None
        assert list_usage(session) == []


def test_empty_stat_has_zero_average():
    assert TileUsageStat(layer="x").average_tile_bytes == 0.0


def test_recorder_counts_loaded_tiles_only(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTARCTICA_MAP_DATABASE_URL", f"sqlite:///{tmp_path / 'usage.db'}")
    monkeypatch.setattr(usage, "_usage_initialized", False)
    recorder = UsageRecorder(Layer.MODIS_AQUA_TRUE_COLOR)

    recorder(TileLoadedEvent(coordinate="0_0_0", byte_size=64, mode="direct"))
    recorder(WarningEvent(message="ignored"))
    recorder(TileLoadedEvent(coordinate="1_0_0", byte_size=36, mode="direct"))

    engine = create_engine(f"sqlite:///{tmp_path / 'usage.db'}")
    with Session(engine) as session:
        stats = list_usage(session)

    assert len(stats) == 1
    assert stats[0].layer == "MODIS_Aqua_CorrectedReflectance_TrueColor"
    assert stats[0].tile_count == 2
    assert stats[0].bytes_loaded == 100


def test_concurrent_recording_keeps_every_increment(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path / 'usage.db'}"
    monkeypatch.setenv("ANTARCTICA_MAP_DATABASE_URL", db_url)
    monkeypatch.setattr(usage, "_usage_initialized", False)
    start = threading.Barrier(8)
    errors = []

    def worker():
        start.wait(timeout=5)
        try:
            for _ in range(10):
                record_tile_usage(Layer.MODIS_TERRA_TRUE_COLOR, byte_size=3)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    with Session(create_engine(db_url)) as session:
        stats = list_usage(session)

    assert len(stats) == 1
    assert stats[0].tile_count == 80
    assert stats[0].bytes_loaded == 240


def test_recording_into_an_existing_row_returns_fresh_totals():
    engine = create_memory_engine()
    with Session(engine) as session:
        first = record_tile_usage(Layer.VIIRS_SNPP_TRUE_COLOR, byte_size=10, session=session)
        assert first.tile_count == 1
        second = record_tile_usage(
            Layer.VIIRS_SNPP_TRUE_COLOR, byte_size=5, increment=2, session=session
        )

    assert second.tile_count == 3
    assert second.bytes_loaded == 15
