from pathlib import Path

import pytest

from conftest import make_candles
from database.dataset_store import DatasetStore
from shared.errors import DataValidationError, DatasetNotFoundError


def test_save_and_load_dataset_round_trip(tmp_path: Path) -> None:
    candles = make_candles([1.0, 2.0, 3.0])
    with DatasetStore(tmp_path / "db" / "datasets.sqlite3") as store:
        info = store.save_dataset("btc week", "BTCUSDT", "5m", list(reversed(candles)))

        assert info.candle_count == 3
        assert info.symbol == "BTCUSDT"
        assert info.start_date.startswith("2023-11-14")
        assert store.get_dataset(info.id) == info
        assert store.load_candles(info.id) == candles


def test_large_dataset_is_written_in_batches(tmp_path: Path) -> None:
    candles = make_candles([float(i) for i in range(2500)])
    with DatasetStore(tmp_path / "datasets.sqlite3") as store:
        info = store.save_dataset("big", "ETHUSDT", "1m", candles, start="2024-01-01", end="2024-01-03")
        loaded = store.load_candles(info.id)

    assert len(loaded) == 2500
    assert loaded[0].close == 0.0
    assert loaded[-1].close == 2499.0
    assert info.start_date == "2024-01-01"


def test_list_find_and_delete(tmp_path: Path) -> None:
    with DatasetStore(tmp_path / "datasets.sqlite3") as store:
        first = store.save_dataset("a", "BTCUSDT", "5m", make_candles([1.0]))
        second = store.save_dataset("b", "ETHUSDT", "1h", make_candles([2.0]))

        assert [d.id for d in store.list_datasets()] == [second.id, first.id]
        assert [d.id for d in store.find_datasets(symbol="BTCUSDT")] == [first.id]
        assert store.find_datasets(name="b", timeframe="5m") == []

        store.delete_dataset(first.id)
        assert [d.id for d in store.list_datasets()] == [second.id]
        orphans = store._conn.execute(
            "SELECT COUNT(*) FROM historical_candles WHERE dataset_id = ?;", (first.id,)
        ).fetchone()[0]
        assert orphans == 0

        with pytest.raises(DatasetNotFoundError):
            store.delete_dataset(first.id)
        with pytest.raises(DatasetNotFoundError):
            store.load_candles(first.id)


def test_save_rejects_empty_candles_and_blank_name(tmp_path: Path) -> None:
    with DatasetStore(tmp_path / "datasets.sqlite3") as store:
        with pytest.raises(DataValidationError):
            store.save_dataset("empty", "BTCUSDT", "5m", [])
        with pytest.raises(DataValidationError):
            store.save_dataset("   ", "BTCUSDT", "5m", make_candles([1.0]))
        assert store.list_datasets() == []


def test_datasets_persist_across_connections(tmp_path: Path) -> None:
    path = tmp_path / "datasets.sqlite3"
    with DatasetStore(path) as store:
        info = store.save_dataset("keep", "BTCUSDT", "5m", make_candles([1.0, 2.0]))
    with DatasetStore(path) as store:
        assert store.get_dataset(info.id).name == "keep"
        assert len(store.load_candles(info.id)) == 2
