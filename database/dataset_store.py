"""历史数据集存储（SQLite）。

设计
----
- 两张表：historical_data_sets（元信息）与 historical_candles（K 线明细）；
- 删除数据集时级联删除其 K 线；
- K 线按 1000 条一批写入，整个保存过程在一个事务内完成。
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from shared.errors import DataValidationError, DatasetNotFoundError
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("dataset-store")

BATCH_SIZE = 1000


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _chunks(items: Sequence[Candle], size: int) -> Iterable[Sequence[Candle]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


@dataclass(frozen=True)
class DatasetInfo:
    id: str
    name: str
    symbol: str
    timeframe: str
    start_date: str
    end_date: str
    candle_count: int
    created_at: str


class DatasetStore:
    """保存/列出/加载/删除命名的 K 线数据集。"""

    def __init__(self, path: str | Path = "dataset/datasets.sqlite3"):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    def __enter__(self) -> "DatasetStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS historical_data_sets (
                  id TEXT PRIMARY KEY,
                  name TEXT NOT NULL,
                  symbol TEXT NOT NULL,
                  timeframe TEXT NOT NULL,
                  start_date TEXT NOT NULL,
                  end_date TEXT NOT NULL,
                  candle_count INTEGER NOT NULL,
                  created_at TEXT NOT NULL
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS historical_candles (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  dataset_id TEXT NOT NULL REFERENCES historical_data_sets(id) ON DELETE CASCADE,
                  timestamp INTEGER NOT NULL,
                  open REAL NOT NULL,
                  high REAL NOT NULL,
                  low REAL NOT NULL,
                  close REAL NOT NULL,
                  volume REAL NOT NULL
                );
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS historical_candles_dataset_id_idx ON historical_candles(dataset_id);"
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS historical_candles_timestamp_idx ON historical_candles(timestamp);"
            )

    @staticmethod
    def _row_to_info(row: sqlite3.Row) -> DatasetInfo:
        return DatasetInfo(
            id=row["id"],
            name=row["name"],
            symbol=row["symbol"],
            timeframe=row["timeframe"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            candle_count=int(row["candle_count"]),
            created_at=row["created_at"],
        )

    def save_dataset(
        self,
        name: str,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        start: str | None = None,
        end: str | None = None,
    ) -> DatasetInfo:
        """保存数据集。

        Parameters
        ----------
        name:
            数据集名称（不能为空白）。
        candles:
            K 线序列（不能为空）。
        start, end:
            可选的区间描述；缺省时取首尾 K 线时间。

        Returns
        -------
        DatasetInfo
            新数据集的元信息。
        """
        if not candles:
            raise DataValidationError("No data to save")
        if not name or not name.strip():
            raise DataValidationError("Please enter a name for the dataset")

        ordered = sorted(candles, key=lambda c: c.timestamp)
        info = DatasetInfo(
            id=str(uuid.uuid4()),
            name=name.strip(),
            symbol=symbol,
            timeframe=timeframe,
            start_date=start or _ms_to_iso(ordered[0].timestamp),
            end_date=end or _ms_to_iso(ordered[-1].timestamp),
            candle_count=len(ordered),
            created_at=_utc_now_iso(),
        )
        batches = list(_chunks(ordered, BATCH_SIZE))
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO historical_data_sets (
                  id, name, symbol, timeframe, start_date, end_date, candle_count, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    info.id,
                    info.name,
                    info.symbol,
                    info.timeframe,
                    info.start_date,
                    info.end_date,
                    info.candle_count,
                    info.created_at,
                ),
            )
            for n, batch in enumerate(batches, start=1):
                self._conn.executemany(
                    """
                    INSERT INTO historical_candles (
                      dataset_id, timestamp, open, high, low, close, volume
                    ) VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    [(info.id, c.timestamp, c.open, c.high, c.low, c.close, c.volume) for c in batch],
                )
                logger.info("Saved batch %d of %d", n, len(batches))
        logger.info("Dataset saved: %s (%s, %d candles)", info.name, info.id, info.candle_count)
        return info

    def list_datasets(self) -> list[DatasetInfo]:
        """按创建时间倒序列出所有数据集。"""
        rows = self._conn.execute(
            "SELECT * FROM historical_data_sets ORDER BY created_at DESC, rowid DESC;"
        ).fetchall()
        return [self._row_to_info(r) for r in rows]

    def get_dataset(self, dataset_id: str) -> DatasetInfo:
        row = self._conn.execute(
            "SELECT * FROM historical_data_sets WHERE id = ? LIMIT 1;",
            (dataset_id,),
        ).fetchone()
        if row is None:
            raise DatasetNotFoundError(f"dataset not found: {dataset_id}")
        return self._row_to_info(row)

    def find_datasets(
        self,
        name: str | None = None,
        symbol: str | None = None,
        timeframe: str | None = None,
    ) -> list[DatasetInfo]:
        clauses: list[str] = []
        params: list[str] = []
        for col, val in (("name", name), ("symbol", symbol), ("timeframe", timeframe)):
            if val is not None:
                clauses.append(f"{col} = ?")
                params.append(val)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT * FROM historical_data_sets {where} ORDER BY created_at DESC, rowid DESC;",
            params,
        ).fetchall()
        return [self._row_to_info(r) for r in rows]

    def load_candles(self, dataset_id: str) -> list[Candle]:
        """按时间升序加载数据集的全部 K 线。"""
        self.get_dataset(dataset_id)
        rows = self._conn.execute(
            """
            SELECT timestamp, open, high, low, close, volume
            FROM historical_candles
            WHERE dataset_id = ?
            ORDER BY timestamp ASC, id ASC;
            """,
            (dataset_id,),
        ).fetchall()
        if not rows:
            raise DatasetNotFoundError(f"No candles found for dataset: {dataset_id}")
        return [
            Candle(
                timestamp=int(r["timestamp"]),
                open=float(r["open"]),
                high=float(r["high"]),
                low=float(r["low"]),
                close=float(r["close"]),
                volume=float(r["volume"]),
            )
            for r in rows
        ]

    def delete_dataset(self, dataset_id: str) -> None:
        with self._conn:
            cur = self._conn.execute("DELETE FROM historical_data_sets WHERE id = ?;", (dataset_id,))
        if cur.rowcount == 0:
            raise DatasetNotFoundError(f"dataset not found: {dataset_id}")
        logger.info("Dataset deleted: %s", dataset_id)
