"""历史 K 线加载与下载。

- 从 CSV/JSON 文件导入 K 线（先整体校验，再转换为 Candle）；
- 通过 Binance REST 分批拉取一段时间的 K 线。
"""

from __future__ import annotations

import json
import math
import time
from datetime import timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

import pandas as pd
import requests

from shared.errors import DataValidationError
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("kline-fetcher")

REQUIRED_FIELDS = ("timestamp", "open", "high", "low", "close", "volume")
CANDLE_COLUMNS = list(REQUIRED_FIELDS)

_UNIT_MS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
}


def interval_to_ms(interval: str) -> int:
    """K 线周期字符串转毫秒，例如 "5m" -> 300000；未知单位按 1 分钟处理。"""
    unit = interval[-1:]
    if unit not in _UNIT_MS:
        return 60 * 1000
    try:
        value = int(interval[:-1])
    except ValueError as exc:
        raise ValueError(f"Invalid interval: {interval}") from exc
    return value * _UNIT_MS[unit]


def parse_timestamp_ms(val: Any) -> int:
    """把时间戳解析为毫秒整数。

    支持：
    - 数值/数字字符串：> 1e12 视为毫秒，否则视为秒；
    - ISO-8601 字符串（无时区按 UTC）。
    """
    if isinstance(val, bool) or val is None:
        raise ValueError(f"Invalid timestamp value: {val!r}")
    if isinstance(val, (int, float)):
        num = float(val)
    else:
        text = str(val).strip()
        try:
            num = float(text)
        except ValueError:
            try:
                ts = pd.Timestamp(text.replace("Z", "+00:00"))
            except (ValueError, TypeError) as exc:
                raise ValueError(f"Invalid timestamp value: {val!r}") from exc
            if ts is pd.NaT:
                raise ValueError(f"Invalid timestamp value: {val!r}")
            if ts.tzinfo is None:
                ts = ts.tz_localize(timezone.utc)
            return int(ts.value // 1_000_000)
    if not math.isfinite(num):
        raise ValueError(f"Invalid timestamp value: {val!r}")
    return int(num) if num > 1e12 else int(num * 1000)


def _parse_number(val: Any) -> float:
    if isinstance(val, bool):
        raise ValueError(f"Invalid number: {val!r}")
    num = float(val)
    if math.isnan(num):
        raise ValueError(f"Invalid number: {val!r}")
    return num


def validate_rows(rows: Any) -> None:
    """校验导入数据：非空列表，每行包含全部字段且可解析。

    Raises
    ------
    DataValidationError
        第一处不合法的行（下标从 0 开始）。
    """
    if not isinstance(rows, Sequence) or isinstance(rows, (str, bytes)) or len(rows) == 0:
        raise DataValidationError("Invalid data format: expected a non-empty list of rows")
    for idx, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise DataValidationError(f"Invalid data format at row {idx}: expected an object")
        missing = [f for f in REQUIRED_FIELDS if f not in row]
        if missing:
            raise DataValidationError(f"Invalid data format at row {idx}: missing {', '.join(missing)}")
        try:
            parse_timestamp_ms(row["timestamp"])
        except ValueError as exc:
            raise DataValidationError(f"Invalid data format at row {idx}: {exc}") from exc
        for field in REQUIRED_FIELDS[1:]:
            try:
                _parse_number(row[field])
            except (TypeError, ValueError) as exc:
                raise DataValidationError(
                    f"Invalid data format at row {idx}: field {field}={row[field]!r} is not a number"
                ) from exc


def rows_to_candles(rows: Iterable[Mapping[str, Any]]) -> list[Candle]:
    """已校验的行 -> 按时间升序的 Candle 列表。"""
    candles = [
        Candle(
            timestamp=parse_timestamp_ms(row["timestamp"]),
            open=_parse_number(row["open"]),
            high=_parse_number(row["high"]),
            low=_parse_number(row["low"]),
            close=_parse_number(row["close"]),
            volume=_parse_number(row["volume"]),
        )
        for row in rows
    ]
    candles.sort(key=lambda c: c.timestamp)
    return candles


def load_candles_from_csv(path: str | Path) -> list[Candle]:
    """从 CSV 读取 K 线（表头需包含 timestamp/open/high/low/close/volume）。"""
    df = pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [str(c).strip() for c in df.columns]
    rows = df.to_dict(orient="records")
    validate_rows(rows)
    return rows_to_candles(rows)


def load_candles_from_json(path: str | Path) -> list[Candle]:
    """从 JSON 读取 K 线（顶层为对象数组）。"""
    try:
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DataValidationError(f"Invalid JSON file {path}: {exc}") from exc
    validate_rows(rows)
    return rows_to_candles(rows)


def import_candles(path: str | Path) -> list[Candle]:
    """按扩展名分派到 CSV/JSON 导入。"""
    suffix = Path(path).suffix.lower()
    if suffix == ".csv":
        candles = load_candles_from_csv(path)
    elif suffix == ".json":
        candles = load_candles_from_json(path)
    else:
        raise DataValidationError("Unsupported file format. Please use CSV or JSON.")
    logger.info("Imported %d candles from %s", len(candles), path)
    return candles


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    return pd.DataFrame([c.to_dict() for c in candles], columns=CANDLE_COLUMNS)


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    missing = [c for c in CANDLE_COLUMNS if c not in df.columns]
    if missing:
        raise DataValidationError(f"frame missing columns: {', '.join(missing)}")
    return [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df[CANDLE_COLUMNS].itertuples(index=False)
    ]


class BinanceKlineFetcher:
    """Binance 公共 K 线接口的分批下载器。

    每批请求 [cur, min(cur + batch_limit * 周期, end)]；下一批从上一批最后一根 K 线的
    close time + 1 开始；空批次即结束；批次之间暂停 pause_secs 秒以避开限频。

    Parameters
    ----------
    base_url:
        REST 根地址，例如 https://api.binance.com。
    session:
        可注入的 HTTP 会话（需提供 get(url, params=..., timeout=...)），默认 requests.Session()。
    """

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        session: Any = None,
        batch_limit: int = 1000,
        pause_secs: float = 0.1,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.batch_limit = int(batch_limit)
        self.pause_secs = float(pause_secs)
        self.timeout = timeout

    def _fetch_batch(self, symbol: str, interval: str, start_ms: int, end_ms: int) -> list[list[Any]]:
        params = {
            "symbol": symbol,
            "interval": interval,
            "startTime": start_ms,
            "endTime": end_ms,
            "limit": self.batch_limit,
        }
        resp = self.session.get(f"{self.base_url}/api/v3/klines", params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def fetch(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        on_batch: Callable[[int, int], None] | None = None,
    ) -> list[Candle]:
        """拉取 [start_ms, end_ms) 内的 K 线。

        Parameters
        ----------
        on_batch:
            每批完成后回调 (batch_number, total_so_far)。

        Raises
        ------
        requests.HTTPError
            任一批次 HTTP 非 2xx。
        """
        if end_ms <= start_ms:
            raise ValueError("end must be after start")
        step_ms = self.batch_limit * interval_to_ms(interval)
        logger.info("Starting kline fetch: %s %s [%d, %d)", symbol, interval, start_ms, end_ms)

        candles: list[Candle] = []
        cur = int(start_ms)
        batch_no = 1
        while cur < end_ms:
            batch_end = min(cur + step_ms, end_ms)
            data = self._fetch_batch(symbol, interval, cur, batch_end)
            if not data:
                break
            for item in data:
                candles.append(
                    Candle(
                        timestamp=int(item[0]),
                        open=float(item[1]),
                        high=float(item[2]),
                        low=float(item[3]),
                        close=float(item[4]),
                        volume=float(item[5]),
                    )
                )
            logger.info("Batch %d processed. Total candles so far: %d", batch_no, len(candles))
            if on_batch:
                on_batch(batch_no, len(candles))
            cur = int(data[-1][6]) + 1
            batch_no += 1
            if self.pause_secs > 0:
                time.sleep(self.pause_secs)

        logger.info("Successfully fetched %d candles", len(candles))
        return candles
