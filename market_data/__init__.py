"""行情数据模块（market_data）。

该包聚合：
- 历史 K 线导入（CSV/JSON，带字段校验）
- Binance REST 分批下载
"""

from market_data.loader import (
    BinanceKlineFetcher,
    candles_to_frame,
    frame_to_candles,
    import_candles,
    interval_to_ms,
    load_candles_from_csv,
    load_candles_from_json,
    rows_to_candles,
    validate_rows,
)

__all__ = [
    "BinanceKlineFetcher",
    "candles_to_frame",
    "frame_to_candles",
    "import_candles",
    "interval_to_ms",
    "load_candles_from_csv",
    "load_candles_from_json",
    "rows_to_candles",
    "validate_rows",
]
