import sys
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from shared.models.models import Candle  # noqa: E402

MINUTE_MS = 60_000
BASE_TS = 1_700_000_000_000


def make_candles(closes, volumes=None, start_ts: int = BASE_TS) -> list[Candle]:
    """按收盘价序列构造 1 分钟 K 线；open/high/low 取收盘价附近。"""
    if volumes is None:
        volumes = [1000.0] * len(closes)
    return [
        Candle(
            timestamp=start_ts + i * MINUTE_MS,
            open=c,
            high=c,
            low=c,
            close=c,
            volume=v,
        )
        for i, (c, v) in enumerate(zip(closes, volumes))
    ]


def v_shape_closes() -> list[float]:
    """先跌后涨：100 -> 61（40 根），再每根 +2 到 141（40 根）。"""
    down = [100.0 - k for k in range(40)]
    up = [61.0 + (k - 39) * 2 for k in range(40, 80)]
    return down + up


@pytest.fixture
def rising_candles() -> list[Candle]:
    return make_candles([100.0 + i for i in range(100)])


@pytest.fixture
def v_shape_candles() -> list[Candle]:
    return make_candles(v_shape_closes())
