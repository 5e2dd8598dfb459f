"""订单幂等 ID（newClientOrderId）生成。

要求：
- 同一下单意图（同一秒内重复提交）得到同一个 ID，交易所会拒绝重复单；
- 长度受 Binance 限制（<= 36 字符），用 hash 缩短。
"""

from __future__ import annotations

import hashlib
from typing import Any, Mapping

_IGNORED_KEYS = {"timestamp", "recvWindow", "signature", "newClientOrderId"}


def make_client_order_id(
    *,
    symbol: str,
    side: str,
    order_type: str,
    intent_ms: int,
    params: Mapping[str, Any] | None = None,
    prefix: str = "tl",
) -> str:
    extra = ""
    if params:
        extra = "&".join(
            f"{k}={params[k]}" for k in sorted(params) if k not in _IGNORED_KEYS and params[k] is not None
        )
    # 以秒为粒度：同一秒内的重复提交视为同一意图
    raw = "|".join([str(symbol), str(side), str(order_type), str(int(intent_ms) // 1000), extra])
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]
    return f"{prefix}_{digest}"
