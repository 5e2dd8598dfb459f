"""数值格式化工具（下单参数的字符串化）。"""

from __future__ import annotations

from decimal import Decimal


def format_decimal(value: float | int | str) -> str:
    """把数量/价格格式化为交易所接受的十进制字符串。

    去掉多余的尾随 0 且不使用科学计数法，例如 1.0 -> "1"、0.00001 -> "0.00001"。
    """
    d = Decimal(str(value))
    if d == d.to_integral_value():
        return str(d.quantize(Decimal(1)))
    return format(d.normalize(), "f")
