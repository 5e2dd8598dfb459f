"""统一异常定义。"""

from __future__ import annotations

from typing import Any


class TradelabError(Exception):
    """项目内所有自定义异常的基类。"""


class InvalidInputError(TradelabError, ValueError):
    """回测输入非法（空序列/非序列/初始资金非法），在任何模拟步骤之前抛出。"""


class CandleError(TradelabError, ValueError):
    """单根 K 线无法处理（价格缺失/非正/非数字）。"""


class BacktestCancelled(TradelabError):
    """回测被取消；partial 为截至取消时的汇总结果。"""

    def __init__(self, message: str, partial: Any = None):
        super().__init__(message)
        self.partial = partial


class DataValidationError(TradelabError, ValueError):
    """导入数据缺字段或字段无法解析。"""


class DatasetNotFoundError(TradelabError, KeyError):
    """数据集不存在或没有 K 线。"""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "dataset not found"


class ExchangeError(TradelabError):
    """交易所调用失败或调用方式非法。"""


class ExchangeConfigError(ExchangeError):
    """交易所 API Key/Secret 缺失或格式不对。"""
