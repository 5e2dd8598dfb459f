"""tradelab 统一命令行入口。

子命令：

- `backtest`：对 CSV/JSON 文件或已保存的数据集运行一次回测。
- `fetch`：从 Binance 分批下载历史 K 线，可选保存为数据集。
- `import`：把 CSV/JSON 文件导入为数据集。
- `datasets`：列出（或删除）已保存的数据集。
"""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from algo.strategy.registry import build_strategy
from database.dataset_store import DatasetStore
from engine.backtest_engine import BacktestEngine
from market_data.loader import BinanceKlineFetcher, import_candles, parse_timestamp_ms
from shared.config.config_loader import AppConfig, load_config
from shared.utils.logging import setup_logger
from utils.metrics import result_to_dict

logger = setup_logger("tradelab")


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 子命令 (backtest/fetch/import/datasets)
    """
    config: str
    task: str
    csv: str | None = None
    json: str | None = None
    dataset_id: str | None = None
    capital: float | None = None
    include_series: bool = False
    symbol: str | None = None
    interval: str | None = None
    start: str | None = None
    end: str | None = None
    save: str | None = None
    path: str | None = None
    name: str | None = None
    timeframe: str | None = None
    delete: str | None = None


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="tradelab", description="tradelab 回测与数据工具")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml，不存在时使用内置默认值)",
        )

    _add_config_arg(parser, default="config/config.yml")
    sub = parser.add_subparsers(dest="task", required=True)

    p_bt = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_bt, default=argparse.SUPPRESS)
    src = p_bt.add_mutually_exclusive_group(required=True)
    src.add_argument("--csv", type=str, help="CSV 文件路径")
    src.add_argument("--json", type=str, help="JSON 文件路径")
    src.add_argument("--dataset-id", type=str, help="已保存的数据集 ID")
    p_bt.add_argument("--capital", type=float, default=None, help="初始资金（默认取配置）")
    p_bt.add_argument("--include-series", action="store_true", help="输出中包含成交记录与权益曲线")

    p_fetch = sub.add_parser("fetch", help="下载 Binance 历史 K 线")
    _add_config_arg(p_fetch, default=argparse.SUPPRESS)
    p_fetch.add_argument("--symbol", type=str, default=None)
    p_fetch.add_argument("--interval", type=str, default=None)
    p_fetch.add_argument("--start", type=str, required=True, help="开始时间（ISO-8601 或毫秒时间戳）")
    p_fetch.add_argument("--end", type=str, required=True, help="结束时间（ISO-8601 或毫秒时间戳）")
    p_fetch.add_argument("--save", type=str, default=None, help="保存为数据集的名称")

    p_import = sub.add_parser("import", help="导入 CSV/JSON 为数据集")
    _add_config_arg(p_import, default=argparse.SUPPRESS)
    p_import.add_argument("path", type=str)
    p_import.add_argument("--name", type=str, required=True)
    p_import.add_argument("--symbol", type=str, default=None)
    p_import.add_argument("--timeframe", type=str, default=None)

    p_ds = sub.add_parser("datasets", help="列出/删除数据集")
    _add_config_arg(p_ds, default=argparse.SUPPRESS)
    p_ds.add_argument("--delete", type=str, default=None, help="要删除的数据集 ID")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task,
        csv=getattr(ns, "csv", None),
        json=getattr(ns, "json", None),
        dataset_id=getattr(ns, "dataset_id", None),
        capital=getattr(ns, "capital", None),
        include_series=bool(getattr(ns, "include_series", False)),
        symbol=getattr(ns, "symbol", None),
        interval=getattr(ns, "interval", None),
        start=getattr(ns, "start", None),
        end=getattr(ns, "end", None),
        save=getattr(ns, "save", None),
        path=getattr(ns, "path", None),
        name=getattr(ns, "name", None),
        timeframe=getattr(ns, "timeframe", None),
        delete=getattr(ns, "delete", None),
    )


def _load_app_config(path: str) -> AppConfig:
    if Path(path).exists():
        return load_config(path)
    logger.warning("Config file %s not found, using defaults", path)
    return AppConfig()


def _run_backtest(args: CliArgs, cfg: AppConfig) -> dict[str, Any]:
    if args.dataset_id:
        with DatasetStore(cfg.data.db_path) as store:
            candles = store.load_candles(args.dataset_id)
    else:
        candles = import_candles(args.csv or args.json)
    capital = args.capital if args.capital is not None else cfg.backtest.initial_capital
    engine = BacktestEngine(build_strategy(cfg.strategy), cfg.backtest)
    result = engine.run_sync(candles, capital)
    return result_to_dict(result, include_series=args.include_series)


def _run_fetch(args: CliArgs, cfg: AppConfig) -> dict[str, Any]:
    symbol = args.symbol or cfg.symbol
    interval = args.interval or cfg.timeframe
    fetcher = BinanceKlineFetcher(
        cfg.data.binance_base_url,
        batch_limit=cfg.data.batch_limit,
        pause_secs=cfg.data.batch_pause_secs,
        timeout=cfg.data.request_timeout,
    )
    candles = fetcher.fetch(symbol, interval, parse_timestamp_ms(args.start), parse_timestamp_ms(args.end))
    summary: dict[str, Any] = {"symbol": symbol, "interval": interval, "candles": len(candles)}
    if args.save:
        with DatasetStore(cfg.data.db_path) as store:
            info = store.save_dataset(args.save, symbol, interval, candles, start=args.start, end=args.end)
        summary["dataset"] = asdict(info)
    return summary


def _run_import(args: CliArgs, cfg: AppConfig) -> dict[str, Any]:
    candles = import_candles(args.path)
    with DatasetStore(cfg.data.db_path) as store:
        info = store.save_dataset(
            args.name,
            args.symbol or cfg.symbol,
            args.timeframe or cfg.timeframe,
            candles,
        )
    return asdict(info)


def _run_datasets(args: CliArgs, cfg: AppConfig) -> dict[str, Any]:
    with DatasetStore(cfg.data.db_path) as store:
        if args.delete:
            store.delete_dataset(args.delete)
        return {"datasets": [asdict(d) for d in store.list_datasets()]}


def main(argv: list[str] | None = None) -> Any:
    """程序主入口。

    Returns
    -------
    Any
        对应子命令的 summary dict（同时以 JSON 打印到标准输出）。
    """
    args = parse_args(argv)
    cfg = _load_app_config(args.config)

    handlers = {
        "backtest": _run_backtest,
        "fetch": _run_fetch,
        "import": _run_import,
        "datasets": _run_datasets,
    }
    if args.task not in handlers:
        raise ValueError(f"Unknown task: {args.task}")
    summary = handlers[args.task](args, cfg)
    print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))
    return summary


if __name__ == "__main__":
    main()
