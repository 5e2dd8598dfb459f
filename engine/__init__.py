"""执行引擎层（engine）。

- `engine.position`：单步持仓状态机（纯函数）；
- `engine.backtest_engine`：逐 K 线异步回测引擎，支持暂停/恢复/取消与进度回调。

命令行入口由仓库根目录 `main.py` 统一承载。
"""
