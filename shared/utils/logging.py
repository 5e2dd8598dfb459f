import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "tradelab", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # 同名 logger 只挂一次控制台 handler，避免重复输出
    if not any(getattr(h, "_tradelab", False) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        ch._tradelab = True  # type: ignore[attr-defined]
        logger.addHandler(ch)
    return logger
