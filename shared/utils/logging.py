import logging


def setup_logger(name: str = "trading", level: int | str = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # 同名 logger 多次创建时只挂一个控制台 handler，避免重复输出
    if not any(getattr(h, "_trading_console", False) for h in logger.handlers):
        ch = logging.StreamHandler()
        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        )
        ch.setFormatter(fmt)
        ch._trading_console = True  # type: ignore[attr-defined]
        logger.addHandler(ch)
    return logger
