import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

def setup_logger(
    log_dir: str,
    name: str = "supervisor",
    level: str = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    One logger per service: rotating <log_dir>/<name>.log plus stderr.
    Safe to call twice; handlers are only attached once.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.propagate = False

    if logger.handlers:
        return logger

    fmt = logging.Formatter(LOG_FORMAT)

    fh = RotatingFileHandler(
        os.path.join(log_dir, f"{name}.log"),
        maxBytes=5_000_000,
        backupCount=5,
    )
    fh.setFormatter(fmt)
    fh.setLevel(log_level)
    logger.addHandler(fh)

    if console:
        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        ch.setLevel(log_level)
        logger.addHandler(ch)

    return logger
