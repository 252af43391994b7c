from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

ROOT_LOGGER = "deliverytracker"
LOG_FILE = "deliverytracker.log"


def setup_logging(log_dir: str = "logs", *, level: int = logging.INFO, console: bool = True) -> logging.Logger:
    """
    Text log for humans (logs/deliverytracker.log, rotated) plus optional console echo.
    Structured pipeline events go to the JSONL journals instead. Safe to call twice.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    file_path = os.path.abspath(os.path.join(log_dir, LOG_FILE))
    if not any(isinstance(h, RotatingFileHandler) and h.baseFilename == file_path for h in logger.handlers):
        fh = RotatingFileHandler(file_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"))
        logger.addHandler(fh)

    if console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        sh.setLevel(logging.WARNING)
        logger.addHandler(sh)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
