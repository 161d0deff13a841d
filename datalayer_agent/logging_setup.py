"""
Logging configuration: console plus rotating error/combined log files.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 5 * 1024 * 1024


def configure_logging(level: str = "INFO", log_dir: Optional[str] = "logs") -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        log_dir: Directory for error.log/combined.log, or None for console only
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        error_handler = RotatingFileHandler(
            os.path.join(log_dir, "error.log"),
            maxBytes=MAX_BYTES,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root.addHandler(error_handler)

        combined_handler = RotatingFileHandler(
            os.path.join(log_dir, "combined.log"),
            maxBytes=MAX_BYTES,
            backupCount=10,
            encoding="utf-8",
        )
        combined_handler.setFormatter(formatter)
        root.addHandler(combined_handler)

    # uvicorn access logs are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
