"""Per-module stdout loggers."""

import logging
import sys
from typing import Optional


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return the logger for ``name`` with a stdout handler attached once.

    Args:
        name: Usually the calling module's ``__name__``
        level: Level name; defaults to INFO

    Returns:
        logging.Logger: The shared logger for ``name``
    """
    logger = logging.getLogger(name)

    log_level = getattr(logging, (level or "INFO").upper())
    logger.setLevel(log_level)

    # Re-imports must not stack handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s [%(name)s] %(funcName)s:%(lineno)d %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)

    return logger
