"""
Logging setup shared by every module.

Call `configure_logging()` once at startup (main.py does this), then in any module:

    from app_logging import get_logger
    logger = get_logger(__name__)
"""

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).info("Logging initialized with level %s", level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
