"""
loguru sink configuration.

Every module logs through the shared loguru 'logger'. 'configure_logging' is
called once at application start-up to replace the default stderr sink with
one at the configured level.
"""

import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, enqueue=False, backtrace=False)
