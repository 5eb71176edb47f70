"""Logging configuration for the relay."""

import logging
import sys
from typing import Optional

LOGGER_NAME = "msgrelay"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(debug: bool = False, debug_file: Optional[str] = None) -> logging.Logger:
    """Set up the relay logger.

    Debug mode lowers the level to DEBUG and, when ``debug_file`` is given,
    mirrors every record into that file as well.
    """
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if debug and debug_file:
        file_handler = logging.FileHandler(debug_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.debug("Debug log file: %s", debug_file)

    logger.propagate = True
    return logger
