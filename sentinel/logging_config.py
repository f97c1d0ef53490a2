"""Logging configuration for the training subsystem."""

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = logging.INFO


def setup_logging(level: Union[int, str] = LOG_LEVEL) -> None:
    """
    Configure application logging.

    Installs a stdout handler on the root logger and sets the level of the
    ``sentinel`` logger hierarchy.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = LOG_LEVEL

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # numpy/asyncio chatter is not interesting at INFO
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sentinel").setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured")
