"""
Logging setup for the rabtrack package.
"""
import logging
from typing import Optional, Union

from rabtrack.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: Optional[logging.Handler] = None


def configure_logging(level: Union[int, str, None] = None) -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    global _handler
    logger = logging.getLogger("rabtrack")
    logger.setLevel(level if level is not None else settings.LOG_LEVEL.upper())

    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(_handler)

    return logger


def reset_logging() -> None:
    """Remove the handler installed by configure_logging."""
    global _handler
    if _handler is not None:
        logging.getLogger("rabtrack").removeHandler(_handler)
        _handler = None
