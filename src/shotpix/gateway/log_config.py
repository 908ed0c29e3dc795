"""Package logger shared by every gateway module."""
from __future__ import annotations

import logging
import os

LOGGER_NAME = "shotpix.gateway"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a stream handler to the gateway logger once and set its level."""
    resolved = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = resolved.upper()
    logger.setLevel(resolved)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
