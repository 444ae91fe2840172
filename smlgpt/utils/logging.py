from __future__ import annotations

import logging
import os
import sys

_CONFIGURED = False


def configure_logging(default_level: str = "INFO") -> logging.Logger:
    global _CONFIGURED
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    if not _CONFIGURED:
        logging.basicConfig(
            level=level,
            stream=sys.stdout,
            format="%(asctime)s %(levelname)s %(name)s | %(message)s",
        )
        _CONFIGURED = True
    logger = logging.getLogger("smlgpt")
    logger.setLevel(level)
    return logger


__all__ = ["configure_logging"]
