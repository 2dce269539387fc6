"""Logging configuration helpers for the session server."""

from __future__ import annotations

import logging
from logging import Logger


def configure_logging(level: str = "INFO") -> Logger:
    """Configure basic logging for the application and return the package logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # Engine.IO logs every poll at INFO; keep it out of the session log.
    logging.getLogger("engineio").setLevel(logging.WARNING)
    return logging.getLogger("pace_app")
