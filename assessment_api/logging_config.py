"""Logging configuration helpers for the assessment API."""

import logging
from logging import Logger

from assessment_api.config import LOG_LEVEL


def configure_logging() -> Logger:
    """Configure basic logging for the application and return the package logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("assessment_api")
