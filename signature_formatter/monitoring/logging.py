"""Logging configuration module."""

from __future__ import annotations

import logging

from signature_formatter.config.settings import get_settings

# Pillow reports every decoded chunk at DEBUG.
QUIET_LOGGERS = ("PIL", "multipart")


def configure_logging(level: str | None = None) -> None:
    """Configure root logger according to project conventions.

    ``level`` overrides ``LOG_LEVEL`` from settings.
    """

    name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
