"""Logging setup driven by the ``logging`` configuration section."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from jdorg.config.models import LoggingSettings

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_HANDLER_NAME = "jdorg-file"


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``jdorg`` package logger from settings.

    Repeated calls replace the rotating file handler instead of stacking new ones.

    Args:
        settings: Logging section of the resolved configuration.

    Returns:
        logging.Logger: The configured package logger.
    """
    logger = logging.getLogger("jdorg")
    level = logging.getLevelName(settings.level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.WARNING)

    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()

    if not settings.file:
        return logger

    log_file = Path(settings.file).expanduser()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return logger

    handler = RotatingFileHandler(
        log_file,
        maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


__all__ = ["configure_logging"]
