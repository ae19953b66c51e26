"""
Logging Setup
=============

Console + rotating file logging for the `galnetops.*` logger tree.

Benefits:
- Bounded disk usage (RotatingFileHandler)
- One consistent line format across modules
- Safe to call more than once (no duplicate handlers)
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   logging_setup.py
#
# Connected modules (direct imports):
#   config
# ============================================================================

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import LoggingConfig


LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROOT_LOGGER_NAME = "galnetops"

_HANDLER_TAG = "_galnetops_handler"


def configure_logging(
    settings: Optional[LoggingConfig] = None,
    log_path: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the package logger

    Args:
        settings: Level / rotation settings (defaults if None)
        log_path: Optional log file; no file handler when None

    Returns:
        The `galnetops` root logger
    """
    settings = settings or LoggingConfig()
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.level.upper(), logging.INFO))

    # Drop handlers from a previous call
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if settings.console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        setattr(console, _HANDLER_TAG, True)
        logger.addHandler(console)

    if log_path:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_TAG, True)
        logger.addHandler(file_handler)

    return logger


class FileLogger:
    """Rotating file-based logger with a log/info/error interface.

    Used by ErrorHandler, which only needs those three methods.
    """

    def __init__(
        self,
        log_path: Path,
        *,
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 5,
    ):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        # Deterministic name per path avoids duplicate handlers
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.file:{self.log_path}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        if not self._logger.handlers:
            handler = RotatingFileHandler(
                filename=str(self.log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
            self._logger.addHandler(handler)

    def log(self, message: str):
        self._logger.info(message)

    def info(self, message: str):
        self._logger.info(message)

    def error(self, message: str):
        self._logger.error(message)

    def close(self):
        """Release file handles"""
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
