"""
Configure logging for the application.

This module provides a consistent logging configuration across the entire
application, ensuring log messages are formatted correctly and directed
to the appropriate outputs (console, file, etc.).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from voice_gateway.config.constants import LOGGER_NAME

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Used when no log file is configured
DEFAULT_LOG_FILE = Path("logs") / "voice_gateway.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5


def configure_logging(level: Optional[str] = None, log_file: Optional[Union[str, Path]] = None):
    """
    Configure the gateway logger with console and rotating file handlers.

    Calling it again replaces the handlers, so the service can log to the
    console while starting and switch to the configured file once
    ``Settings`` has been read.

    Args:
        level: Level name such as ``"debug"``; falls back to ``LOG_LEVEL``, then INFO
        log_file: Rotating log file; falls back to ``logs/voice_gateway.log``

    Returns:
        logging.Logger: The configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_path = Path(log_file) if log_file else DEFAULT_LOG_FILE
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"Could not set up file logging at {log_path}: {e}")

    # Gateway records stay out of uvicorn's root handlers
    logger.propagate = False

    logger.info(f"Logging configured (level {level_name}, file {log_path})")
    return logger


def install_crash_guards(loop=None) -> None:
    """
    Log and swallow uncaught exceptions instead of letting them take the
    service down.

    Installs ``sys.excepthook`` and, when a loop is given, an asyncio loop
    exception handler (covers exceptions from tasks nobody awaited).
    """
    logger = logging.getLogger(LOGGER_NAME)

    def _excepthook(exc_type, exc, tb):
        logger.error("Uncaught exception", exc_info=(exc_type, exc, tb))

    def _loop_handler(_loop, context):
        exc = context.get("exception")
        message = context.get("message", "Unhandled error in event loop")
        if exc is not None:
            logger.error(f"Unhandled rejection: {message}", exc_info=exc)
        else:
            logger.error(f"Unhandled rejection: {message}")

    sys.excepthook = _excepthook
    if loop is not None:
        loop.set_exception_handler(_loop_handler)
