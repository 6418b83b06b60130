"""Logging utility."""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

APP_LOGGER_NAME = "chat_worker"


def setup_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 2_000_000,
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up a logger with console and optional rotating file output.

    Args:
        name: Logger name
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated files kept

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        # Assistant transcripts can be long; keep the log bounded
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


class SessionLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the connection it belongs to."""

    def process(self, msg, kwargs):
        return f"[Session {self.extra['connection_id']}] {msg}", kwargs


# Application logger instance
app_logger: Optional[logging.Logger] = None


def init_app_logger(settings) -> logging.Logger:
    """
    Initialize the application logger with settings.

    Args:
        settings: Application settings instance

    Returns:
        Configured application logger
    """
    global app_logger

    app_logger = setup_logger(
        name=APP_LOGGER_NAME,
        log_level=settings.log_level,
        log_file=settings.log_file,
        max_bytes=getattr(settings, "log_max_bytes", 2_000_000),
        backup_count=getattr(settings, "log_backup_count", 5)
    )

    return app_logger


def get_app_logger() -> logging.Logger:
    """Get the application logger, falling back to a console-only default."""
    if app_logger is None:
        return setup_logger(APP_LOGGER_NAME)

    return app_logger


def get_session_logger(connection_id: str) -> SessionLogAdapter:
    """Application logger scoped to one client connection."""
    return SessionLogAdapter(get_app_logger(), {"connection_id": connection_id})
