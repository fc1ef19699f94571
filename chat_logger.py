"""
chat_logger.py - Centralized logging configuration for the order chat engine

Sets up Python logging with:
- File handler: <LOG_DIR>/YYYY-MM-DD/chat.txt (one folder per day)
- Console handler: stdout at LOG_LEVEL
- Helpers that keep user text and identifiers safe to write into log lines
"""

import os
import logging
from datetime import datetime
from pathlib import Path

DEFAULT_LOGGER_NAME = "order_chat"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class MillisecondFormatter(logging.Formatter):
    """Formatter that appends milliseconds to ``DATE_FORMAT`` timestamps."""

    def formatTime(self, record, datefmt=None):
        if not datefmt:
            return super().formatTime(record, datefmt)
        s = datetime.fromtimestamp(record.created).strftime(datefmt)
        ms = int((record.created - int(record.created)) * 1000)
        return f"{s}.{ms:03d}"


def sanitize_log_string(text: str, max_length: int = 500) -> str:
    """
    Make user-supplied text safe for a single log line.

    Control characters (newlines included) become spaces so a chat message
    cannot forge extra log records; overly long text is truncated.
    """
    if not text:
        return text
    text = ''.join(char if ord(char) >= 32 else ' ' for char in text)
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def mask_identifier(value) -> str:
    """Shorten a user/session id for logs: ``abcdef123456`` -> ``abcd…3456``."""
    if value is None:
        return "-"
    value = str(value)
    if len(value) <= 8:
        return value
    return f"{value[:4]}…{value[-4:]}"


def setup_logger(name: str = DEFAULT_LOGGER_NAME, log_level: str = "INFO") -> logging.Logger:
    """
    Configure and return a logger with file and console handlers.

    Args:
        name: Logger name
        log_level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers if setup is called multiple times
    if logger.handlers:
        return logger

    formatter = MillisecondFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    # ─── File Handler ───
    today = datetime.now().strftime("%Y-%m-%d")
    log_dir = Path(os.getenv("LOG_DIR", "logs")) / today
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_dir / "chat.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # ─── Console Handler ───
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Return the named logger, configuring it on first use from LOG_LEVEL."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        setup_logger(name, os.getenv("LOG_LEVEL", "INFO"))
    return logger
