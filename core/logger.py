"""Centralized logging configuration."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
FILE_LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Colored log formatter for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        # Colorize a copy so file handlers sharing the record stay plain
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


class JobLoggerAdapter(logging.LoggerAdapter):
    """Prefix every message with the lottery job it belongs to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[job {self.extra['job_id']}] {msg}", kwargs


def setup_logger(
    name: str = "lottery",
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    colored: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure and return a logger instance.

    Args:
        name: Logger name
        level: Logging level
        log_file: Optional file path for file logging
        colored: Whether to use colored output for console
        max_bytes: Rotate the log file once it grows past this size
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    formatter_cls = ColoredFormatter if colored else logging.Formatter
    console_handler.setFormatter(formatter_cls(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger by name."""
    return logging.getLogger(name)


def get_job_logger(name: str, job_id: int) -> JobLoggerAdapter:
    """Get a logger whose records carry the lottery job id."""
    return JobLoggerAdapter(logging.getLogger(name), {"job_id": job_id})
