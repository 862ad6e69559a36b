"""
Logging setup for the API.

Console output is coloured when attached to a terminal; files rotate at 10MB.
"""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Optional

from config import settings


class ColoredFormatter(logging.Formatter):
    """Add colors to console logging for better readability."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def format(self, record):
        if hasattr(sys.stdout, 'isatty') and sys.stdout.isatty():
            levelname = record.levelname
            if levelname in self.COLORS:
                record = logging.makeLogRecord(record.__dict__)
                record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logging(app_name: str = "asset_api", log_level: Optional[str] = None, log_dir: Optional[str] = None):
    """
    Configure root logging with a console handler and rotating log files.

    Args:
        app_name: Base name for the log files
        log_level: Logging level name, defaults to LOG_LEVEL
        log_dir: Directory for log files; file logging is skipped when unset
    """
    log_level = log_level or settings.log_level
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = log_dir or settings.log_dir

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(
        fmt='%(levelname)-8s [%(asctime)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_format = logging.Formatter(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = logging.handlers.RotatingFileHandler(
            path / f'{app_name}.log',
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(file_format)
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            path / f'{app_name}_errors.log',
            maxBytes=10 * 1024 * 1024,
            backupCount=10,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_format)
        root_logger.addHandler(error_handler)

    # Reduce noise from external libraries
    logging.getLogger('pymongo').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    logging.info(f"Logging initialized - Level: {log_level} | Directory: {log_dir or 'console only'}")
    return root_logger


def setup_request_logging(app):
    """Log method, path, status and duration of every request."""
    logger = logging.getLogger('api.requests')

    @app.middleware("http")
    async def log_request(request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000
        if not request.url.path.startswith('/uploads'):
            logger.info(
                f"{request.method} {request.url.path} | {response.status_code} | {duration_ms:.2f}ms"
            )
        return response
