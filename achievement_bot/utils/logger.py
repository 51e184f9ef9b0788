import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from achievement_bot.config import Config

# Library loggers that are only useful while debugging
NOISY_LOGGERS = ('httpx', 'httpcore', 'discord', 'discord.http', 'discord.gateway', 'sqlalchemy.engine')

_shared_handlers: Optional[List[logging.Handler]] = None


def _log_level() -> int:
    if Config.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName(Config.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(log_level: int) -> List[logging.Handler]:
    # Watermarks and unlock times are UTC, so log timestamps are too
    formatter = logging.Formatter(
        '%(asctime)sZ - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    formatter.converter = time.gmtime

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if Config.LOG_DIR:
        log_dir = Path(Config.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(
            log_dir / f'achievement_bot_{datetime.now(timezone.utc).strftime("%Y%m%d")}.log',
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not Config.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return handlers


def setup_logger(name: str) -> logging.Logger:
    """
    Return a logger that writes to the console and the daily log file.

    Every module logger shares one console handler and one file handler, so
    the log file is opened once per process. LOG_DIR set to an empty string
    disables the file.
    """
    global _shared_handlers

    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    log_level = _log_level()
    if _shared_handlers is None:
        _shared_handlers = _build_handlers(log_level)

    logger.setLevel(log_level)
    for handler in _shared_handlers:
        logger.addHandler(handler)

    return logger


def reset_handlers():
    """Close the shared handlers so the next setup_logger call rebuilds them."""
    global _shared_handlers

    if _shared_handlers is None:
        return
    for handler in _shared_handlers:
        handler.close()
    _shared_handlers = None
