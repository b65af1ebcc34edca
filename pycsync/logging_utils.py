"""Logging setup for the CLI and the daemon."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

MAX_BYTES = 5 * 1024 * 1024  # 5 MB per log segment
BACKUP_COUNT = 3
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: Union[str, int] = logging.WARNING,
    log_file: Optional[Path] = None,
    verbose: bool = False,
    console: bool = True,
) -> logging.Logger:
    """Configure the ``pycsync`` logger.

    Args:
        level: Logging level (string name or int constant)
        log_file: Optional file receiving rotated logs (daemon mode)
        verbose: Force DEBUG level
        console: Also log to stderr

    Returns:
        The configured package logger
    """
    resolved_level = logging.DEBUG if verbose else _resolve_level(level)
    formatter = logging.Formatter(LOG_FORMAT)

    logger = logging.getLogger("pycsync")
    _reset_handlers(logger)
    logger.setLevel(resolved_level)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.WARNING)
    return int(level)


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
