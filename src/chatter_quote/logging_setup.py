"""Logging setup for chatter-quote.

Quote deliveries and schedule firings run on scheduler worker threads, so
every timestamped line carries the thread name ("job-dispatcher",
"quote-job_0", ...) next to the logger name.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, LoggingConfig

ROOT_LOGGER = "chatter_quote"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_initialized = False


def _formatter(timestamps: bool) -> logging.Formatter:
    if timestamps:
        return logging.Formatter(
            "%(asctime)s %(levelname)-5s [%(threadName)-14s] %(name)s: %(message)s",
            datefmt=DATE_FORMAT,
        )
    return logging.Formatter("%(levelname)-5s %(name)s: %(message)s")


def _file_handler(log_config: LoggingConfig) -> logging.Handler:
    path = Path(log_config.file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not log_config.rotate:
        return logging.FileHandler(path)
    return RotatingFileHandler(
        path,
        maxBytes=log_config.max_size_mb * 1024 * 1024,
        backupCount=log_config.backup_count,
    )


def setup_logging(
    config: Config,
    verbose: bool = False,
    daemon_mode: bool = False,
) -> None:
    """
    Configure the chatter_quote logger hierarchy. Later calls are no-ops.

    Args:
        config: Application configuration with logging settings
        verbose: If True, override config level to DEBUG
        daemon_mode: If True, console lines get timestamps and thread names
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_config = config.logging
    level_name = "DEBUG" if verbose else log_config.level.upper()
    level = logging.getLevelName(level_name)
    unknown_level = not isinstance(level, int)
    if unknown_level:
        level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    handlers: list[logging.Handler] = []
    if log_config.output in ("console", "both"):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(_formatter(timestamps=daemon_mode))
        handlers.append(console)
    if log_config.output in ("file", "both") and log_config.file:
        file_handler = _file_handler(log_config)
        file_handler.setFormatter(_formatter(timestamps=True))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)

    # Talk requests are logged by the client itself
    for noisy_logger in ("httpx", "httpcore"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    if unknown_level:
        logger.warning("Unknown log level %r, using INFO", log_config.level)


def reset_logging() -> None:
    """Close handlers and allow setup_logging() to run again (tests)."""
    global _initialized
    _initialized = False
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
