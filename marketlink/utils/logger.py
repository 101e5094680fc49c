"""
MarketLink - Logger Configuration
Centralized logging with loguru
"""
import sys
from pathlib import Path
from typing import Optional
from loguru import logger

from marketlink.config import Settings, settings as default_settings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure loguru sinks.

    Replaces the default handler with a console sink and, when LOG_DIR is
    set, adds a rotating file sink for everything plus one for errors only.
    """
    settings = settings or default_settings
    level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL

    # Remove default handler
    logger.remove()

    # Console handler with custom format
    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level=level,
    )

    if not settings.LOG_DIR:
        return

    log_path = Path(settings.LOG_DIR)
    log_path.mkdir(parents=True, exist_ok=True)

    # File handler for all logs
    logger.add(
        log_path / "marketlink.log",
        rotation=settings.LOG_ROTATION,
        retention=settings.LOG_RETENTION,
        compression="gz",
        format=FILE_FORMAT,
        level="DEBUG",
    )

    # File handler for errors only
    logger.add(
        log_path / "error.log",
        rotation=settings.LOG_ROTATION,
        retention=settings.LOG_RETENTION,
        compression="gz",
        format=FILE_FORMAT,
        level="ERROR",
    )


def get_logger(name: str = __name__):
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logger.bind(name=name)


# Export configured logger
__all__ = ["logger", "get_logger", "setup_logging"]
