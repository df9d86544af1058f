"""Logger module shared by the workflows and the API."""

import sys

from loguru import logger

from config import Config

logger.remove()

logger.add(
    sys.stderr,
    level=Config.LOG_LEVEL,
    format=(
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    ),
    colorize=True,
    backtrace=True,
    diagnose=False,
)

__all__ = ["logger"]
