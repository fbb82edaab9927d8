"""Loguru sink configuration."""

import sys
from pathlib import Path

from loguru import logger

_STDERR_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Replace loguru's default sink with the gateway's sinks.

    A rotating file sink is added when *log_file* is given.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_STDERR_FORMAT, enqueue=False)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level.upper(),
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
    logger.debug(f"Logging configured (level={level.upper()}, file={log_file})")
