"""Process-wide loguru sinks."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from .config import LogConfig


def configure_logging(config: LogConfig) -> None:
    """Install stdout and rotating file sinks according to ``config``."""

    logger.remove()
    if config.also_stdout:
        logger.add(sys.stdout, level=config.level.upper())

    if config.file_path:
        Path(config.file_path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.file_path,
            level=config.level.upper(),
            rotation=f"{config.max_size_mb} MB",
            retention=f"{config.max_age_days} days",
            enqueue=True,
        )
    logger.info(
        "Logging configured (file={}, rotation={} MB, retention={} days)",
        config.file_path or "-",
        config.max_size_mb,
        config.max_age_days,
    )
