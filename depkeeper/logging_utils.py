"""Structured logging configuration built on top of loguru."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .config import LoggingConfig


def configure_logging(config: "LoggingConfig | None" = None) -> None:
    """Configure Loguru sinks for console and optional file output."""

    level = config.level if config else "INFO"
    log_dir = config.log_dir if config else None

    logger.remove()
    logger.configure(extra={"component": "depkeeper"})

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "pid={process} | "
        "<cyan>{extra[component]}</cyan> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stderr,
        format=log_format,
        colorize=True,
        level=level,
    )

    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / "depkeeper.log",
            rotation="1 day",
            retention="14 days",
            compression="gz",
            level=level,
            backtrace=False,
            diagnose=False,
            format=log_format,
        )


def get_logger(name: Optional[str] = None):
    """Return a child logger with contextualized name."""

    if name:
        return logger.bind(component=name)
    return logger
