"""Logging setup for cloudmover processes."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | int = logging.INFO, log_path: Path | str | None = None) -> None:
    """Configure logging to output to stdout and optionally to a file.

    Handlers are attached to the ``cloudmover`` logger only, so library
    loggers keep their own configuration. Calling this twice does not
    duplicate handlers.

    Args:
        level: Log level name or number.
        log_path: Optional path to a log file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("cloudmover")
    root_logger.setLevel(level if isinstance(level, int) else level.upper())
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    if log_path is not None:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Silence per-run APScheduler INFO lines
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
