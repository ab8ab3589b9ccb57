"""
Logging configuration.

Sets up file logging for cleaning runs so exclusions, skipped rows and
cache activity can be reviewed after the fact.
"""

from __future__ import annotations

import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
PACKAGE_LOGGER = "trajclean"


def get_log_file_path(log_dir: Path | str = "logs") -> Path:
    """Path to today's log file under log_dir."""
    return Path(log_dir) / f"trajclean_{datetime.now().strftime('%Y%m%d')}.log"


def setup_logging(log_dir: Path | str = "logs", level: int = logging.INFO) -> Path:
    """
    Attach a rotating file handler to the package logger.

    Parameters
    ----------
    log_dir : Path or str
        Directory for log files (default: "logs")
    level : int
        Level for the package logger (the file handler records DEBUG and up)

    Returns
    -------
    Path
        Path to the current log file

    Notes
    -----
    - Rotating log files (max 10 MB, keeps 5 backups)
    - Log format: timestamp | level | module | message
    - Calling twice with the same directory does not duplicate handlers
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = get_log_file_path(log_dir)

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(level)

    for handler in pkg_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_file.resolve():
            return log_file

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    pkg_logger.addHandler(file_handler)

    pkg_logger.info("=" * 80)
    pkg_logger.info("trajclean session started")
    pkg_logger.info("=" * 80)
    return log_file


def read_recent_logs(log_dir: Path | str = "logs", max_lines: int = 500) -> list[str]:
    """Last max_lines lines of today's log file (empty if there is none)."""
    log_file = get_log_file_path(log_dir)
    if not log_file.exists():
        return []
    with open(log_file, "r", encoding="utf-8") as f:
        lines = f.readlines()
    return lines[-max_lines:]
