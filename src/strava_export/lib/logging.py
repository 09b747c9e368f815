"""Logging configuration for strava-export.

Every run logs to the console and to a timestamped DEBUG file under
``<data dir>/logs``. The console level follows the CLI flags: ``--quiet``
shows warnings only, ``-v`` adds debug messages, and ``-vv`` also echoes
stravalib's request logging.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from strava_export.config import Config

LOGGER_NAME = "strava_export"

CONSOLE_FORMAT = "%(message)s"
VERBOSE_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def console_level(verbose: int = 0, quiet: bool = False) -> int:
    """Map the -v/--quiet flags to a console log level."""
    if quiet:
        return logging.WARNING
    if verbose > 0:
        return logging.DEBUG
    return logging.INFO


def log_directory(config: Config | None) -> Path:
    if config is None:
        return Path("logs")
    return Path(config.data.directory).expanduser() / "logs"


def setup_logging(
    config: Config | None = None,
    verbose: int = 0,
    quiet: bool = False,
) -> Path:
    """Set up the strava_export and stravalib loggers for one run.

    Handlers installed by an earlier call are removed first, so repeated
    invocations in one process do not duplicate output.

    Args:
        config: Application config; logs go to its data directory.
        verbose: Number of ``-v`` flags.
        quiet: Only show warnings and errors on the console.

    Returns:
        Path of the log file for this run.
    """
    logger = logging.getLogger(LOGGER_NAME)
    stravalib_logger = logging.getLogger("stravalib")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        stravalib_logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)

    level = console_level(verbose, quiet)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(VERBOSE_CONSOLE_FORMAT if level == logging.DEBUG else CONSOLE_FORMAT)
    )
    logger.addHandler(console_handler)

    log_dir = log_directory(config)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"strava-export-{datetime.now().strftime('%Y%m%dT%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(file_handler)

    stravalib_logger.setLevel(logging.DEBUG)
    stravalib_logger.addHandler(file_handler)
    if verbose > 1:
        stravalib_logger.addHandler(console_handler)

    logger.debug("Logging to %s (console level %s)", log_file, logging.getLevelName(level))
    return log_file
