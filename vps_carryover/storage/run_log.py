"""
Detailed run log.

Routes the package's log records to the console and appends them to the
human-readable run log file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "vps_carryover"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_MARK = "_vps_carryover_handler"


def configure_run_log(
    path: Optional[Union[str, Path]],
    verbose: bool = False,
    console: Optional[Console] = None,
) -> logging.Logger:
    """Attach console and file handlers to the package logger.

    Handlers installed by an earlier call are replaced, so repeated runs in
    one process do not duplicate output.

    Args:
        path: Run log file, opened in append mode (None for console only)
        verbose: Include debug records
        console: Console for the rich handler (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            logger.removeHandler(handler)
            handler.close()

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        log_time_format=DATE_FORMAT,
    )
    rich_handler.setLevel(level)
    setattr(rich_handler, _HANDLER_MARK, True)
    logger.addHandler(rich_handler)

    if path is not None:
        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode='a', encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        file_handler.setLevel(level)
        setattr(file_handler, _HANDLER_MARK, True)
        logger.addHandler(file_handler)

    return logger


def write_run_header(logger: logging.Logger, mode: str) -> None:
    """Mark the start of one invocation in the run log."""
    logger.info("=== carry-over run (%s) started %s ===", mode, datetime.now().strftime(DATE_FORMAT))
