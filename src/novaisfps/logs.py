from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .utils import ensure_dir

FILE_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def run_logger(
    run_id: str,
    log_file: Optional[Path] = None,
    *,
    console: Optional[Console] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """Build the logger for one run.

    The logger does not propagate to the root logger, so two runs in one
    process never share handlers.
    """
    logger = logging.getLogger(f"novaisfps.run.{run_id}")
    close_logger(logger)
    logger.setLevel(level)
    logger.propagate = False
    console_handler = RichHandler(
        console=console,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)
    if log_file is not None:
        ensure_dir(log_file.parent)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, FILE_DATE_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)
    return logger


def unit_logger(name: str, stream=None, level: int = logging.INFO) -> logging.Logger:
    # Unit stdout is forwarded line by line into the run log by the orchestrator.
    logger = logging.getLogger(f"novaisfps.unit.{name}")
    close_logger(logger)
    logger.setLevel(level)
    logger.propagate = False
    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
