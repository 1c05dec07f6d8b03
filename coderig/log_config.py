# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Logging configuration for Coderig."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_HANDLER_MARK = "_coderig_handler"


def parse_log_level(name, default=logging.INFO):
    """Map a config string like "debug" or "warn" to a logging level."""
    if not name:
        return default
    return LOG_LEVELS.get(str(name).strip().lower(), default)


def configure_logging(level=logging.INFO, log_dir=None):
    """Set up logging with file rotation and console output."""
    if log_dir is None:
        log_dir = Path.home() / ".coderig" / "logs"
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger("coderig")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root_logger.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(log_dir / "coderig.log", maxBytes=5_000_000, backupCount=3)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    for handler in (file_handler, console_handler):
        setattr(handler, _HANDLER_MARK, True)
        root_logger.addHandler(handler)

    return root_logger
