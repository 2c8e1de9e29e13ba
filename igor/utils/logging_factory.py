"""Logging setup for the installer.

All modules log through ``logging.getLogger(__name__)``, so every installer
logger lives below the ``igor`` namespace. ``LoggingFactory`` configures that
namespace once per process: a file handler that keeps the full record of a
run (the log a user attaches to a bug report) and a rich console handler for
the interactive terminal.

Usage:
    LoggingFactory.initialize(log_dir=Path("/var/log/igor"), level=logging.INFO)
    logger = get_logger(__name__)
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "igor"
LOG_FILE_NAME = "igor.log"
DEFAULT_LOG_DIR = Path("logs")
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LoggingFactory:
    """Configures the ``igor`` logger hierarchy once.

    Class Attributes:
        _initialized: Set after the first successful ``initialize``
        _log_dir: Directory holding the run log, None when file logging is off
    """

    _initialized = False
    _log_dir: Optional[Path] = DEFAULT_LOG_DIR
    _handlers: list = []

    @classmethod
    def initialize(
        cls,
        log_dir: Optional[Path] = DEFAULT_LOG_DIR,
        level: int = logging.INFO,
        console: Optional[Console] = None,
        log_to_file: bool = True,
    ) -> None:
        """Attach handlers to the ``igor`` logger.

        Later calls are ignored until ``reset`` is called.

        Args:
            log_dir: Directory for the run log (created if missing)
            level: Level for the ``igor`` logger
            console: Rich console for terminal output (stderr by default)
            log_to_file: Write the run log to ``log_dir``
        """
        if cls._initialized:
            return

        logger = logging.getLogger(ROOT_LOGGER)
        logger.setLevel(level)
        # Keep records out of the root logger so host applications are unaffected
        logger.propagate = False

        console_handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(level)
        cls._add_handler(logger, console_handler)

        if log_to_file and log_dir is not None:
            cls._log_dir = Path(log_dir)
            try:
                cls._log_dir.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(cls._log_dir / LOG_FILE_NAME)
            except OSError as e:
                logger.warning(f"File logging disabled, cannot open {cls._log_dir}: {e}")
                cls._log_dir = None
            else:
                file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
                file_handler.setLevel(logging.DEBUG)
                cls._add_handler(logger, file_handler)
        else:
            cls._log_dir = None

        cls._initialized = True

    @classmethod
    def _add_handler(cls, logger: logging.Logger, handler: logging.Handler) -> None:
        logger.addHandler(handler)
        cls._handlers.append(handler)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Logger for ``name``, initializing with defaults on first use."""
        if not cls._initialized:
            cls.initialize()
        return logging.getLogger(name)

    @classmethod
    def log_file(cls) -> Optional[Path]:
        if cls._log_dir is None:
            return None
        return cls._log_dir / LOG_FILE_NAME

    @staticmethod
    def set_level(name: str, level: int) -> None:
        logging.getLogger(name).setLevel(level)

    @classmethod
    def configure_verbose(cls, verbose: bool = False) -> None:
        """Switch console output between INFO and DEBUG."""
        level = logging.DEBUG if verbose else logging.INFO
        logging.getLogger(ROOT_LOGGER).setLevel(level)
        for handler in cls._handlers:
            if isinstance(handler, RichHandler):
                handler.setLevel(level)

    @classmethod
    def reset(cls) -> None:
        """Detach and close all handlers added by ``initialize``."""
        logger = logging.getLogger(ROOT_LOGGER)
        for handler in cls._handlers:
            logger.removeHandler(handler)
            handler.close()
        cls._handlers = []
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
        cls._log_dir = DEFAULT_LOG_DIR
        cls._initialized = False


def get_logger(name: str) -> logging.Logger:
    return LoggingFactory.get_logger(name)
