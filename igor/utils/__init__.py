"""Utility modules for the installer."""

from .logging_factory import LoggingFactory, get_logger

__all__ = ["LoggingFactory", "get_logger"]
