"""Terminal presentation."""

from .console import ConsoleManager, result_to_dict

__all__ = ["ConsoleManager", "result_to_dict"]
