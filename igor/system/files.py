"""Privileged configuration file access.

Configuration files live under /etc, so writes go through the command
executor with elevation instead of direct ``open()`` calls.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from ..errors import OperationError

logger = logging.getLogger(__name__)


class FileWriter:
    """Writes, copies and removes system files through an executor."""

    def __init__(self, executor):
        self.executor = executor

    def write_file(self, path: str, content: str) -> None:
        """Create or replace ``path`` with ``content``.

        Raises:
            OperationError: If the file could not be written
        """
        parent = str(Path(path).parent)
        self._check(self.executor.execute_elevated("mkdir", "-p", parent), f"create {parent}")
        result = self.executor.execute_with_input(content, "tee", path, elevated=True)
        self._check(result, f"write {path}")
        logger.debug(f"Wrote {path}")

    def remove_file(self, path: str) -> None:
        """Remove ``path``; a missing file is not an error."""
        self._check(self.executor.execute_elevated("rm", "-f", path), f"remove {path}")
        logger.debug(f"Removed {path}")

    def copy(self, src: str, dst: str) -> None:
        self._check(self.executor.execute_elevated("cp", "-f", src, dst), f"copy {src} to {dst}")

    def rename(self, src: str, dst: str) -> None:
        self._check(self.executor.execute_elevated("mv", "-f", src, dst), f"move {src} to {dst}")

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    @staticmethod
    def _check(result, action: str) -> None:
        if result.failed:
            raise OperationError(f"failed to {action}: {result.error_message()}")
