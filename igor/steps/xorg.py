"""X.org configuration step."""
from __future__ import annotations

import logging
import posixpath
import time
from typing import Optional

from ..errors import OperationError, StepValidationError
from ..orchestration.workflow_engine.context import Context
from ..orchestration.workflow_engine.steps import (
    BaseStep,
    StepResult,
    complete_step,
    fail_step,
    skip_step,
)
from .common import cancelled, elapsed

logger = logging.getLogger(__name__)

STATE_XORG_CONFIGURED = "xorg_configured"
STATE_XORG_CONFIG_PATH = "xorg_config_path"
STATE_XORG_BACKUP_PATH = "xorg_backup_path"
STATE_XORG_DISPLAY_SERVER = "xorg_display_server"

DEFAULT_XORG_CONF_DIR = "/etc/X11/xorg.conf.d"
DEFAULT_XORG_CONF_FILE = "20-nvidia.conf"
DEFAULT_XORG_CONF_PATH = posixpath.join(DEFAULT_XORG_CONF_DIR, DEFAULT_XORG_CONF_FILE)
BACKUP_SUFFIX = ".bak"

NVIDIA_XORG_CONFIG = """\
# Generated by Igor - NVIDIA driver installer
# Remove this file to restore the previous X.org configuration.

Section "OutputClass"
    Identifier "nvidia"
    MatchDriver "nvidia-drm"
    Driver "nvidia"
    Option "AllowEmptyInitialConfiguration"
    Option "PrimaryGPU" "yes"
    ModulePath "/usr/lib/nvidia/xorg"
    ModulePath "/usr/lib/xorg/modules"
EndSection
"""


class XorgConfigStep(BaseStep):
    """Writes an X.org snippet that makes the NVIDIA driver primary.

    An existing file at the target path is backed up and restored on
    rollback. With backups disabled the step refuses to replace it.
    """

    def __init__(
        self,
        config_dir: str = DEFAULT_XORG_CONF_DIR,
        config_file: str = DEFAULT_XORG_CONF_FILE,
        content: str = NVIDIA_XORG_CONFIG,
        skip_if_wayland: bool = True,
        create_backup: bool = True,
    ):
        super().__init__("xorg_config", "Configure X.org for NVIDIA", can_rollback=True)
        self.config_dir = config_dir
        self.config_file = config_file
        self.content = content
        self.skip_if_wayland = skip_if_wayland
        self.create_backup = create_backup

    @property
    def config_path(self) -> str:
        return posixpath.join(self.config_dir, self.config_file)

    def validate(self, ctx: Context) -> None:
        if ctx.file_writer is None:
            raise StepValidationError("file writer is required for X.org configuration", self.name)
        if not self.config_file or "/" in self.config_file:
            raise StepValidationError(f"invalid config file name: {self.config_file!r}", self.name)
        if not self.content.strip():
            raise StepValidationError("X.org configuration content is empty", self.name)

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start)

        display_server = self._display_server(ctx)
        if display_server == "wayland" and self.skip_if_wayland:
            logger.info("Wayland session detected, skipping X.org configuration")
            return skip_step("Wayland detected, X.org configuration not needed").with_duration(
                elapsed(start)
            )

        path = self.config_path
        backup_path: Optional[str] = None
        if ctx.file_writer.exists(path):
            if not self.create_backup:
                logger.error(f"{path} already exists and backups are disabled")
                return fail_step(
                    "existing X.org config would be overwritten without a backup",
                    OperationError(f"{path} already exists", self.name),
                ).with_duration(elapsed(start))
            backup_path = path + BACKUP_SUFFIX

        if ctx.dry_run:
            if backup_path:
                logger.info(f"dry run: would back up {path} to {backup_path}")
            logger.info(f"dry run: would write {path}")
            return complete_step("dry run: X.org configuration would be written").with_duration(
                elapsed(start)
            )

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        if backup_path:
            logger.info(f"Backing up {path} to {backup_path}")
            try:
                ctx.file_writer.copy(path, backup_path)
            except Exception as e:
                logger.error(f"Failed to back up existing X.org config: {e}")
                return fail_step("failed to back up existing X.org config", e).with_duration(
                    elapsed(start)
                )

        if ctx.is_cancelled():
            self._discard_backup(ctx, backup_path)
            return cancelled(self.name, start)

        logger.info(f"Writing X.org configuration to {path}")
        try:
            ctx.file_writer.write_file(path, self.content)
        except Exception as e:
            logger.error(f"Failed to write X.org config: {e}")
            self._discard_backup(ctx, backup_path)
            return fail_step("failed to write X.org config", e).with_duration(elapsed(start))

        ctx.set_state(STATE_XORG_CONFIGURED, True)
        ctx.set_state(STATE_XORG_CONFIG_PATH, path)
        ctx.set_state(STATE_XORG_DISPLAY_SERVER, display_server)
        if backup_path:
            ctx.set_state(STATE_XORG_BACKUP_PATH, backup_path)
        return (
            complete_step("X.org configuration written successfully")
            .with_duration(elapsed(start))
            .with_can_rollback(True)
        )

    def rollback(self, ctx: Context) -> None:
        if not ctx.get_state_bool(STATE_XORG_CONFIGURED):
            return
        path = ctx.get_state_string(STATE_XORG_CONFIG_PATH)
        if not path:
            return
        if ctx.file_writer is None:
            raise OperationError("file writer not available for rollback", self.name)

        logger.info(f"Rolling back X.org configuration: removing {path}")
        ctx.file_writer.remove_file(path)
        backup_path = ctx.get_state_string(STATE_XORG_BACKUP_PATH)
        if backup_path:
            logger.info(f"Restoring {path} from {backup_path}")
            ctx.file_writer.rename(backup_path, path)

        for key in (
            STATE_XORG_CONFIGURED,
            STATE_XORG_CONFIG_PATH,
            STATE_XORG_BACKUP_PATH,
            STATE_XORG_DISPLAY_SERVER,
        ):
            ctx.delete_state(key)

    @staticmethod
    def _display_server(ctx: Context) -> str:
        if ctx.display_detector is None:
            return "unknown"
        return ctx.display_detector.display_server()

    @staticmethod
    def _discard_backup(ctx: Context, backup_path: Optional[str]) -> None:
        if not backup_path:
            return
        try:
            ctx.file_writer.remove_file(backup_path)
        except Exception as e:
            logger.warning(f"Failed to remove backup {backup_path}: {e}")
