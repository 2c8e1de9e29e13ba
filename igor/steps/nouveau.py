"""Nouveau driver blacklisting step."""
from __future__ import annotations

import logging
import time
from typing import List, Tuple

from ..errors import OperationError, StepValidationError
from ..orchestration.workflow_engine.context import STATE_NEEDS_REBOOT, Context
from ..orchestration.workflow_engine.steps import (
    BaseStep,
    StepResult,
    complete_step,
    fail_step,
    skip_step,
)
from ..system.distro import DistroFamily
from .common import cancelled, command_error, elapsed

logger = logging.getLogger(__name__)

STATE_NOUVEAU_BLACKLISTED = "nouveau_blacklisted"
STATE_NOUVEAU_BLACKLIST_FILE = "nouveau_blacklist_file"

DEFAULT_BLACKLIST_PATH = "/etc/modprobe.d/blacklist-nouveau.conf"

BLACKLIST_CONTENT = (
    "# Generated by Igor - NVIDIA driver installer\n"
    "blacklist nouveau\n"
    "options nouveau modeset=0\n"
)

# Initramfs regeneration per family; unknown families fall back to Debian tooling
_INITRAMFS_COMMANDS = {
    DistroFamily.DEBIAN: ("update-initramfs", ["-u"]),
    DistroFamily.RHEL: ("dracut", ["--force"]),
    DistroFamily.SUSE: ("dracut", ["--force"]),
    DistroFamily.ARCH: ("mkinitcpio", ["-P"]),
}

INITRAMFS_TIMEOUT = 300.0


def initramfs_command(family: DistroFamily) -> Tuple[str, List[str]]:
    cmd, args = _INITRAMFS_COMMANDS.get(family, _INITRAMFS_COMMANDS[DistroFamily.DEBIAN])
    return cmd, list(args)


class NouveauBlacklistStep(BaseStep):
    """Blacklists the nouveau driver so the NVIDIA modules can bind the GPU.

    Writing the modprobe configuration and regenerating the initramfs only
    take effect after a reboot, so a successful run sets ``needs_reboot``.
    """

    def __init__(self, blacklist_path: str = DEFAULT_BLACKLIST_PATH, skip_initramfs: bool = False):
        super().__init__("nouveau_blacklist", "Blacklist nouveau driver", can_rollback=True)
        self.blacklist_path = blacklist_path
        self.skip_initramfs = skip_initramfs

    def validate(self, ctx: Context) -> None:
        if not ctx.has_executor():
            raise StepValidationError("executor is required for nouveau blacklisting", self.name)
        if ctx.file_writer is None:
            raise StepValidationError("file writer is required for nouveau blacklisting", self.name)

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start)

        if self._already_blacklisted(ctx):
            logger.info("Nouveau is already blacklisted")
            return skip_step("nouveau is already blacklisted").with_duration(elapsed(start))

        if ctx.dry_run:
            logger.info(f"dry run: would write {self.blacklist_path}")
            if not self.skip_initramfs:
                cmd, args = initramfs_command(self._family(ctx))
                logger.info(f"dry run: would run {cmd} {' '.join(args)}")
            return complete_step("dry run: nouveau would be blacklisted").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        logger.info(f"Writing nouveau blacklist to {self.blacklist_path}")
        try:
            ctx.file_writer.write_file(self.blacklist_path, BLACKLIST_CONTENT)
        except Exception as e:
            logger.error(f"Failed to write blacklist file: {e}")
            return fail_step("failed to write blacklist file", e).with_duration(elapsed(start))

        if not self.skip_initramfs:
            if ctx.is_cancelled():
                self._remove_quietly(ctx)
                return cancelled(self.name, start)
            try:
                self._regenerate_initramfs(ctx)
            except OperationError as e:
                logger.error(f"Failed to regenerate initramfs: {e}")
                self._remove_quietly(ctx)
                return fail_step("failed to regenerate initramfs", e).with_duration(elapsed(start))

        ctx.set_state(STATE_NOUVEAU_BLACKLISTED, True)
        ctx.set_state(STATE_NOUVEAU_BLACKLIST_FILE, self.blacklist_path)
        ctx.set_state(STATE_NEEDS_REBOOT, True)
        logger.info("Nouveau blacklisted, a reboot is required")
        return (
            complete_step("nouveau blacklisted, reboot required")
            .with_duration(elapsed(start))
            .with_can_rollback(True)
        )

    def rollback(self, ctx: Context) -> None:
        if not ctx.get_state_bool(STATE_NOUVEAU_BLACKLISTED):
            return
        path = ctx.get_state_string(STATE_NOUVEAU_BLACKLIST_FILE) or self.blacklist_path
        if ctx.file_writer is None:
            raise OperationError("file writer not available for rollback", self.name)

        logger.info(f"Rolling back nouveau blacklist: removing {path}")
        ctx.file_writer.remove_file(path)
        if not self.skip_initramfs:
            self._regenerate_initramfs(ctx)

        ctx.delete_state(STATE_NOUVEAU_BLACKLISTED)
        ctx.delete_state(STATE_NOUVEAU_BLACKLIST_FILE)

    def _already_blacklisted(self, ctx: Context) -> bool:
        if ctx.nouveau_detector is not None:
            try:
                if ctx.nouveau_detector.is_blacklisted():
                    return True
            except Exception as e:
                logger.warning(f"Nouveau detection failed, proceeding anyway: {e}")
        return ctx.file_writer.exists(self.blacklist_path)

    def _regenerate_initramfs(self, ctx: Context) -> None:
        cmd, args = initramfs_command(self._family(ctx))
        logger.info(f"Regenerating initramfs with {cmd}")
        result = ctx.executor.execute_elevated(cmd, *args, timeout=INITRAMFS_TIMEOUT)
        if result.failed:
            raise command_error(result, cmd)

    @staticmethod
    def _family(ctx: Context) -> DistroFamily:
        return ctx.distro.family if ctx.has_distro() else DistroFamily.UNKNOWN

    def _remove_quietly(self, ctx: Context) -> None:
        try:
            ctx.file_writer.remove_file(self.blacklist_path)
        except Exception as e:
            logger.error(f"Failed to remove {self.blacklist_path} after aborted setup: {e}")
