"""DKMS kernel module build step."""
from __future__ import annotations

import logging
import re
import time
from datetime import timedelta
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
from .common import (
    cancelled,
    command_error,
    elapsed,
    is_valid_dkms_version,
    is_valid_kernel_version,
    is_valid_module_name,
)

logger = logging.getLogger(__name__)

STATE_DKMS_BUILT = "dkms_built"
STATE_DKMS_MODULE_NAME = "dkms_module_name"
STATE_DKMS_MODULE_VERSION = "dkms_module_version"
STATE_DKMS_KERNEL_VERSION = "dkms_kernel_version"
STATE_DKMS_BUILD_TIME = "dkms_build_time"

DEFAULT_DKMS_MODULE_NAME = "nvidia"
DEFAULT_DKMS_TIMEOUT = 600.0


def parse_module_version(output: str, module_name: str) -> str:
    """First registered version of ``module_name`` in ``dkms status`` output.

    Handles both ``nvidia/550.54.14, 6.5.0, x86_64: installed`` and the
    older ``nvidia, 550.54.14, ...`` layouts.
    """
    pattern = re.compile(rf"^{re.escape(module_name)}[/,]\s*([^,:\s]+)")
    for line in output.splitlines():
        match = pattern.match(line.strip())
        if match:
            return match.group(1)
    return ""


def is_module_built(output: str, module_name: str, version: str, kernel_version: str) -> bool:
    """Whether ``dkms status`` reports the module installed for ``kernel_version``."""
    prefix = f"{module_name}/{version}"
    for line in output.splitlines():
        line = line.strip()
        if line.startswith(prefix) and kernel_version in line and ": installed" in line:
            return True
    return False


class DKMSBuildStep(BaseStep):
    """Builds and installs the NVIDIA kernel module through DKMS.

    Args:
        module_name: DKMS module name
        module_version: Module version, detected from ``dkms status`` when empty
        kernel_version: Target kernel, the running kernel when empty
        skip_status_check: Rebuild even if DKMS reports the module installed
        timeout: Timeout in seconds for ``dkms build``
    """

    def __init__(
        self,
        module_name: str = DEFAULT_DKMS_MODULE_NAME,
        module_version: str = "",
        kernel_version: str = "",
        skip_status_check: bool = False,
        timeout: float = DEFAULT_DKMS_TIMEOUT,
    ):
        super().__init__("dkms_build", "Build NVIDIA kernel modules with DKMS", can_rollback=True)
        self.module_name = module_name
        self.module_version = module_version
        self.kernel_version = kernel_version
        self.skip_status_check = skip_status_check
        self.timeout = timeout

    def validate(self, ctx: Context) -> None:
        if not ctx.has_executor():
            raise StepValidationError("executor is required for DKMS module build", self.name)
        if not is_valid_module_name(self.module_name):
            raise StepValidationError(f"invalid DKMS module name: {self.module_name!r}", self.name)
        if self.module_version and not is_valid_dkms_version(self.module_version):
            raise StepValidationError(f"invalid module version: {self.module_version!r}", self.name)
        if self.kernel_version and not is_valid_kernel_version(self.kernel_version):
            raise StepValidationError(f"invalid kernel version: {self.kernel_version!r}", self.name)

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start)

        if not self._dkms_available(ctx):
            logger.info("DKMS is not available, skipping module build")
            return skip_step("DKMS is not available").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        try:
            kernel_version = self._get_kernel_version(ctx)
        except OperationError as e:
            logger.error(f"Failed to get kernel version: {e}")
            return fail_step("failed to get kernel version", e).with_duration(elapsed(start))

        status_output = self._dkms_status(ctx)
        version = self.module_version or parse_module_version(status_output, self.module_name)
        if not version:
            logger.info("No NVIDIA DKMS module found, skipping build")
            return skip_step("no NVIDIA DKMS module found").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        module_ref = f"{self.module_name}/{version}"
        if not self.skip_status_check and is_module_built(
            status_output, self.module_name, version, kernel_version
        ):
            logger.info(f"{module_ref} is already built for kernel {kernel_version}")
            return skip_step(
                f"module {module_ref} is already built for kernel {kernel_version}"
            ).with_duration(elapsed(start))

        if ctx.dry_run:
            logger.info(f"dry run: would run dkms build {module_ref} -k {kernel_version}")
            logger.info(f"dry run: would run dkms install {module_ref} -k {kernel_version}")
            return complete_step("dry run: DKMS module would be built").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        logger.info(f"Building DKMS module {module_ref} for kernel {kernel_version}")
        result = ctx.executor.execute_elevated(
            "dkms", "build", module_ref, "-k", kernel_version, timeout=self.timeout
        )
        if result.failed:
            error = command_error(result, "dkms build")
            logger.error(str(error))
            return fail_step("failed to build DKMS module", error).with_duration(elapsed(start))

        if ctx.is_cancelled():
            self._remove_quietly(ctx, module_ref, kernel_version)
            return cancelled(self.name, start)

        logger.info(f"Installing DKMS module {module_ref} for kernel {kernel_version}")
        result = ctx.executor.execute_elevated("dkms", "install", module_ref, "-k", kernel_version)
        if result.failed:
            error = command_error(result, "dkms install")
            logger.error(str(error))
            self._remove_quietly(ctx, module_ref, kernel_version)
            return fail_step("failed to install DKMS module", error).with_duration(elapsed(start))

        duration = elapsed(start)
        ctx.set_state(STATE_DKMS_BUILT, True)
        ctx.set_state(STATE_DKMS_MODULE_NAME, self.module_name)
        ctx.set_state(STATE_DKMS_MODULE_VERSION, version)
        ctx.set_state(STATE_DKMS_KERNEL_VERSION, kernel_version)
        ctx.set_state(STATE_DKMS_BUILD_TIME, timedelta(seconds=duration))
        logger.info(f"DKMS module {module_ref} built and installed in {duration:.1f}s")
        return (
            complete_step("NVIDIA DKMS module built and installed successfully")
            .with_duration(duration)
            .with_can_rollback(True)
        )

    def rollback(self, ctx: Context) -> None:
        if not ctx.get_state_bool(STATE_DKMS_BUILT):
            return
        version = ctx.get_state_string(STATE_DKMS_MODULE_VERSION)
        if not version:
            return
        if not ctx.has_executor():
            raise OperationError("executor not available for rollback", self.name)

        module_name = ctx.get_state_string(STATE_DKMS_MODULE_NAME) or self.module_name
        kernel_version = ctx.get_state_string(STATE_DKMS_KERNEL_VERSION)
        module_ref = f"{module_name}/{version}"
        logger.info(f"Rolling back DKMS module {module_ref} for kernel {kernel_version}")
        result = self._remove(ctx, module_ref, kernel_version)
        if result.failed:
            raise OperationError(
                f"failed to remove DKMS module '{module_ref}' for kernel '{kernel_version}': "
                f"{result.error_message()}",
                self.name,
            )

        for key in (
            STATE_DKMS_BUILT,
            STATE_DKMS_MODULE_NAME,
            STATE_DKMS_MODULE_VERSION,
            STATE_DKMS_KERNEL_VERSION,
            STATE_DKMS_BUILD_TIME,
        ):
            ctx.delete_state(key)

    @staticmethod
    def _dkms_available(ctx: Context) -> bool:
        return ctx.executor.execute("which", "dkms").succeeded

    def _get_kernel_version(self, ctx: Context) -> str:
        if self.kernel_version:
            return self.kernel_version
        if ctx.kernel_detector is not None:
            version = ctx.kernel_detector.kernel_version()
            if version:
                return version
        result = ctx.executor.execute("uname", "-r")
        if result.failed:
            raise command_error(result, "uname")
        version = result.output()
        if not version:
            raise OperationError("empty kernel version returned")
        return version

    def _dkms_status(self, ctx: Context) -> str:
        result = ctx.executor.execute("dkms", "status", self.module_name)
        return result.stdout if result.succeeded else ""

    @staticmethod
    def _remove(ctx: Context, module_ref: str, kernel_version: Optional[str]):
        args = ["remove", module_ref]
        if kernel_version:
            args += ["-k", kernel_version]
        args.append("--all")
        return ctx.executor.execute_elevated("dkms", *args)

    def _remove_quietly(self, ctx: Context, module_ref: str, kernel_version: str) -> None:
        result = self._remove(ctx, module_ref, kernel_version)
        if result.failed:
            logger.warning(f"Failed to remove partial DKMS build {module_ref}: {result.error_message()}")
