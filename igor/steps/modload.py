"""Kernel module loading step."""
from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from ..errors import OperationError, StepValidationError
from ..orchestration.workflow_engine.context import Context
from ..orchestration.workflow_engine.steps import (
    BaseStep,
    StepResult,
    complete_step,
    fail_step,
    skip_step,
)
from ..system.detectors import parse_lsmod
from .common import cancelled, command_error, elapsed, is_valid_module_name

logger = logging.getLogger(__name__)

STATE_MODULES_LOADED = "modules_loaded"
STATE_LOADED_MODULES = "loaded_modules"

DEFAULT_NVIDIA_MODULES = ("nvidia", "nvidia-uvm", "nvidia-drm", "nvidia-modeset")


class ModuleLoadStep(BaseStep):
    """Loads the NVIDIA kernel modules with modprobe.

    Modules load in the configured order and unload in reverse.
    """

    def __init__(
        self,
        module_names: Optional[Sequence[str]] = None,
        skip_if_loaded: bool = True,
        force_reload: bool = False,
    ):
        super().__init__("module_load", "Load NVIDIA kernel modules", can_rollback=True)
        self.module_names = list(module_names) if module_names is not None else list(DEFAULT_NVIDIA_MODULES)
        self.skip_if_loaded = skip_if_loaded
        self.force_reload = force_reload

    def validate(self, ctx: Context) -> None:
        if not ctx.has_executor():
            raise StepValidationError("executor is required for module loading", self.name)
        for name in self.module_names:
            if not name:
                raise StepValidationError("empty module name is not allowed", self.name)
            if not is_valid_module_name(name):
                raise StepValidationError(f"invalid module name: {name!r}", self.name)

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start)

        if not self.module_names:
            return skip_step("no modules configured to load").with_duration(elapsed(start))

        try:
            nvidia_loaded = self._is_loaded(ctx, "nvidia")
        except OperationError as e:
            logger.warning(f"Failed to check if nvidia module is loaded, proceeding anyway: {e}")
            nvidia_loaded = False

        if nvidia_loaded and self.skip_if_loaded and not self.force_reload:
            logger.info("NVIDIA module is already loaded, skipping")
            return skip_step("NVIDIA module is already loaded").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        if self.force_reload and nvidia_loaded:
            if ctx.dry_run:
                logger.info(f"dry run: would unload {', '.join(reversed(self.module_names))}")
            else:
                logger.info("Force reload requested, unloading existing modules first")
                try:
                    self._unload(ctx, self.module_names)
                except OperationError as e:
                    logger.error(f"Failed to unload modules for reload: {e}")
                    return fail_step(
                        "failed to unload modules for reload", e
                    ).with_duration(elapsed(start))

        if ctx.dry_run:
            logger.info(f"dry run: would modprobe {', '.join(self.module_names)}")
            return complete_step("dry run: NVIDIA modules would be loaded").with_duration(elapsed(start))

        logger.info(f"Loading NVIDIA kernel modules: {', '.join(self.module_names)}")
        loaded: List[str] = []
        for module in self.module_names:
            if ctx.is_cancelled():
                self._unload_quietly(ctx, loaded)
                return cancelled(self.name, start)

            result = ctx.executor.execute_elevated("modprobe", module)
            if result.failed:
                error = command_error(result, "modprobe")
                logger.error(f"Failed to load module {module}: {error}")
                self._unload_quietly(ctx, loaded)
                return fail_step(f"failed to load module '{module}'", error).with_duration(elapsed(start))
            loaded.append(module)

        for module in self.module_names:
            try:
                if not self._is_loaded(ctx, module):
                    logger.warning(f"Module {module} reported success but is not listed by lsmod")
            except OperationError as e:
                logger.warning(f"Failed to verify module {module}: {e}")

        ctx.set_state(STATE_MODULES_LOADED, True)
        ctx.set_state(STATE_LOADED_MODULES, loaded)
        logger.info(f"Loaded {len(loaded)} NVIDIA kernel module(s)")
        return (
            complete_step("NVIDIA kernel modules loaded successfully")
            .with_duration(elapsed(start))
            .with_can_rollback(True)
        )

    def rollback(self, ctx: Context) -> None:
        if not ctx.get_state_bool(STATE_MODULES_LOADED):
            return
        modules = ctx.get_state_list(STATE_LOADED_MODULES)
        if not modules:
            return
        if not ctx.has_executor():
            raise OperationError("executor not available for rollback", self.name)

        logger.info(f"Rolling back module loading: {', '.join(modules)}")
        self._unload(ctx, modules)
        ctx.delete_state(STATE_MODULES_LOADED)
        ctx.delete_state(STATE_LOADED_MODULES)

    @staticmethod
    def _is_loaded(ctx: Context, name: str) -> bool:
        if ctx.kernel_detector is not None:
            return ctx.kernel_detector.is_module_loaded(name)
        result = ctx.executor.execute("lsmod")
        if result.failed:
            raise command_error(result, "lsmod")
        normalized = name.replace("-", "_")
        return normalized in {m.replace("-", "_") for m in parse_lsmod(result.stdout)}

    def _unload(self, ctx: Context, modules: Sequence[str]) -> None:
        """Unload ``modules`` in reverse order, attempting every module.

        Raises:
            OperationError: For the first module that failed to unload
        """
        first_error = None
        for module in reversed(list(modules)):
            result = ctx.executor.execute_elevated("modprobe", "-r", module)
            if result.failed:
                logger.warning(f"Failed to unload module {module}: {result.error_message()}")
                if first_error is None:
                    first_error = OperationError(
                        f"failed to unload module '{module}': {result.error_message()}", self.name
                    )
        if first_error is not None:
            raise first_error

    def _unload_quietly(self, ctx: Context, modules: Sequence[str]) -> None:
        if not modules:
            return
        try:
            self._unload(ctx, modules)
        except OperationError as e:
            logger.warning(f"Failed to unload partially loaded modules: {e}")
