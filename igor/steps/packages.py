"""NVIDIA package installation step."""
from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Callable, List, Optional, Sequence

from ..errors import OperationError, StepCancelledError, StepValidationError
from ..orchestration.workflow_engine.context import Context
from ..orchestration.workflow_engine.steps import (
    BaseStep,
    StepResult,
    complete_step,
    fail_step,
    skip_step,
)
from ..system.nvidia import Component, package_set
from .common import cancelled, elapsed

logger = logging.getLogger(__name__)

STATE_PACKAGES_INSTALLED = "packages_installed"
STATE_INSTALLED_PACKAGES = "installed_packages"
STATE_PACKAGE_INSTALL_TIME = "package_install_time"

InstallHook = Callable[[Context], None]


class PackageInstallationStep(BaseStep):
    """Installs the driver packages for the requested version and components.

    Args:
        additional_packages: Extra packages installed after the computed ones
        batch_size: Packages per install call (0 installs everything at once)
        pre_install_hook: Called before installing; raising aborts the step
        post_install_hook: Called after installing; raising removes the packages
    """

    def __init__(
        self,
        additional_packages: Optional[Sequence[str]] = None,
        batch_size: int = 0,
        pre_install_hook: Optional[InstallHook] = None,
        post_install_hook: Optional[InstallHook] = None,
    ):
        super().__init__("packages", "Install NVIDIA packages", can_rollback=True)
        self.additional_packages = list(additional_packages or [])
        self.batch_size = batch_size
        self.pre_install_hook = pre_install_hook
        self.post_install_hook = post_install_hook

    def validate(self, ctx: Context) -> None:
        if not ctx.has_package_manager():
            raise StepValidationError("package manager is required for package installation", self.name)
        if not ctx.has_distro():
            raise StepValidationError("distribution info is required for package installation", self.name)
        if not ctx.driver_version and not ctx.components and not self.additional_packages:
            raise StepValidationError(
                "at least one component, driver version, or additional package is required",
                self.name,
            )

    def compute_packages(self, ctx: Context) -> List[str]:
        """De-duplicated package list in install order.

        Raises:
            OperationError: If no package catalog exists for the distribution
        """
        catalog = package_set(ctx.distro)
        if catalog is None:
            raise OperationError(f"no package set available for distribution: {ctx.distro.id}")

        packages: List[str] = []

        def add(names):
            for name in names:
                if name and name not in packages:
                    packages.append(name)

        if ctx.driver_version:
            add(catalog.packages_for_version(ctx.driver_version))
        for value in ctx.components:
            if not Component.is_valid(value):
                logger.warning(f"Unknown component, skipping: {value}")
                continue
            add(catalog.packages(Component(value)))
        add(self.additional_packages)
        return packages

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start)

        try:
            packages = self.compute_packages(ctx)
        except OperationError as e:
            logger.error(f"Failed to compute packages: {e}")
            return fail_step("failed to compute packages", e).with_duration(elapsed(start))

        if not packages:
            logger.info("No packages to install")
            return skip_step("no packages to install").with_duration(elapsed(start))

        if ctx.dry_run:
            logger.info(f"dry run: would install packages: {', '.join(packages)}")
            return complete_step("dry run: packages would be installed").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        if self.pre_install_hook is not None:
            try:
                self.pre_install_hook(ctx)
            except Exception as e:
                logger.error(f"Pre-install hook failed: {e}")
                return fail_step("pre-install hook failed", e).with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        installed: List[str] = []
        try:
            self._install(ctx, packages, installed)
        except Exception as e:
            logger.error(f"Package installation failed: {e}")
            if installed:
                self._remove_quietly(ctx, installed)
            if isinstance(e, StepCancelledError):
                return cancelled(self.name, start)
            return fail_step("failed to install packages", e).with_duration(elapsed(start))

        if ctx.is_cancelled():
            self._remove_quietly(ctx, installed)
            return cancelled(self.name, start)

        if self.post_install_hook is not None:
            try:
                self.post_install_hook(ctx)
            except Exception as e:
                logger.error(f"Post-install hook failed: {e}")
                self._remove_quietly(ctx, installed)
                return fail_step("post-install hook failed", e).with_duration(elapsed(start))

        duration = elapsed(start)
        ctx.set_state(STATE_INSTALLED_PACKAGES, installed)
        ctx.set_state(STATE_PACKAGES_INSTALLED, True)
        ctx.set_state(STATE_PACKAGE_INSTALL_TIME, timedelta(seconds=duration))
        logger.info(f"Installed {len(installed)} package(s) in {duration:.1f}s")
        return (
            complete_step("packages installed successfully")
            .with_duration(duration)
            .with_can_rollback(True)
        )

    def rollback(self, ctx: Context) -> None:
        if not ctx.get_state_bool(STATE_PACKAGES_INSTALLED):
            return
        packages = ctx.get_state_list(STATE_INSTALLED_PACKAGES)
        if not packages:
            return
        if not ctx.has_package_manager():
            raise OperationError("package manager not available for rollback", self.name)

        logger.info(f"Rolling back package installation: removing {len(packages)} package(s)")
        try:
            ctx.package_manager.remove(*packages)
        except Exception as e:
            raise OperationError(f"failed to remove packages: {e}", self.name) from e

        ctx.delete_state(STATE_PACKAGES_INSTALLED)
        ctx.delete_state(STATE_INSTALLED_PACKAGES)
        ctx.delete_state(STATE_PACKAGE_INSTALL_TIME)

    def _install(self, ctx: Context, packages: List[str], installed: List[str]) -> None:
        """Install ``packages``, appending each finished batch to ``installed``."""
        if self.batch_size <= 0:
            logger.info(f"Installing {len(packages)} package(s)")
            ctx.package_manager.install(*packages)
            installed.extend(packages)
            return

        for offset in range(0, len(packages), self.batch_size):
            if ctx.is_cancelled():
                raise StepCancelledError(step_name=self.name)
            batch = packages[offset:offset + self.batch_size]
            number = offset // self.batch_size + 1
            logger.info(f"Installing package batch {number}: {', '.join(batch)}")
            try:
                ctx.package_manager.install(*batch)
            except Exception as e:
                raise OperationError(f"failed to install batch {number}: {e}", self.name) from e
            installed.extend(batch)

    @staticmethod
    def _remove_quietly(ctx: Context, packages: List[str]) -> None:
        try:
            ctx.package_manager.remove(*packages)
        except Exception as e:
            logger.warning(f"Failed to remove partially installed packages: {e}")
