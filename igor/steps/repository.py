"""NVIDIA package repository configuration step."""
from __future__ import annotations

import logging
import time
from typing import Optional

from ..errors import OperationError, StepValidationError
from ..orchestration.workflow_engine.context import Context
from ..orchestration.workflow_engine.steps import BaseStep, StepResult, complete_step, fail_step
from ..system.nvidia import repository_for
from ..system.packages import Repository
from .common import cancelled, elapsed

logger = logging.getLogger(__name__)

STATE_REPOSITORY_CONFIGURED = "repository_configured"
STATE_REPOSITORY_NAME = "repository_name"


class RepositoryStep(BaseStep):
    """Adds the distribution's NVIDIA driver repository and refreshes package lists."""

    def __init__(self, skip_update: bool = False):
        super().__init__("repository", "Configure NVIDIA repository", can_rollback=True)
        self.skip_update = skip_update

    def validate(self, ctx: Context) -> None:
        if not ctx.has_package_manager():
            raise StepValidationError(
                "package manager is required for repository configuration", self.name
            )
        if not ctx.has_distro():
            raise StepValidationError(
                "distribution info is required for repository configuration", self.name
            )

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start)

        try:
            repo = repository_for(ctx.distro)
        except ValueError as e:
            logger.error(f"Failed to get repository info: {e}")
            return fail_step(
                "failed to get repository info", OperationError(str(e), step_name=self.name)
            ).with_duration(elapsed(start))

        if repo is None:
            logger.info(f"No external repository needed for {ctx.distro.id}")
            return complete_step("no repository configuration required").with_duration(elapsed(start))

        if ctx.dry_run:
            logger.info(f"dry run: would add repository {repo.name} ({repo.url})")
            if not self.skip_update:
                logger.info("dry run: would update package lists")
            return complete_step("dry run: repository would be added").with_duration(elapsed(start))

        if ctx.is_cancelled():
            return cancelled(self.name, start)

        logger.info(f"Adding repository {repo.name}")
        try:
            ctx.package_manager.add_repository(repo)
        except Exception as e:
            logger.error(f"Failed to add repository {repo.name}: {e}")
            return fail_step("failed to add repository", e).with_duration(elapsed(start))

        if not self.skip_update:
            if ctx.is_cancelled():
                self._remove_quietly(ctx, repo)
                return cancelled(self.name, start)

            logger.info("Updating package lists")
            try:
                ctx.package_manager.update()
            except Exception as e:
                logger.error(f"Failed to update package lists: {e}")
                self._remove_quietly(ctx, repo)
                return fail_step("failed to update package lists", e).with_duration(elapsed(start))

        ctx.set_state(STATE_REPOSITORY_CONFIGURED, True)
        ctx.set_state(STATE_REPOSITORY_NAME, repo.name)
        logger.info(f"Repository {repo.name} configured successfully")
        return (
            complete_step("repository configured successfully")
            .with_duration(elapsed(start))
            .with_can_rollback(True)
        )

    def rollback(self, ctx: Context) -> None:
        if not ctx.get_state_bool(STATE_REPOSITORY_CONFIGURED):
            return
        name = ctx.get_state_string(STATE_REPOSITORY_NAME)
        if not name:
            return
        if not ctx.has_package_manager():
            raise OperationError("package manager not available for rollback", self.name)

        logger.info(f"Rolling back repository configuration: {name}")
        repo = self._configured_repository(ctx, name)
        try:
            ctx.package_manager.remove_repository(repo)
        except Exception as e:
            raise OperationError(f"failed to remove repository '{name}': {e}", self.name) from e

        ctx.delete_state(STATE_REPOSITORY_CONFIGURED)
        ctx.delete_state(STATE_REPOSITORY_NAME)

    @staticmethod
    def _configured_repository(ctx: Context, name: str) -> Repository:
        repo: Optional[Repository] = None
        if ctx.has_distro():
            try:
                repo = repository_for(ctx.distro)
            except ValueError:
                repo = None
        if repo is not None and repo.name == name:
            return repo
        return Repository(name=name, url="")

    @staticmethod
    def _remove_quietly(ctx: Context, repo: Repository) -> None:
        try:
            ctx.package_manager.remove_repository(repo)
        except Exception as e:
            logger.error(f"Failed to remove repository {repo.name} after aborted setup: {e}")
