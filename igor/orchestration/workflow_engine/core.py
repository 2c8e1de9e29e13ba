"""
Core workflow engine.

This module contains the ``Workflow`` class that runs an ordered list of
steps sequentially and, when a step fails, unwinds the steps that already
ran in reverse order by calling their rollbacks (saga-style compensation).
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from ...errors import OperationError
from .context import Context
from .executors import SequentialExecutor, StepExecutor
from .steps import Step, StepProgress, StepStatus, WorkflowResult, WorkflowStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[StepProgress], None]


class Workflow:
    """Ordered sequence of steps executed as one installation run."""

    def __init__(self, name: str, executor: Optional[StepExecutor] = None):
        """Initialize workflow.

        Args:
            name: Workflow name
            executor: Step execution strategy
        """
        self.name = name
        self.executor = executor or SequentialExecutor()
        self.status = WorkflowStatus.PENDING

        self._steps: List[Step] = []
        self._completed: List[Step] = []
        self._progress_callback: Optional[ProgressCallback] = None

    @property
    def steps(self) -> List[Step]:
        """Copy of the step list."""
        return list(self._steps)

    @property
    def completed_steps(self) -> List[Step]:
        """Steps that made forward progress in the last run."""
        return list(self._completed)

    def add_step(self, step: Step) -> None:
        """Append a step. Steps are validated when the workflow runs."""
        self._steps.append(step)

    def on_progress(self, callback: Optional[ProgressCallback]) -> None:
        """Set the progress callback.

        Args:
            callback: Called with a StepProgress before and after each step
        """
        self._progress_callback = callback

    def reset(self) -> None:
        """Forget the previous run so the workflow can be executed again."""
        self._completed = []
        self.status = WorkflowStatus.PENDING

    def execute(self, ctx: Context) -> WorkflowResult:
        """Run all steps in order.

        On the first failing step the steps that already completed are
        rolled back in reverse order before the result is returned.
        Cancellation observed between steps stops the run without rollback.

        Args:
            ctx: Shared execution context

        Returns:
            WorkflowResult
        """
        start = time.monotonic()
        steps = list(self._steps)
        self._completed = []
        self.status = WorkflowStatus.RUNNING
        result = WorkflowResult(status=WorkflowStatus.RUNNING)

        logger.info(f"Starting workflow {self.name} with {len(steps)} steps")

        for index, step in enumerate(steps):
            if ctx.is_cancelled():
                logger.warning(f"Workflow {self.name} cancelled before step {step.name}")
                self.status = WorkflowStatus.CANCELLED
                result.status = WorkflowStatus.CANCELLED
                return result.with_duration(time.monotonic() - start)

            self._report(step.name, index, len(steps), f"Starting: {step.description}")
            step_result = self.executor.execute_step(step, ctx)

            if step_result.status in (StepStatus.COMPLETED, StepStatus.SKIPPED):
                self._completed.append(step)
                result.add_completed_step(step.name)
                label = "Completed" if step_result.status is StepStatus.COMPLETED else "Skipped"
                self._report(step.name, index, len(steps), f"{label}: {step_result.message}")
                continue

            if step_result.is_failure():
                error = step_result.error
                self._report(step.name, index, len(steps), f"Failed: {step_result.message}")
            else:
                error = OperationError(
                    f"unexpected step status: {step_result.status}", step_name=step.name
                )

            result = self._fail(ctx, result, step.name, error)
            return result.with_duration(time.monotonic() - start)

        self.status = WorkflowStatus.COMPLETED
        result.status = WorkflowStatus.COMPLETED
        self._report("", len(steps), len(steps), "Workflow completed successfully")

        duration = time.monotonic() - start
        logger.info(f"Workflow {self.name} finished with status {result.status} in {duration:.2f}s")
        return result.with_duration(duration).with_needs_reboot(ctx.needs_reboot())

    def rollback(self, ctx: Context) -> WorkflowResult:
        """Roll back the steps completed by the last run.

        Args:
            ctx: Shared execution context

        Returns:
            WorkflowResult with status ROLLED_BACK, or FAILED when any
            compensation failed
        """
        start = time.monotonic()
        completed = [step.name for step in self._completed]
        self.status = WorkflowStatus.ROLLING_BACK
        report = self._unwind(ctx)

        status = WorkflowStatus.ROLLED_BACK if report.ok else WorkflowStatus.FAILED
        self.status = status
        if report.ok:
            self._completed = []

        return WorkflowResult(
            status=status,
            completed_steps=completed,
            error=report.errors[0] if report.errors else None,
            total_duration=time.monotonic() - start,
            rolled_back_steps=report.rolled_back,
            rollback_errors=report.errors,
        )

    def _fail(
        self,
        ctx: Context,
        result: WorkflowResult,
        step_name: str,
        error: Optional[BaseException],
    ) -> WorkflowResult:
        logger.error(f"Workflow {self.name} failed at step {step_name}: {error}")

        self.status = WorkflowStatus.ROLLING_BACK
        result.status = WorkflowStatus.ROLLING_BACK
        report = self._unwind(ctx)

        self.status = WorkflowStatus.FAILED
        result = result.with_error(step_name, error)
        result.status = WorkflowStatus.FAILED
        result.rolled_back_steps = report.rolled_back
        result.rollback_errors = report.errors
        result.needs_reboot = ctx.needs_reboot()
        return result

    def _unwind(self, ctx: Context):
        completed = list(self._completed)
        total = len(completed)

        def notify(step: Step, index: int) -> None:
            self._report(step.name, index, total, f"Rolling back: {step.description}")

        return self.executor.unwind(completed, ctx, on_step=notify)

    def _report(self, step_name: str, index: int, total: int, message: str) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(StepProgress(step_name, index, total, message))
        except Exception as e:
            logger.error(f"Progress callback error: {e}")
