"""
Step execution and compensation strategies.

This module contains the logic that drives a single step (validation,
execution, timing and error conversion) and the reverse-order unwind pass
used to compensate completed steps after a failure.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from ...errors import CompensationError, OperationError, StepValidationError
from .context import Context
from .steps import Step, StepResult, StepStatus, fail_step

logger = logging.getLogger(__name__)


class StepExecutor(ABC):
    """Abstract base class for step executors."""

    @abstractmethod
    def execute_step(self, step: Step, ctx: Context) -> StepResult:
        """Validate and execute a workflow step.

        Args:
            step: Step to execute
            ctx: Shared execution context

        Returns:
            StepResult
        """
        pass

    @abstractmethod
    def rollback_step(self, step: Step, ctx: Context) -> Optional[CompensationError]:
        """Run a step's compensation.

        Args:
            step: Step to roll back
            ctx: Shared execution context

        Returns:
            CompensationError if the rollback failed, otherwise None
        """
        pass

    def unwind(
        self,
        steps: Sequence[Step],
        ctx: Context,
        on_step: Optional[Callable[[Step, int], None]] = None,
    ) -> "UnwindReport":
        """Compensate ``steps`` in strict reverse order.

        Steps that cannot roll back are passed over. A failing rollback is
        recorded and the pass continues with the earlier steps.

        Args:
            steps: Completed steps in execution order
            ctx: Shared execution context
            on_step: Called with (step, index) before each rollback

        Returns:
            UnwindReport with visited steps and collected errors
        """
        report = UnwindReport()
        for index in range(len(steps) - 1, -1, -1):
            step = steps[index]
            if not step.can_rollback():
                logger.debug(f"Step {step.name} has nothing to roll back")
                continue

            if on_step:
                on_step(step, index)

            report.rolled_back.append(step.name)
            error = self.rollback_step(step, ctx)
            if error is not None:
                report.errors.append(error)

        if report.errors:
            logger.warning(f"Rollback completed with {len(report.errors)} error(s)")
        return report


class UnwindReport:
    """Outcome of an unwind pass."""

    def __init__(self):
        self.rolled_back: List[str] = []
        self.errors: List[CompensationError] = []

    @property
    def ok(self) -> bool:
        return not self.errors


class SequentialExecutor(StepExecutor):
    """Sequential step executor with timing and error conversion."""

    def __init__(self, enable_metrics: bool = True):
        """Initialize sequential executor.

        Args:
            enable_metrics: Enable metrics collection
        """
        self.enable_metrics = enable_metrics
        self._metrics = {
            "steps_executed": 0,
            "steps_failed": 0,
            "rollbacks_attempted": 0,
            "rollbacks_failed": 0,
        }

    def execute_step(self, step: Step, ctx: Context) -> StepResult:
        """Validate and execute a single workflow step.

        A validation failure is reported as a failed result without calling
        ``execute``. Exceptions escaping ``execute`` become failed results.

        Args:
            step: Step to execute
            ctx: Shared execution context

        Returns:
            StepResult
        """
        logger.info(f"Executing step: {step.name}")
        start = time.monotonic()

        try:
            step.validate(ctx)
        except StepValidationError as e:
            if e.step_name is None:
                e.step_name = step.name
            logger.error(f"Step {step.name} failed validation: {e.message}")
            result = fail_step(f"validation failed: {e.message}", e)
            return self._record(result.with_duration(time.monotonic() - start))
        except Exception as e:
            logger.error(f"Step {step.name} raised during validation: {e}")
            error = OperationError(f"validation failed: {e}", step_name=step.name)
            error.__cause__ = e
            result = fail_step(error.message, error)
            return self._record(result.with_duration(time.monotonic() - start))

        try:
            result = step.execute(ctx)
        except Exception as e:
            logger.error(f"Step {step.name} raised: {e}")
            error = OperationError(f"unexpected error: {e}", step_name=step.name)
            error.__cause__ = e
            result = fail_step(error.message, error)

        if result.duration == 0.0:
            result = result.with_duration(time.monotonic() - start)

        if result.is_failure():
            logger.error(f"Step {step.name} failed: {result.message}")
        elif result.status is StepStatus.SKIPPED:
            logger.info(f"Step {step.name} skipped: {result.message}")
        else:
            logger.info(f"Step {step.name} {result.status}: {result.message}")

        return self._record(result)

    def rollback_step(self, step: Step, ctx: Context) -> Optional[CompensationError]:
        """Run a step's rollback, converting exceptions into CompensationError.

        Args:
            step: Step to roll back
            ctx: Shared execution context

        Returns:
            CompensationError or None
        """
        logger.info(f"Rolling back step: {step.name}")
        if self.enable_metrics:
            self._metrics["rollbacks_attempted"] += 1

        try:
            step.rollback(ctx)
        except Exception as e:
            logger.error(f"Rollback failed for {step.name}: {e}")
            if self.enable_metrics:
                self._metrics["rollbacks_failed"] += 1
            return CompensationError(step.name, e)

        return None

    def _record(self, result: StepResult) -> StepResult:
        if self.enable_metrics:
            self._metrics["steps_executed"] += 1
            if result.is_failure():
                self._metrics["steps_failed"] += 1
        return result

    def get_metrics(self) -> Dict[str, Any]:
        """Get executor metrics.

        Returns:
            Metrics dictionary
        """
        return self._metrics.copy()
