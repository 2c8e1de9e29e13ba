"""
Workflow orchestration with hooks, execution policies and reporting.

``Orchestrator`` drives the steps of a ``Workflow`` itself so it can call
hooks around the run and around each step, record every step and rollback
event in an execution log, and summarize the run in an ``ExecutionReport``.

Usage:
    orchestrator = Orchestrator(workflow, auto_rollback=True)
    report = orchestrator.execute(ctx)
    print(report.summary())
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from ..errors import CompensationError, OperationError
from .workflow_engine import (
    Context,
    Step,
    StepProgress,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowResult,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

ExecutionHook = Callable[[Context, Workflow], None]
StepHook = Callable[[Context, Step, Optional[StepResult]], None]
ProgressCallback = Callable[[StepProgress], None]

PRE_EXECUTE_HOOK = "pre-execute-hook"
POST_EXECUTE_HOOK = "post-execute-hook"


class ExecutionEventType(Enum):
    """Kinds of entries in the execution log."""

    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    WORKFLOW_ROLLBACK_STARTED = "workflow_rollback_started"
    WORKFLOW_ROLLBACK_COMPLETED = "workflow_rollback_completed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_FAILED = "step_failed"
    STEP_ROLLBACK_STARTED = "step_rollback_started"
    STEP_ROLLBACK_COMPLETED = "step_rollback_completed"

    def __str__(self) -> str:
        return self.value


@dataclass
class ExecutionEntry:
    """One event in the execution log."""

    event_type: ExecutionEventType
    step_name: str = ""
    message: str = ""
    duration: float = 0.0
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ExecutionReport:
    """Outcome of an orchestrated run.

    Step counts and rollback flags are derived from the execution log.
    """

    workflow_name: str
    result: WorkflowResult
    start_time: datetime
    end_time: datetime
    execution_log: List[ExecutionEntry] = field(default_factory=list)

    @property
    def status(self) -> WorkflowStatus:
        return self.result.status

    @property
    def error(self) -> Optional[BaseException]:
        return self.result.error

    @property
    def total_duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def _count(self, event_type: ExecutionEventType) -> int:
        return sum(1 for entry in self.execution_log if entry.event_type is event_type)

    @property
    def steps_executed(self) -> int:
        return self._count(ExecutionEventType.STEP_STARTED)

    @property
    def steps_completed(self) -> int:
        return self._count(ExecutionEventType.STEP_COMPLETED)

    @property
    def steps_skipped(self) -> int:
        return self._count(ExecutionEventType.STEP_SKIPPED)

    @property
    def steps_failed(self) -> int:
        return self._count(ExecutionEventType.STEP_FAILED)

    @property
    def rollback_performed(self) -> bool:
        return self._count(ExecutionEventType.WORKFLOW_ROLLBACK_STARTED) > 0

    @property
    def rollback_success(self) -> bool:
        """False when any rollback pass finished with errors."""
        return not any(
            entry.error is not None
            for entry in self.execution_log
            if entry.event_type is ExecutionEventType.WORKFLOW_ROLLBACK_COMPLETED
        )

    def events(self, event_type: ExecutionEventType) -> List[ExecutionEntry]:
        return [entry for entry in self.execution_log if entry.event_type is event_type]

    def summary(self) -> str:
        text = (
            f"{self.workflow_name}: {self.status} - {self.steps_executed} executed, "
            f"{self.steps_completed} completed, {self.steps_skipped} skipped, "
            f"{self.steps_failed} failed in {self.total_duration:.2f}s"
        )
        if self.rollback_performed:
            text += ", rollback " + ("succeeded" if self.rollback_success else "had errors")
        return text


class Orchestrator:
    """Runs a workflow with hooks, execution policies and an execution log.

    Policies:
        auto_rollback: Unwind completed steps when the run fails. When off,
            completed steps are kept for a later ``rollback()`` call.
        stop_on_first_error: Stop at the first failed step. When off, the
            remaining steps still run and the first failure is reported.
        dry_run: Force the context into dry-run mode before the run.

    A failing pre-step or post-step hook fails the run at that step. A
    failing post-execute hook only turns a completed run into a failed one.
    """

    def __init__(
        self,
        workflow: Workflow,
        auto_rollback: bool = True,
        stop_on_first_error: bool = True,
        dry_run: bool = False,
        pre_execute_hook: Optional[ExecutionHook] = None,
        post_execute_hook: Optional[ExecutionHook] = None,
        pre_step_hook: Optional[StepHook] = None,
        post_step_hook: Optional[StepHook] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.workflow = workflow
        self.auto_rollback = auto_rollback
        self.stop_on_first_error = stop_on_first_error
        self.dry_run = dry_run
        self.pre_execute_hook = pre_execute_hook
        self.post_execute_hook = post_execute_hook
        self.pre_step_hook = pre_step_hook
        self.post_step_hook = post_step_hook
        self.progress_callback = progress_callback

        self._lock = threading.Lock()
        self._log: List[ExecutionEntry] = []
        self._completed: List[Step] = []

    @property
    def completed_steps(self) -> List[Step]:
        """Steps that made forward progress and have not been rolled back."""
        return list(self._completed)

    def get_execution_log(self) -> List[ExecutionEntry]:
        with self._lock:
            return list(self._log)

    def reset(self) -> None:
        """Clear the execution log and the completed-step list."""
        with self._lock:
            self._log = []
        self._completed = []

    def execute(self, ctx: Context) -> ExecutionReport:
        """Run the workflow.

        Args:
            ctx: Shared execution context

        Returns:
            ExecutionReport for this run
        """
        self.reset()
        start_time = datetime.now()
        start = time.monotonic()
        if self.dry_run:
            ctx.dry_run = True

        self._record(ExecutionEventType.WORKFLOW_STARTED, message="Workflow execution started")
        logger.info(f"Orchestrating workflow {self.workflow.name}")

        if self.pre_execute_hook is not None:
            try:
                self.pre_execute_hook(ctx, self.workflow)
            except Exception as e:
                logger.error(f"Pre-execute hook failed: {e}")
                error = self._hook_error("pre-execute hook failed", e)
                self._record(
                    ExecutionEventType.WORKFLOW_FAILED, message="Pre-execute hook failed", error=error
                )
                result = WorkflowResult(
                    status=WorkflowStatus.FAILED,
                    failed_step=PRE_EXECUTE_HOOK,
                    error=error,
                    total_duration=time.monotonic() - start,
                )
                return self._report(start_time, result)

        result = self._run_steps(ctx)

        if result.status is WorkflowStatus.FAILED and self.auto_rollback:
            rolled_back, errors = self._unwind(ctx)
            result.rolled_back_steps = rolled_back
            result.rollback_errors = errors

        if self.post_execute_hook is not None:
            try:
                self.post_execute_hook(ctx, self.workflow)
            except Exception as e:
                logger.error(f"Post-execute hook failed: {e}")
                error = self._hook_error("post-execute hook failed", e)
                self._record(
                    ExecutionEventType.WORKFLOW_FAILED, message="Post-execute hook failed", error=error
                )
                if result.status is WorkflowStatus.COMPLETED:
                    result.status = WorkflowStatus.FAILED
                    result.failed_step = POST_EXECUTE_HOOK
                    result.error = error

        result.total_duration = time.monotonic() - start
        result.needs_reboot = ctx.needs_reboot()
        self._record_outcome(result)
        return self._report(start_time, result)

    def rollback(self, ctx: Context) -> WorkflowResult:
        """Unwind the steps kept by a run without auto rollback.

        Returns:
            WorkflowResult with status ROLLED_BACK, or FAILED when any
            compensation failed
        """
        start = time.monotonic()
        completed = [step.name for step in self._completed]
        rolled_back, errors = self._unwind(ctx)
        return WorkflowResult(
            status=WorkflowStatus.FAILED if errors else WorkflowStatus.ROLLED_BACK,
            completed_steps=completed,
            error=errors[0] if errors else None,
            total_duration=time.monotonic() - start,
            rolled_back_steps=rolled_back,
            rollback_errors=errors,
        )

    def _run_steps(self, ctx: Context) -> WorkflowResult:
        steps = self.workflow.steps
        total = len(steps)
        executor = self.workflow.executor
        result = WorkflowResult(status=WorkflowStatus.RUNNING)

        for index, step in enumerate(steps):
            if ctx.is_cancelled():
                logger.warning(f"Workflow {self.workflow.name} cancelled before step {step.name}")
                result.status = WorkflowStatus.CANCELLED
                return result

            step_start = time.monotonic()
            self._record(ExecutionEventType.STEP_STARTED, step.name, step.description)
            self._progress(step.name, index, total, f"Starting: {step.description}")

            if self.pre_step_hook is not None:
                try:
                    self.pre_step_hook(ctx, step, None)
                except Exception as e:
                    logger.error(f"Pre-step hook failed for {step.name}: {e}")
                    error = self._hook_error("pre-step hook failed", e, step.name)
                    self._record(
                        ExecutionEventType.STEP_FAILED,
                        step.name,
                        "Pre-step hook failed",
                        time.monotonic() - step_start,
                        error,
                    )
                    return self._failed(result, step.name, error)

            step_result = executor.execute_step(step, ctx)
            duration = time.monotonic() - step_start

            if step_result.status in (StepStatus.COMPLETED, StepStatus.SKIPPED):
                self._completed.append(step)
                result.add_completed_step(step.name)
                if step_result.status is StepStatus.COMPLETED:
                    event, label = ExecutionEventType.STEP_COMPLETED, "Completed"
                else:
                    event, label = ExecutionEventType.STEP_SKIPPED, "Skipped"
                self._record(event, step.name, step_result.message, duration)
                self._progress(step.name, index, total, f"{label}: {step_result.message}")
            else:
                if step_result.is_failure():
                    error = step_result.error
                    message = step_result.message
                else:
                    error = OperationError(
                        f"unexpected step status: {step_result.status}", step_name=step.name
                    )
                    message = "Unexpected step status"
                self._record(ExecutionEventType.STEP_FAILED, step.name, message, duration, error)
                self._progress(step.name, index, total, f"Failed: {message}")
                if result.failed_step is None:
                    result = result.with_error(step.name, error)
                    result.status = WorkflowStatus.FAILED

            if self.post_step_hook is not None:
                try:
                    self.post_step_hook(ctx, step, step_result)
                except Exception as e:
                    logger.error(f"Post-step hook failed for {step.name}: {e}")
                    error = self._hook_error("post-step hook failed", e, step.name)
                    self._record(
                        ExecutionEventType.STEP_FAILED,
                        step.name,
                        "Post-step hook failed",
                        time.monotonic() - step_start,
                        error,
                    )
                    if result.failed_step is None:
                        return self._failed(result, step.name, error)
                    return result

            if result.failed_step is not None and self.stop_on_first_error:
                return result

        if result.status is WorkflowStatus.RUNNING:
            result.status = WorkflowStatus.COMPLETED
            self._progress("", total, total, "Workflow completed successfully")
        return result

    def _unwind(self, ctx: Context):
        """Roll back completed steps in reverse, logging each one.

        Returns:
            (names of steps rolled back, collected CompensationErrors)
        """
        executor = self.workflow.executor
        completed = list(self._completed)
        total = len(completed)
        rolled_back: List[str] = []
        errors: List[CompensationError] = []

        self._record(ExecutionEventType.WORKFLOW_ROLLBACK_STARTED, message="Starting workflow rollback")
        for index in range(total - 1, -1, -1):
            step = completed[index]
            if not step.can_rollback():
                continue
            self._record(ExecutionEventType.STEP_ROLLBACK_STARTED, step.name, "Rolling back step")
            self._progress(step.name, index, total, f"Rolling back: {step.description}")
            rolled_back.append(step.name)
            error = executor.rollback_step(step, ctx)
            if error is not None:
                errors.append(error)
                self._record(
                    ExecutionEventType.STEP_ROLLBACK_COMPLETED, step.name, "Step rollback failed", error=error
                )
            else:
                self._record(
                    ExecutionEventType.STEP_ROLLBACK_COMPLETED, step.name, "Step rollback completed"
                )

        if errors:
            message = "Workflow rollback completed with errors"
        else:
            message = "Workflow rollback completed successfully"
            self._completed = []
        self._record(
            ExecutionEventType.WORKFLOW_ROLLBACK_COMPLETED,
            message=message,
            error=errors[0] if errors else None,
        )
        return rolled_back, errors

    def _record_outcome(self, result: WorkflowResult) -> None:
        if result.status is WorkflowStatus.FAILED:
            event, message = ExecutionEventType.WORKFLOW_FAILED, "Workflow execution failed"
        elif result.status is WorkflowStatus.CANCELLED:
            event, message = ExecutionEventType.WORKFLOW_CANCELLED, "Workflow execution cancelled"
        else:
            event, message = ExecutionEventType.WORKFLOW_COMPLETED, "Workflow execution completed successfully"
        self._record(event, message=message, duration=result.total_duration, error=result.error)
        logger.info(f"Workflow {self.workflow.name} finished with status {result.status}")

    @staticmethod
    def _failed(result: WorkflowResult, step_name: str, error: BaseException) -> WorkflowResult:
        result = result.with_error(step_name, error)
        result.status = WorkflowStatus.FAILED
        return result

    @staticmethod
    def _hook_error(action: str, cause: Exception, step_name: Optional[str] = None) -> OperationError:
        error = OperationError(f"{action}: {cause}", step_name=step_name)
        error.__cause__ = cause
        return error

    def _record(
        self,
        event_type: ExecutionEventType,
        step_name: str = "",
        message: str = "",
        duration: float = 0.0,
        error: Optional[BaseException] = None,
    ) -> None:
        entry = ExecutionEntry(event_type, step_name, message, duration, error)
        with self._lock:
            self._log.append(entry)
        logger.debug(f"[{event_type}] {step_name or self.workflow.name}: {message}")

    def _progress(self, step_name: str, index: int, total: int, message: str) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(StepProgress(step_name, index, total, message))
        except Exception as e:
            logger.error(f"Progress callback error: {e}")

    def _report(self, start_time: datetime, result: WorkflowResult) -> ExecutionReport:
        return ExecutionReport(
            workflow_name=self.workflow.name,
            result=result,
            start_time=start_time,
            end_time=datetime.now(),
            execution_log=self.get_execution_log(),
        )
