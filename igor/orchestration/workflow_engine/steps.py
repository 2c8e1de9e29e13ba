"""
Workflow step models and data structures.

This module defines the status state machines, the result values produced by
steps and workflows, and the step contract that every unit of installation
work implements.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional

from ...errors import OperationError

if TYPE_CHECKING:
    from ...errors import CompensationError
    from .context import Context


class StepStatus(Enum):
    """Individual step execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"

    def is_terminal(self) -> bool:
        """Check if the status is a final state for a step."""
        return self in {
            StepStatus.COMPLETED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.ROLLED_BACK,
        }

    def is_success(self) -> bool:
        """Completed and skipped both count as forward progress."""
        return self in {StepStatus.COMPLETED, StepStatus.SKIPPED}

    def __str__(self) -> str:
        return self.value


class WorkflowStatus(Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"

    def is_terminal(self) -> bool:
        """Check if workflow is in terminal state."""
        return self in {
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
            WorkflowStatus.ROLLED_BACK,
        }

    def is_success(self) -> bool:
        return self is WorkflowStatus.COMPLETED

    def __str__(self) -> str:
        return self.value


@dataclass
class StepResult:
    """Result from executing a workflow step.

    The ``with_*`` methods return modified copies so results can be built
    fluently: ``complete_step("done").with_duration(1.2)``.
    """

    status: StepStatus
    message: str = ""
    error: Optional[BaseException] = None
    duration: float = 0.0
    can_rollback: bool = False

    def with_message(self, message: str) -> StepResult:
        return replace(self, message=message)

    def with_error(self, error: Optional[BaseException]) -> StepResult:
        return replace(self, error=error)

    def with_duration(self, duration: float) -> StepResult:
        return replace(self, duration=duration)

    def with_can_rollback(self, can_rollback: bool) -> StepResult:
        return replace(self, can_rollback=can_rollback)

    def is_success(self) -> bool:
        return self.status.is_success()

    def is_failure(self) -> bool:
        return self.status is StepStatus.FAILED

    def __str__(self) -> str:
        if self.error is not None:
            return f"{self.status}: {self.message} (error: {self.error})"
        return f"{self.status}: {self.message}"


@dataclass
class StepProgress:
    """Progress notification emitted before and after each step."""

    step_name: str
    step_index: int
    total_steps: int
    message: str = ""
    percent: float = field(init=False)

    def __post_init__(self):
        self.percent = (self.step_index / self.total_steps * 100) if self.total_steps > 0 else 0.0

    def __str__(self) -> str:
        return (
            f"[{self.step_index + 1}/{self.total_steps}] {self.step_name}: "
            f"{self.message} ({self.percent:.1f}%)"
        )


@dataclass
class WorkflowResult:
    """Final result of workflow execution."""

    status: WorkflowStatus
    completed_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[BaseException] = None
    total_duration: float = 0.0
    needs_reboot: bool = False
    rolled_back_steps: List[str] = field(default_factory=list)
    rollback_errors: List["CompensationError"] = field(default_factory=list)

    def with_error(self, step_name: str, error: Optional[BaseException]) -> WorkflowResult:
        return replace(self, failed_step=step_name, error=error)

    def with_duration(self, duration: float) -> WorkflowResult:
        return replace(self, total_duration=duration)

    def with_needs_reboot(self, needs_reboot: bool) -> WorkflowResult:
        return replace(self, needs_reboot=needs_reboot)

    def add_completed_step(self, step_name: str) -> None:
        self.completed_steps.append(step_name)

    def is_success(self) -> bool:
        return self.status.is_success()

    def is_failure(self) -> bool:
        return self.status is WorkflowStatus.FAILED

    def __str__(self) -> str:
        if self.error is not None:
            return f"{self.status}: failed at step '{self.failed_step}' (error: {self.error})"
        return (
            f"{self.status}: completed {len(self.completed_steps)} steps "
            f"in {self.total_duration:.2f}s"
        )


class Step(ABC):
    """Contract for a unit of installation work.

    Implementations must keep ``validate`` free of side effects, check
    ``ctx.is_cancelled()`` before every externally visible action inside
    ``execute``, and make ``rollback`` an idempotent no-op unless their own
    state marker is present in the context.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable identifier, unique within a workflow."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable summary."""

    @abstractmethod
    def execute(self, ctx: Context) -> StepResult:
        """Perform the step.

        Args:
            ctx: Shared execution context

        Returns:
            StepResult describing the outcome
        """

    @abstractmethod
    def rollback(self, ctx: Context) -> None:
        """Undo the effect of a previous ``execute``.

        Raises:
            Exception: If compensation fails
        """

    @abstractmethod
    def validate(self, ctx: Context) -> None:
        """Check preconditions.

        Raises:
            StepValidationError: If a precondition is not met
        """

    @abstractmethod
    def can_rollback(self) -> bool:
        """Static capability flag, independent of current state."""


class BaseStep(Step):
    """Shared bookkeeping for concrete steps.

    Provides name/description/rollback-capability storage and no-op
    defaults for ``validate`` and ``rollback``.
    """

    def __init__(self, name: str, description: str, can_rollback: bool = False):
        self._name = name
        self._description = description
        self._can_rollback = can_rollback

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def can_rollback(self) -> bool:
        return self._can_rollback

    def validate(self, ctx: Context) -> None:
        return None

    def rollback(self, ctx: Context) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r})"


class FuncStep(BaseStep):
    """Step built from closures, for glue steps and test fixtures.

    ``can_rollback()`` is true exactly when a rollback closure is supplied.
    """

    def __init__(
        self,
        name: str,
        description: str,
        execute_fn: Optional[Callable[[Context], StepResult]],
        rollback_fn: Optional[Callable[[Context], None]] = None,
        validate_fn: Optional[Callable[[Context], None]] = None,
    ):
        super().__init__(name, description, can_rollback=rollback_fn is not None)
        self.execute_fn = execute_fn
        self.rollback_fn = rollback_fn
        self.validate_fn = validate_fn

    def execute(self, ctx: Context) -> StepResult:
        if self.execute_fn is None:
            return fail_step(
                "no execute function defined",
                OperationError("execute function is not defined", step_name=self.name),
            )

        start = time.monotonic()
        result = self.execute_fn(ctx)
        return result.with_duration(time.monotonic() - start).with_can_rollback(self.can_rollback())

    def rollback(self, ctx: Context) -> None:
        if self.rollback_fn is not None:
            self.rollback_fn(ctx)

    def validate(self, ctx: Context) -> None:
        if self.validate_fn is not None:
            self.validate_fn(ctx)


def complete_step(message: str) -> StepResult:
    """Create a completed step result."""
    return StepResult(status=StepStatus.COMPLETED, message=message)


def skip_step(reason: str) -> StepResult:
    """Create a skipped step result."""
    return StepResult(status=StepStatus.SKIPPED, message=reason)


def fail_step(message: str, error: Optional[BaseException] = None) -> StepResult:
    """Create a failed step result carrying ``error``."""
    if error is None:
        error = OperationError(message)
    return StepResult(status=StepStatus.FAILED, message=message, error=error)
