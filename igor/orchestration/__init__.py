"""Installation orchestration engine.

The workflow builder lives in ``igor.orchestration.builder``.
"""

from ..errors import (
    CompensationError,
    ConfigurationError,
    InstallError,
    OperationError,
    StepCancelledError,
    StepValidationError,
    is_cancellation,
)
from .workflow_engine import (
    STATE_NEEDS_REBOOT,
    BaseStep,
    Context,
    FuncStep,
    Report,
    SequentialExecutor,
    Step,
    StepExecutor,
    StepProgress,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowResult,
    WorkflowStatus,
    complete_step,
    fail_step,
    skip_step,
)
from .orchestrator import ExecutionEntry, ExecutionEventType, ExecutionReport, Orchestrator

__all__ = [
    # Engine
    "Workflow",
    "Orchestrator",
    "ExecutionReport",
    "ExecutionEntry",
    "ExecutionEventType",
    "Context",
    "Report",
    "STATE_NEEDS_REBOOT",
    "SequentialExecutor",
    "StepExecutor",
    # Steps and results
    "Step",
    "BaseStep",
    "FuncStep",
    "StepResult",
    "StepStatus",
    "StepProgress",
    "WorkflowResult",
    "WorkflowStatus",
    "complete_step",
    "fail_step",
    "skip_step",
    # Errors
    "InstallError",
    "StepValidationError",
    "StepCancelledError",
    "OperationError",
    "CompensationError",
    "ConfigurationError",
    "is_cancellation",
]
