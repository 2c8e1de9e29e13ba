"""
Sequential workflow engine with saga-style rollback.

This package contains the engine components:
- steps: Status enums, result values and the step contract
- context: Shared execution context and typed state store
- executors: Step execution and the reverse-order unwind pass
- core: Workflow execution loop
"""

from __future__ import annotations

# Export main public API
from .steps import (
    BaseStep,
    FuncStep,
    Step,
    StepProgress,
    StepResult,
    StepStatus,
    WorkflowResult,
    WorkflowStatus,
    complete_step,
    fail_step,
    skip_step,
)

from .context import STATE_NEEDS_REBOOT, Context, Report, StateKind

from .core import Workflow

from .executors import SequentialExecutor, StepExecutor, UnwindReport

__all__ = [
    # Step models
    "BaseStep",
    "FuncStep",
    "Step",
    "StepProgress",
    "StepResult",
    "StepStatus",
    "WorkflowResult",
    "WorkflowStatus",
    "complete_step",
    "fail_step",
    "skip_step",

    # Context
    "Context",
    "Report",
    "StateKind",
    "STATE_NEEDS_REBOOT",

    # Core workflow
    "Workflow",

    # Executors
    "SequentialExecutor",
    "StepExecutor",
    "UnwindReport",
]
