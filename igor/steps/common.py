"""Helpers shared by the concrete installation steps."""
from __future__ import annotations

import re
import time

from ..errors import OperationError, StepCancelledError
from ..orchestration.workflow_engine.steps import StepResult, fail_step

# Kernel module and DKMS identifiers: letters, digits, dash, underscore
_MODULE_NAME = re.compile(r"^[A-Za-z0-9_-]+$")
_DKMS_VERSION = re.compile(r"^[A-Za-z0-9._-]+$")
_KERNEL_VERSION = re.compile(r"^[A-Za-z0-9._+-]+$")


def elapsed(start: float) -> float:
    return time.monotonic() - start


def cancelled(step_name: str, start: float, message: str = "step cancelled") -> StepResult:
    """Failed result for a step that stopped at a cancellation checkpoint."""
    return fail_step(message, StepCancelledError(step_name=step_name)).with_duration(elapsed(start))


def command_error(result, action: str) -> OperationError:
    """Translate a failed ``CommandResult`` into an ``OperationError``."""
    return OperationError(f"{action} failed: {result.error_message()}")


def is_valid_module_name(name: str) -> bool:
    return bool(name) and _MODULE_NAME.match(name) is not None


def is_valid_dkms_version(version: str) -> bool:
    return bool(version) and _DKMS_VERSION.match(version) is not None


def is_valid_kernel_version(version: str) -> bool:
    return bool(version) and _KERNEL_VERSION.match(version) is not None
