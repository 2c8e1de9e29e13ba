"""Exception hierarchy for installation workflows.

Errors fall into five groups that the engine and the reporting layer treat
differently:

- ``StepValidationError``: a precondition failed before any side effect ran.
- ``StepCancelledError``: the run was cancelled cooperatively.
- ``OperationError``: a collaborator (command, package manager) failed.
- ``CompensationError``: a rollback failed during the unwind pass.
- ``ConfigurationError``: the workflow or settings could not be assembled.
"""
from __future__ import annotations

from typing import Optional


class InstallError(Exception):
    """Base class for all installer errors."""

    def __init__(self, message: str, step_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step_name = step_name

    def __str__(self) -> str:
        if self.step_name:
            return f"{self.step_name}: {self.message}"
        return self.message


class StepValidationError(InstallError):
    """Raised by ``Step.validate`` when a precondition is not met."""


class StepCancelledError(InstallError):
    """Raised or returned when an operation stops because of cancellation."""

    def __init__(self, message: str = "operation cancelled", step_name: Optional[str] = None):
        super().__init__(message, step_name)


class OperationError(InstallError):
    """A collaborator call reported failure."""


class CompensationError(InstallError):
    """A step's rollback failed during the unwind pass.

    The original exception is kept on ``__cause__`` and on ``cause``.
    """

    def __init__(self, step_name: str, cause: BaseException):
        super().__init__(f"rollback failed: {cause}", step_name)
        self.cause = cause
        self.__cause__ = cause


class ConfigurationError(InstallError):
    """Raised when configuration validation fails."""


def is_cancellation(error: Optional[BaseException]) -> bool:
    """Check whether an error (or anything in its cause chain) is a cancellation.

    Args:
        error: Exception to inspect, may be None

    Returns:
        True if the error represents cooperative cancellation
    """
    seen = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, StepCancelledError):
            return True
        seen.add(id(error))
        error = error.__cause__
    return False
