"""Pre-flight system validation step."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..errors import OperationError
from ..orchestration.workflow_engine.context import Context, Report
from ..orchestration.workflow_engine.steps import BaseStep, StepResult, complete_step, fail_step
from ..system.validator import (
    DEFAULT_MIN_DISK_SPACE_MB,
    CheckResult,
    Severity,
    SystemValidator,
)
from .common import cancelled, elapsed

logger = logging.getLogger(__name__)

STATE_VALIDATION_PASSED = "validation_passed"
STATE_VALIDATION_WARNINGS = "validation_warnings"
STATE_VALIDATION_ERRORS = "validation_errors"
STATE_NEEDS_KERNEL_HEADERS = "needs_kernel_headers"
STATE_NEEDS_NOUVEAU_BLACKLIST = "needs_nouveau_blacklist"
STATE_VALIDATION_REPORT = "validation_report"


class ValidationCheck(Enum):
    """Pre-flight checks the validation step can run."""

    KERNEL = "kernel"
    KERNEL_HEADERS = "kernel_headers"
    DISK_SPACE = "disk_space"
    SECURE_BOOT = "secure_boot"
    BUILD_TOOLS = "build_tools"
    NOUVEAU_STATUS = "nouveau_status"
    NVIDIA_GPU = "nvidia_gpu"

    def __str__(self) -> str:
        return self.value


DEFAULT_CHECKS = (
    ValidationCheck.KERNEL,
    ValidationCheck.KERNEL_HEADERS,
    ValidationCheck.DISK_SPACE,
    ValidationCheck.BUILD_TOOLS,
    ValidationCheck.NOUVEAU_STATUS,
)


@dataclass
class ValidationReport(Report):
    """Outcome of the pre-flight checks."""

    passed: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    checks_run: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def summary(self) -> str:
        status = "PASSED" if self.passed else "FAILED"
        return (
            f"Validation {status}: {self.checks_run} checks run, "
            f"{len(self.errors)} errors, {len(self.warnings)} warnings"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "checks_run": self.checks_run,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationStep(BaseStep):
    """Runs pre-flight checks and records what later steps must handle.

    Error-severity failures fail the step; warnings are reported in the
    message and stored in the context.
    """

    def __init__(
        self,
        checks: Optional[Sequence[ValidationCheck]] = None,
        required_disk_mb: int = DEFAULT_MIN_DISK_SPACE_MB,
        validator: Optional[SystemValidator] = None,
    ):
        super().__init__("validation", "Validate system requirements", can_rollback=False)
        self.checks = list(checks) if checks is not None else list(DEFAULT_CHECKS)
        self.required_disk_mb = required_disk_mb
        self.validator = validator

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start, "validation cancelled")

        validator = self._get_validator(ctx)
        if validator is None:
            return fail_step(
                "failed to create validator", OperationError("no validator available")
            ).with_duration(elapsed(start))

        errors: List[str] = []
        warnings: List[str] = []
        needs_kernel_headers = False
        needs_nouveau_blacklist = False

        for check in self.checks:
            if ctx.is_cancelled():
                return cancelled(self.name, start, "validation cancelled")

            try:
                result = self._run_check(validator, check, ctx)
            except Exception as e:
                logger.error(f"Check {check} raised: {e}")
                errors.append(f"{check}: {e}")
                continue

            logger.debug(f"Check {check}: passed={result.passed} severity={result.severity}")
            if result.passed:
                continue
            if result.severity is Severity.ERROR:
                errors.append(result.message)
                if check is ValidationCheck.KERNEL_HEADERS:
                    needs_kernel_headers = True
            elif result.severity is Severity.WARNING:
                warnings.append(result.message)
                if check is ValidationCheck.NOUVEAU_STATUS:
                    needs_nouveau_blacklist = True

        passed = not errors
        self._store_results(ctx, passed, warnings, errors, needs_kernel_headers, needs_nouveau_blacklist)

        if not passed:
            message = f"validation failed: {'; '.join(errors)}"
            logger.error(message)
            return fail_step(
                message, OperationError("critical validation checks failed", step_name=self.name)
            ).with_duration(elapsed(start))

        message = "all validation checks passed"
        if warnings:
            message = f"validation passed with {len(warnings)} warning(s)"
        logger.info(message)
        return complete_step(message).with_duration(elapsed(start))

    def _get_validator(self, ctx: Context) -> Optional[SystemValidator]:
        if self.validator is not None:
            return self.validator
        if not ctx.has_executor():
            return None
        return SystemValidator(
            ctx.executor,
            kernel_detector=ctx.kernel_detector,
            nouveau_detector=ctx.nouveau_detector,
        )

    def _run_check(
        self, validator: SystemValidator, check: ValidationCheck, ctx: Context
    ) -> CheckResult:
        if check is ValidationCheck.KERNEL:
            return validator.validate_kernel()
        if check is ValidationCheck.KERNEL_HEADERS:
            return validator.validate_kernel_headers()
        if check is ValidationCheck.DISK_SPACE:
            return validator.validate_disk_space(self.required_disk_mb)
        if check is ValidationCheck.SECURE_BOOT:
            return validator.validate_secure_boot()
        if check is ValidationCheck.BUILD_TOOLS:
            return validator.validate_build_tools()
        if check is ValidationCheck.NOUVEAU_STATUS:
            return validator.validate_nouveau_status()
        return self._check_nvidia_gpu(ctx)

    @staticmethod
    def _check_nvidia_gpu(ctx: Context) -> CheckResult:
        if not ctx.has_gpu_info():
            return CheckResult(
                "nvidia_gpu",
                False,
                "no GPU information available",
                Severity.ERROR,
                remediation="Run GPU detection before validation",
            )
        gpus = ctx.gpu_info.nvidia_gpus
        if not gpus:
            return CheckResult(
                "nvidia_gpu",
                False,
                "no NVIDIA GPU detected in the system",
                Severity.ERROR,
                remediation="Ensure an NVIDIA GPU is installed and properly connected",
            )
        names = ", ".join(gpu.description or gpu.device_id for gpu in gpus)
        return CheckResult(
            "nvidia_gpu",
            True,
            f"found {len(gpus)} NVIDIA GPU(s): {names}",
            details={"gpu_count": str(len(gpus))},
        )

    def _store_results(
        self,
        ctx: Context,
        passed: bool,
        warnings: List[str],
        errors: List[str],
        needs_kernel_headers: bool,
        needs_nouveau_blacklist: bool,
    ) -> None:
        ctx.set_state(STATE_VALIDATION_PASSED, passed)
        ctx.set_state(STATE_VALIDATION_WARNINGS, warnings)
        ctx.set_state(STATE_VALIDATION_ERRORS, errors)
        ctx.set_state(STATE_NEEDS_KERNEL_HEADERS, needs_kernel_headers)
        ctx.set_state(STATE_NEEDS_NOUVEAU_BLACKLIST, needs_nouveau_blacklist)
        ctx.set_state(
            STATE_VALIDATION_REPORT,
            ValidationReport(
                passed=passed,
                warnings=list(warnings),
                errors=list(errors),
                checks_run=len(self.checks),
            ),
        )
