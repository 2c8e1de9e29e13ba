"""Post-installation verification step."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import OperationError, StepValidationError
from ..orchestration.workflow_engine.context import Context, Report
from ..orchestration.workflow_engine.steps import BaseStep, StepResult, complete_step, fail_step
from ..system.detectors import parse_lsmod
from .common import cancelled, elapsed
from .xorg import DEFAULT_XORG_CONF_PATH, STATE_XORG_CONFIG_PATH

logger = logging.getLogger(__name__)

STATE_VERIFICATION_PASSED = "verification_passed"
STATE_VERIFICATION_ERRORS = "verification_errors"
STATE_DRIVER_VERSION_DETECTED = "driver_version_detected"
STATE_NVIDIA_SMI_AVAILABLE = "nvidia_smi_available"
STATE_MODULE_LOADED = "module_loaded"
STATE_GPU_DETECTED = "gpu_detected"
STATE_VERIFICATION_REPORT = "verification_report"


@dataclass
class VerificationCheck:
    """Outcome of a single verification check.

    Critical failures fail the step; non-critical ones are warnings unless
    the step is configured with ``fail_on_warning``.
    """

    name: str
    description: str = ""
    passed: bool = False
    message: str = ""
    critical: bool = True


CustomCheck = Callable[[Context], VerificationCheck]


@dataclass
class VerificationReport(Report):
    passed: bool
    checks: List[VerificationCheck] = field(default_factory=list)
    driver_version: str = ""

    def summary(self) -> str:
        passed = sum(1 for c in self.checks if c.passed)
        status = "PASSED" if self.passed else "FAILED"
        return f"Verification {status}: {passed}/{len(self.checks)} checks passed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "driver_version": self.driver_version,
            "checks": [
                {
                    "name": c.name,
                    "passed": c.passed,
                    "critical": c.critical,
                    "message": c.message,
                }
                for c in self.checks
            ],
        }


def parse_driver_version(output: str) -> str:
    """Driver version from ``nvidia-smi --query-gpu=driver_version`` output."""
    lines = output.strip().splitlines()
    if not lines:
        return ""
    return lines[0].split(",")[0].strip()


class VerificationStep(BaseStep):
    """Checks that the installed driver is usable."""

    def __init__(
        self,
        check_nvidia_smi: bool = True,
        check_module_loaded: bool = True,
        check_gpu_detected: bool = True,
        check_xorg_config: bool = False,
        fail_on_warning: bool = False,
        custom_checks: Optional[Sequence[CustomCheck]] = None,
    ):
        super().__init__("verification", "Verify NVIDIA driver installation", can_rollback=False)
        self.check_nvidia_smi = check_nvidia_smi
        self.check_module_loaded = check_module_loaded
        self.check_gpu_detected = check_gpu_detected
        self.check_xorg_config = check_xorg_config
        self.fail_on_warning = fail_on_warning
        self.custom_checks = list(custom_checks or [])

    def validate(self, ctx: Context) -> None:
        if not ctx.has_executor():
            raise StepValidationError("executor is required for verification", self.name)

    def _planned_checks(self) -> List[Callable[[Context], VerificationCheck]]:
        checks = []
        if self.check_nvidia_smi:
            checks.append(self._check_nvidia_smi)
        if self.check_module_loaded:
            checks.append(self._check_module_loaded)
        if self.check_gpu_detected:
            checks.append(self._check_gpu_detected)
        if self.check_xorg_config:
            checks.append(self._check_xorg_config)
        return checks + self.custom_checks

    def execute(self, ctx: Context) -> StepResult:
        start = time.monotonic()
        if ctx.is_cancelled():
            return cancelled(self.name, start, "verification cancelled")

        planned = self._planned_checks()
        if ctx.dry_run:
            logger.info(f"dry run: would run {len(planned)} verification check(s)")
            return complete_step("dry run: verification checks would be performed").with_duration(
                elapsed(start)
            )

        results: List[VerificationCheck] = []
        for check in planned:
            if ctx.is_cancelled():
                return cancelled(self.name, start, "verification cancelled")
            outcome = check(ctx)
            results.append(outcome)
            if outcome.passed:
                logger.debug(f"Check {outcome.name} passed: {outcome.message}")
            elif outcome.critical:
                logger.error(f"Check {outcome.name} failed (critical): {outcome.message}")
            else:
                logger.warning(f"Check {outcome.name} failed (warning): {outcome.message}")

        errors = [c.message for c in results if not c.passed]
        critical_failed = sum(1 for c in results if not c.passed and c.critical)
        warnings = sum(1 for c in results if not c.passed and not c.critical)
        passed = critical_failed == 0 and not (self.fail_on_warning and warnings)
        self._store_results(ctx, results, errors, passed)

        if not passed:
            message = f"verification failed: {critical_failed}/{len(results)} critical checks failed"
            if errors:
                message = f"{message} ({'; '.join(errors)})"
            return fail_step(
                message, OperationError("critical verification checks failed", step_name=self.name)
            ).with_duration(elapsed(start))

        message = f"all {len(results)} verification checks passed"
        if warnings:
            message = (
                f"{len(results) - warnings}/{len(results)} verification checks passed "
                f"with {warnings} warning(s)"
            )
        logger.info("Post-installation verification completed successfully")
        return complete_step(message).with_duration(elapsed(start))

    def _store_results(
        self, ctx: Context, results: List[VerificationCheck], errors: List[str], passed: bool
    ) -> None:
        ctx.set_state(STATE_VERIFICATION_PASSED, passed)
        ctx.set_state(STATE_VERIFICATION_ERRORS, errors)
        by_name = {
            "nvidia-smi": STATE_NVIDIA_SMI_AVAILABLE,
            "nvidia-module": STATE_MODULE_LOADED,
            "gpu-detected": STATE_GPU_DETECTED,
        }
        for check in results:
            if check.name in by_name:
                ctx.set_state(by_name[check.name], check.passed)
        ctx.set_state(
            STATE_VERIFICATION_REPORT,
            VerificationReport(
                passed=passed,
                checks=list(results),
                driver_version=ctx.get_state_string(STATE_DRIVER_VERSION_DETECTED),
            ),
        )

    @staticmethod
    def _check_nvidia_smi(ctx: Context) -> VerificationCheck:
        check = VerificationCheck("nvidia-smi", "Check nvidia-smi availability")
        result = ctx.executor.execute(
            "nvidia-smi", "--query-gpu=driver_version", "--format=csv,noheader"
        )
        if result.failed:
            check.message = f"nvidia-smi not available: {result.error_message()}"
            return check
        version = parse_driver_version(result.stdout)
        if not version:
            check.message = "nvidia-smi returned empty driver version"
            return check
        ctx.set_state(STATE_DRIVER_VERSION_DETECTED, version)
        check.passed = True
        check.message = f"nvidia-smi available, driver version: {version}"
        return check

    @staticmethod
    def _check_module_loaded(ctx: Context) -> VerificationCheck:
        check = VerificationCheck("nvidia-module", "Check nvidia kernel module loaded")
        if ctx.kernel_detector is not None:
            loaded = ctx.kernel_detector.is_module_loaded("nvidia")
        else:
            result = ctx.executor.execute("lsmod")
            if result.failed:
                check.message = f"failed to check nvidia module: {result.error_message()}"
                return check
            loaded = "nvidia" in parse_lsmod(result.stdout)
        check.passed = loaded
        check.message = "nvidia kernel module is loaded" if loaded else "nvidia kernel module is not loaded"
        return check

    @staticmethod
    def _check_gpu_detected(ctx: Context) -> VerificationCheck:
        check = VerificationCheck("gpu-detected", "Check GPU detected by nvidia-smi")
        result = ctx.executor.execute(
            "nvidia-smi", "--query-gpu=name,memory.total", "--format=csv,noheader"
        )
        if result.failed:
            check.message = f"GPU detection failed: {result.error_message()}"
            return check
        names = [line.split(",")[0].strip() for line in result.lines()]
        if not names:
            check.message = "no GPU detected by nvidia-smi"
            return check
        check.passed = True
        check.message = f"detected {len(names)} GPU(s): {', '.join(names)}"
        return check

    @staticmethod
    def _check_xorg_config(ctx: Context) -> VerificationCheck:
        check = VerificationCheck("xorg-config", "Check X.org NVIDIA config exists", critical=False)
        path = ctx.get_state_string(STATE_XORG_CONFIG_PATH) or DEFAULT_XORG_CONF_PATH
        if ctx.executor.execute("test", "-f", path).failed:
            check.message = f"X.org config not found at {path}"
            return check
        check.passed = True
        check.message = f"X.org config exists at {path}"
        return check
