"""Pre-flight system checks for driver installation.

Each check returns a ``CheckResult``; checks never raise for an unhealthy
system, only the severity of the result changes.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence

import psutil

logger = logging.getLogger(__name__)

DEFAULT_MIN_DISK_SPACE_MB = 2048
MIN_KERNEL_VERSION = (4, 15)
REQUIRED_BUILD_TOOLS = ("gcc", "make", "dkms")
DISK_SPACE_CHECK_PATHS = ("/usr", "/var", "/")


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


@dataclass
class CheckResult:
    """Outcome of one validation check."""

    name: str
    passed: bool
    message: str
    severity: Severity = Severity.INFO
    remediation: str = ""
    details: Dict[str, str] = field(default_factory=dict)


class SystemValidator:
    """Runs the individual pre-flight checks.

    Usage:
        validator = SystemValidator(executor, kernel_detector=KernelDetector(executor))
        result = validator.validate_disk_space(4096)
    """

    def __init__(
        self,
        executor,
        kernel_detector=None,
        nouveau_detector=None,
        required_tools: Sequence[str] = REQUIRED_BUILD_TOOLS,
        disk_paths: Sequence[str] = DISK_SPACE_CHECK_PATHS,
        min_kernel: tuple = MIN_KERNEL_VERSION,
    ):
        self.executor = executor
        self.kernel_detector = kernel_detector
        self.nouveau_detector = nouveau_detector
        self.required_tools = list(required_tools)
        self.disk_paths = list(disk_paths)
        self.min_kernel = min_kernel

    def validate_kernel(self) -> CheckResult:
        if self.kernel_detector is None:
            return CheckResult("kernel", False, "kernel detector not available", Severity.ERROR)

        version = self.kernel_detector.kernel_version()
        parsed = parse_kernel_version(version)
        if parsed is None:
            return CheckResult(
                "kernel", False, f"could not determine kernel version: {version!r}", Severity.ERROR
            )
        if parsed < self.min_kernel:
            minimum = ".".join(str(p) for p in self.min_kernel)
            return CheckResult(
                "kernel",
                False,
                f"kernel {version} is older than the minimum supported {minimum}",
                Severity.ERROR,
                remediation="Upgrade the kernel before installing the NVIDIA driver",
            )
        return CheckResult("kernel", True, f"kernel {version} is supported",
                           details={"version": version})

    def validate_kernel_headers(self) -> CheckResult:
        if self.kernel_detector is None:
            return CheckResult(
                "kernel_headers", False, "kernel detector not available", Severity.ERROR
            )
        if not self.kernel_detector.headers_installed():
            return CheckResult(
                "kernel_headers",
                False,
                "kernel headers are not installed",
                Severity.ERROR,
                remediation="Install kernel headers for your current kernel",
            )
        return CheckResult("kernel_headers", True, "kernel headers are installed")

    def validate_disk_space(self, required_mb: int = DEFAULT_MIN_DISK_SPACE_MB) -> CheckResult:
        for path in self.disk_paths:
            try:
                usage = psutil.disk_usage(path)
            except OSError as e:
                logger.debug(f"Cannot stat {path}: {e}")
                continue
            available_mb = usage.free // (1024 * 1024)
            if available_mb < required_mb:
                return CheckResult(
                    "disk_space",
                    False,
                    f"insufficient disk space on {path}: {available_mb} MB available, "
                    f"{required_mb} MB required",
                    Severity.ERROR,
                    remediation="Free up disk space before installing",
                    details={"path": path, "available_mb": str(available_mb)},
                )
            return CheckResult(
                "disk_space",
                True,
                f"{available_mb} MB available on {path}",
                details={"path": path, "available_mb": str(available_mb)},
            )
        return CheckResult(
            "disk_space", False, "could not determine available disk space", Severity.WARNING
        )

    def validate_secure_boot(self) -> CheckResult:
        if self.kernel_detector is None:
            return CheckResult(
                "secure_boot", True, "kernel detector not available, skipping Secure Boot check"
            )
        if self.kernel_detector.secure_boot_enabled():
            return CheckResult(
                "secure_boot",
                False,
                "Secure Boot is enabled - unsigned kernel modules may not load",
                Severity.WARNING,
                remediation="Disable Secure Boot or enroll a MOK to sign the NVIDIA modules",
            )
        return CheckResult("secure_boot", True, "Secure Boot is disabled or not supported")

    def validate_build_tools(self) -> CheckResult:
        missing = [tool for tool in self.required_tools if not self._tool_available(tool)]
        if missing:
            return CheckResult(
                "build_tools",
                False,
                f"missing required build tools: {', '.join(missing)}",
                Severity.ERROR,
                remediation=f"Install missing tools: {' '.join(missing)}",
                details={"missing_tools": ",".join(missing)},
            )
        return CheckResult(
            "build_tools",
            True,
            f"all required build tools are available: {', '.join(self.required_tools)}",
        )

    def validate_nouveau_status(self) -> CheckResult:
        if self.nouveau_detector is None:
            return CheckResult(
                "nouveau_status", True, "nouveau detector not available, skipping check"
            )
        blacklisted = self.nouveau_detector.is_blacklisted()
        if self.nouveau_detector.is_loaded():
            return CheckResult(
                "nouveau_status",
                False,
                "Nouveau driver is currently loaded",
                Severity.WARNING,
                remediation="Blacklist the nouveau driver and reboot",
                details={"loaded": "true", "blacklist_exists": str(blacklisted).lower()},
            )
        if not blacklisted:
            return CheckResult(
                "nouveau_status",
                True,
                "Nouveau driver is not loaded, but blacklist configuration not found",
            )
        return CheckResult("nouveau_status", True, "Nouveau driver is not loaded and is blacklisted")

    def _tool_available(self, tool: str) -> bool:
        result = self.executor.execute("which", tool)
        return result.succeeded and bool(result.lines())


def parse_kernel_version(version: str) -> Optional[tuple]:
    """Parse ``"6.5.0-14-generic"`` into ``(6, 5)``."""
    match = re.match(r"^(\d+)\.(\d+)", version.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))

