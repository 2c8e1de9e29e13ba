"""Host system collaborators: commands, distribution, packages and detection."""

from .detectors import DisplayDetector, KernelDetector, NouveauDetector
from .distro import Distribution, DistroFamily, detect_distribution
from .executor import CommandExecutor, CommandResult
from .files import FileWriter
from .gpu import GPUDevice, GPUInfo, detect_gpus
from .packages import PackageManager, PackageManagerError, Repository, manager_for
from .validator import CheckResult, Severity, SystemValidator

__all__ = [
    "CheckResult",
    "CommandExecutor",
    "CommandResult",
    "DisplayDetector",
    "Distribution",
    "DistroFamily",
    "FileWriter",
    "GPUDevice",
    "GPUInfo",
    "KernelDetector",
    "NouveauDetector",
    "PackageManager",
    "PackageManagerError",
    "Repository",
    "Severity",
    "SystemValidator",
    "detect_distribution",
    "detect_gpus",
    "manager_for",
]
