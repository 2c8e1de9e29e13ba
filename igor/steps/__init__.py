"""Concrete installation steps."""

from .dkms import DKMSBuildStep
from .modload import DEFAULT_NVIDIA_MODULES, ModuleLoadStep
from .nouveau import NouveauBlacklistStep
from .packages import PackageInstallationStep
from .repository import RepositoryStep
from .validation import DEFAULT_CHECKS, ValidationCheck, ValidationReport, ValidationStep
from .verify import VerificationCheck, VerificationReport, VerificationStep
from .xorg import XorgConfigStep

__all__ = [
    "DEFAULT_CHECKS",
    "DEFAULT_NVIDIA_MODULES",
    "DKMSBuildStep",
    "ModuleLoadStep",
    "NouveauBlacklistStep",
    "PackageInstallationStep",
    "RepositoryStep",
    "ValidationCheck",
    "ValidationReport",
    "ValidationStep",
    "VerificationCheck",
    "VerificationReport",
    "VerificationStep",
    "XorgConfigStep",
]
