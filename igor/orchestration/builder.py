"""Distribution-aware workflow assembly.

The builder produces the canonical installation sequence for a detected
distribution:

    validation -> repository -> nouveau_blacklist -> packages -> dkms_build
    -> module_load -> xorg_config -> verification -> custom steps

The repository stage is omitted on Arch, whose official repositories ship
the driver. Every stage except package installation can be switched off
through ``BuilderConfig``.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..errors import ConfigurationError
from ..steps.dkms import DEFAULT_DKMS_TIMEOUT, DKMSBuildStep
from ..steps.modload import DEFAULT_NVIDIA_MODULES, ModuleLoadStep
from ..steps.nouveau import NouveauBlacklistStep
from ..steps.packages import PackageInstallationStep
from ..steps.repository import RepositoryStep
from ..steps.validation import ValidationCheck, ValidationStep
from ..steps.verify import VerificationStep
from ..steps.xorg import XorgConfigStep
from ..system.distro import Distribution, DistroFamily
from ..system.validator import DEFAULT_MIN_DISK_SPACE_MB
from .workflow_engine.core import Workflow
from .workflow_engine.steps import Step

logger = logging.getLogger(__name__)


class BuilderConfig(BaseModel):
    """Which stages to include and how to configure them."""

    skip_validation: bool = Field(False, description="Omit the validation stage")
    skip_repository: bool = Field(False, description="Omit the repository stage")
    skip_nouveau: bool = Field(False, description="Omit the nouveau blacklist stage")
    skip_dkms: bool = Field(False, description="Omit the DKMS build stage")
    skip_module_load: bool = Field(False, description="Omit the module load stage")
    skip_xorg_config: bool = Field(False, description="Omit the X.org configuration stage")
    skip_verification: bool = Field(False, description="Omit the verification stage")

    validation_checks: List[ValidationCheck] = Field(
        default_factory=list, description="Validation checks to run (empty for defaults)"
    )
    required_disk_mb: int = Field(
        0, ge=0, description="Required free disk space in MB (0 for the default)"
    )
    additional_packages: List[str] = Field(default_factory=list)
    driver_modules: List[str] = Field(default_factory=lambda: list(DEFAULT_NVIDIA_MODULES))
    skip_if_wayland: bool = Field(True, description="Skip X.org configuration on Wayland")
    skip_initramfs: bool = Field(False, description="Do not regenerate the initramfs")
    skip_repository_update: bool = Field(False, description="Do not refresh package lists")
    dkms_timeout: float = Field(DEFAULT_DKMS_TIMEOUT, gt=0)
    custom_steps: List[Step] = Field(default_factory=list)

    @field_validator("custom_steps")
    @classmethod
    def validate_custom_steps(cls, v: List[Step]) -> List[Step]:
        """Ensure custom step names are present and unique."""
        seen = set()
        for step in v:
            if not step.name:
                raise ValueError("custom steps must have a name")
            if step.name in seen:
                raise ValueError(f"duplicate custom step name: {step.name}")
            seen.add(step.name)
        return v

    @field_validator("driver_modules")
    @classmethod
    def validate_driver_modules(cls, v: List[str]) -> List[str]:
        if any(not name.strip() for name in v):
            raise ValueError("driver module names must not be empty")
        return v

    class Config:
        arbitrary_types_allowed = True


class WorkflowBuilder:
    """Builds the installation workflow for a distribution.

    Usage:
        builder = WorkflowBuilder(distro, BuilderConfig(skip_xorg_config=True))
        workflow = builder.build()
    """

    def __init__(self, distro: Optional[Distribution], config: Optional[BuilderConfig] = None):
        self.distro = distro
        self.config = config or BuilderConfig()

    def build(self) -> Workflow:
        """Assemble the workflow.

        Raises:
            ConfigurationError: If the distribution is missing or unsupported
        """
        if self.distro is None:
            raise ConfigurationError("distribution is not set")
        if self.distro.family is DistroFamily.UNKNOWN:
            raise ConfigurationError("unsupported distribution family: unknown")

        workflow = Workflow(f"{self.distro.family}-nvidia-installation")
        for step in self.plan():
            workflow.add_step(step)
        logger.info(f"Built workflow {workflow.name} with {len(workflow.steps)} step(s)")
        return workflow

    def plan(self) -> List[Step]:
        """Steps of the workflow in execution order."""
        config = self.config
        steps: List[Step] = []
        if not config.skip_validation:
            steps.append(self._validation_step())
        if not config.skip_repository and not self._repository_not_needed():
            steps.append(RepositoryStep(skip_update=config.skip_repository_update))
        if not config.skip_nouveau:
            steps.append(NouveauBlacklistStep(skip_initramfs=config.skip_initramfs))
        steps.append(PackageInstallationStep(additional_packages=config.additional_packages))
        if not config.skip_dkms:
            steps.append(DKMSBuildStep(timeout=config.dkms_timeout))
        if not config.skip_module_load:
            steps.append(ModuleLoadStep(module_names=config.driver_modules))
        if not config.skip_xorg_config:
            steps.append(XorgConfigStep(skip_if_wayland=config.skip_if_wayland))
        if not config.skip_verification:
            steps.append(VerificationStep())
        steps.extend(config.custom_steps)
        return steps

    def _repository_not_needed(self) -> bool:
        return self.distro is not None and self.distro.family is DistroFamily.ARCH

    def _validation_step(self) -> ValidationStep:
        return ValidationStep(
            checks=self.config.validation_checks or None,
            required_disk_mb=self.config.required_disk_mb or DEFAULT_MIN_DISK_SPACE_MB,
        )


def builder_for_family(
    family: DistroFamily, config: Optional[BuilderConfig] = None
) -> WorkflowBuilder:
    """Builder for a bare distribution family.

    Raises:
        ConfigurationError: If the family is UNKNOWN
    """
    if family is DistroFamily.UNKNOWN:
        raise ConfigurationError("unsupported distribution family: unknown")
    distro = Distribution(id=family.value, name=family.value, family=family)
    return WorkflowBuilder(distro, config)
