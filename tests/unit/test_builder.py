"""Tests for the distribution-aware workflow builder."""

import pytest
from pydantic import ValidationError

from igor.errors import ConfigurationError
from igor.orchestration.builder import BuilderConfig, WorkflowBuilder, builder_for_family
from igor.orchestration.workflow_engine.steps import FuncStep, complete_step
from igor.steps import ModuleLoadStep, NouveauBlacklistStep, ValidationCheck, ValidationStep, XorgConfigStep
from igor.system.distro import DistroFamily
from igor.system.validator import DEFAULT_MIN_DISK_SPACE_MB

FULL_SEQUENCE = [
    "validation",
    "repository",
    "nouveau_blacklist",
    "packages",
    "dkms_build",
    "module_load",
    "xorg_config",
    "verification",
]


def names(steps):
    return [step.name for step in steps]


def custom(name):
    return FuncStep(name, f"custom {name}", lambda ctx: complete_step("ok"))


class TestWorkflowBuilder:
    def test_full_sequence(self, ubuntu):
        workflow = WorkflowBuilder(ubuntu).build()

        assert workflow.name == "debian-nvidia-installation"
        assert names(workflow.steps) == FULL_SEQUENCE

    def test_arch_has_no_repository_stage(self, arch):
        workflow = WorkflowBuilder(arch).build()

        assert workflow.name == "arch-nvidia-installation"
        assert "repository" not in names(workflow.steps)

    def test_fedora(self, fedora):
        assert WorkflowBuilder(fedora).build().name == "rhel-nvidia-installation"

    def test_missing_distribution(self):
        with pytest.raises(ConfigurationError, match="distribution is not set"):
            WorkflowBuilder(None).build()

    def test_unknown_distribution(self, unknown_distro):
        with pytest.raises(ConfigurationError, match="unsupported distribution family"):
            WorkflowBuilder(unknown_distro).build()

    def test_skip_flags(self, ubuntu):
        config = BuilderConfig(
            skip_validation=True,
            skip_repository=True,
            skip_nouveau=True,
            skip_dkms=True,
            skip_module_load=True,
            skip_xorg_config=True,
            skip_verification=True,
        )

        assert names(WorkflowBuilder(ubuntu, config).plan()) == ["packages"]

    def test_custom_steps_appended(self, ubuntu):
        config = BuilderConfig(custom_steps=[custom("notify"), custom("cleanup")])

        assert names(WorkflowBuilder(ubuntu, config).plan())[-2:] == ["notify", "cleanup"]

    def test_step_configuration_flows_through(self, ubuntu):
        config = BuilderConfig(
            validation_checks=[ValidationCheck.KERNEL],
            required_disk_mb=8192,
            driver_modules=["nvidia"],
            skip_if_wayland=False,
            skip_initramfs=True,
        )
        steps = {step.name: step for step in WorkflowBuilder(ubuntu, config).plan()}

        validation = steps["validation"]
        assert isinstance(validation, ValidationStep)
        assert validation.checks == [ValidationCheck.KERNEL]
        assert validation.required_disk_mb == 8192
        assert isinstance(steps["module_load"], ModuleLoadStep)
        assert steps["module_load"].module_names == ["nvidia"]
        assert isinstance(steps["xorg_config"], XorgConfigStep)
        assert steps["xorg_config"].skip_if_wayland is False
        assert isinstance(steps["nouveau_blacklist"], NouveauBlacklistStep)
        assert steps["nouveau_blacklist"].skip_initramfs is True

    def test_default_disk_requirement(self, ubuntu):
        validation = WorkflowBuilder(ubuntu).plan()[0]

        assert validation.required_disk_mb == DEFAULT_MIN_DISK_SPACE_MB

    def test_builder_for_family(self):
        workflow = builder_for_family(DistroFamily.SUSE).build()

        assert workflow.name == "suse-nvidia-installation"
        assert names(workflow.steps) == FULL_SEQUENCE

    def test_builder_for_unknown_family(self):
        with pytest.raises(ConfigurationError):
            builder_for_family(DistroFamily.UNKNOWN)


class TestBuilderConfig:
    def test_duplicate_custom_step_names(self):
        with pytest.raises(ValidationError):
            BuilderConfig(custom_steps=[custom("notify"), custom("notify")])

    def test_unnamed_custom_step(self):
        with pytest.raises(ValidationError):
            BuilderConfig(custom_steps=[custom("")])

    def test_empty_driver_module(self):
        with pytest.raises(ValidationError):
            BuilderConfig(driver_modules=["nvidia", " "])

    def test_negative_disk_requirement(self):
        with pytest.raises(ValidationError):
            BuilderConfig(required_disk_mb=-1)

    def test_non_positive_dkms_timeout(self):
        with pytest.raises(ValidationError):
            BuilderConfig(dkms_timeout=0)
