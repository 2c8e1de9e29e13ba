"""Tests for the DKMS build step."""

import pytest

from igor.errors import OperationError, StepValidationError
from igor.orchestration.workflow_engine.steps import StepStatus
from igor.steps.dkms import (
    STATE_DKMS_BUILT,
    STATE_DKMS_KERNEL_VERSION,
    STATE_DKMS_MODULE_VERSION,
    DKMSBuildStep,
    is_module_built,
    parse_module_version,
)

from tests.mocks import failure, success

KERNEL = "6.5.0-14-generic"
ADDED = "nvidia/550.54.14: added\n"
INSTALLED = f"nvidia/550.54.14, {KERNEL}, x86_64: installed\n"


@pytest.fixture
def dkms_ctx(ctx, executor):
    executor.set_response("dkms status nvidia", success(ADDED))
    return ctx


class TestStatusParsing:
    @pytest.mark.parametrize(
        "output,expected",
        [
            (ADDED, "550.54.14"),
            (INSTALLED, "550.54.14"),
            ("nvidia, 470.223.02, 5.15.0, x86_64: installed\n", "470.223.02"),
            ("virtualbox/7.0.14: added\n", ""),
            ("", ""),
        ],
    )
    def test_parse_module_version(self, output, expected):
        assert parse_module_version(output, "nvidia") == expected

    def test_is_module_built(self):
        assert is_module_built(INSTALLED, "nvidia", "550.54.14", KERNEL)
        assert not is_module_built(ADDED, "nvidia", "550.54.14", KERNEL)
        assert not is_module_built(INSTALLED, "nvidia", "550.54.14", "6.8.0-1-generic")


class TestDKMSValidate:
    def test_requires_executor(self, make_context):
        with pytest.raises(StepValidationError):
            DKMSBuildStep().validate(make_context(executor=None))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"module_name": "nvidia; rm -rf /"},
            {"module_version": "550 54"},
            {"kernel_version": "6.5.0$(id)"},
        ],
    )
    def test_rejects_unsafe_identifiers(self, ctx, kwargs):
        with pytest.raises(StepValidationError):
            DKMSBuildStep(**kwargs).validate(ctx)


class TestDKMSExecute:
    def test_builds_and_installs(self, dkms_ctx, executor):
        result = DKMSBuildStep().execute(dkms_ctx)

        assert result.status == StepStatus.COMPLETED
        assert result.message == "NVIDIA DKMS module built and installed successfully"
        assert executor.was_called_with("dkms", "build", "nvidia/550.54.14", "-k", KERNEL)
        assert executor.was_called_with("dkms", "install", "nvidia/550.54.14", "-k", KERNEL)
        assert all(call.elevated for call in executor.calls_for("dkms")[1:])
        assert dkms_ctx.get_state_bool(STATE_DKMS_BUILT)
        assert dkms_ctx.get_state_string(STATE_DKMS_MODULE_VERSION) == "550.54.14"
        assert dkms_ctx.get_state_string(STATE_DKMS_KERNEL_VERSION) == KERNEL

    def test_explicit_versions(self, ctx, executor):
        DKMSBuildStep(module_version="535.1", kernel_version="6.1.0-1-amd64").execute(ctx)

        assert executor.was_called_with("dkms", "build", "nvidia/535.1", "-k", "6.1.0-1-amd64")

    def test_kernel_version_from_uname(self, make_context, executor):
        ctx = make_context(kernel_detector=None)
        executor.set_response("uname -r", success("6.8.0-31-generic\n"))
        executor.set_response("dkms status nvidia", success(ADDED))

        DKMSBuildStep().execute(ctx)

        assert executor.was_called_with("dkms", "build", "nvidia/550.54.14", "-k", "6.8.0-31-generic")

    def test_skips_without_dkms(self, ctx, executor):
        executor.set_response("which dkms", failure())

        result = DKMSBuildStep().execute(ctx)

        assert result.status == StepStatus.SKIPPED
        assert result.message == "DKMS is not available"

    def test_skips_without_registered_module(self, ctx):
        result = DKMSBuildStep().execute(ctx)

        assert result.status == StepStatus.SKIPPED
        assert result.message == "no NVIDIA DKMS module found"

    def test_skips_when_already_built(self, ctx, executor):
        executor.set_response("dkms status nvidia", success(INSTALLED))

        result = DKMSBuildStep().execute(ctx)

        assert result.status == StepStatus.SKIPPED
        assert not executor.was_called_with("dkms", "build", "nvidia/550.54.14", "-k", KERNEL)

    def test_skip_status_check_rebuilds(self, ctx, executor):
        executor.set_response("dkms status nvidia", success(INSTALLED))

        result = DKMSBuildStep(skip_status_check=True).execute(ctx)

        assert result.status == StepStatus.COMPLETED

    def test_dry_run(self, make_context, executor):
        ctx = make_context(dry_run=True)
        executor.set_response("dkms status nvidia", success(ADDED))

        result = DKMSBuildStep().execute(ctx)

        assert result.message == "dry run: DKMS module would be built"
        assert not any(call.elevated for call in executor.calls)
        assert ctx.state_keys() == []

    def test_build_failure(self, dkms_ctx, executor):
        executor.set_response("dkms build nvidia/550.54.14 -k " + KERNEL, failure("make: *** Error 2"))

        result = DKMSBuildStep().execute(dkms_ctx)

        assert result.status == StepStatus.FAILED
        assert result.message == "failed to build DKMS module"
        assert "make: *** Error 2" in str(result.error)
        assert not dkms_ctx.has_state(STATE_DKMS_BUILT)

    def test_install_failure_removes_build(self, dkms_ctx, executor):
        executor.set_response("dkms install nvidia/550.54.14 -k " + KERNEL, failure())

        result = DKMSBuildStep().execute(dkms_ctx)

        assert result.message == "failed to install DKMS module"
        assert executor.was_called_with("dkms", "remove", "nvidia/550.54.14", "-k", KERNEL, "--all")


class TestDKMSRollback:
    def test_removes_module(self, dkms_ctx, executor):
        step = DKMSBuildStep()
        step.execute(dkms_ctx)

        step.rollback(dkms_ctx)

        assert executor.was_called_with("dkms", "remove", "nvidia/550.54.14", "-k", KERNEL, "--all")
        assert not dkms_ctx.has_state(STATE_DKMS_BUILT)

    def test_noop_without_marker(self, ctx, executor):
        DKMSBuildStep().rollback(ctx)

        assert executor.calls == []

    def test_failure_raises(self, dkms_ctx, executor):
        step = DKMSBuildStep()
        step.execute(dkms_ctx)
        executor.set_response("dkms remove nvidia/550.54.14 -k " + KERNEL + " --all", failure("busy"))

        with pytest.raises(OperationError):
            step.rollback(dkms_ctx)
