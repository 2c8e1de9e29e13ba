"""Tests for the post-installation verification step."""

import pytest

from igor.orchestration.workflow_engine.steps import StepStatus
from igor.steps.verify import (
    STATE_DRIVER_VERSION_DETECTED,
    STATE_GPU_DETECTED,
    STATE_MODULE_LOADED,
    STATE_NVIDIA_SMI_AVAILABLE,
    STATE_VERIFICATION_ERRORS,
    STATE_VERIFICATION_PASSED,
    STATE_VERIFICATION_REPORT,
    VerificationCheck,
    VerificationStep,
    parse_driver_version,
)
from igor.steps.xorg import DEFAULT_XORG_CONF_PATH, STATE_XORG_CONFIG_PATH

from tests.mocks import FakeKernelDetector, failure, success

SMI_VERSION = "nvidia-smi --query-gpu=driver_version --format=csv,noheader"
SMI_GPUS = "nvidia-smi --query-gpu=name,memory.total --format=csv,noheader"


@pytest.fixture
def healthy(make_context, executor):
    executor.set_response(SMI_VERSION, success("550.54.14\n"))
    executor.set_response(SMI_GPUS, success("NVIDIA GeForce RTX 4090, 24564 MiB\n"))
    return make_context(kernel_detector=FakeKernelDetector(loaded=["nvidia"]))


class TestParseDriverVersion:
    @pytest.mark.parametrize(
        "output,expected",
        [("550.54.14\n", "550.54.14"), ("535.1, extra\n550\n", "535.1"), ("", "")],
    )
    def test_parse(self, output, expected):
        assert parse_driver_version(output) == expected


class TestVerificationStep:
    def test_all_checks_pass(self, healthy):
        result = VerificationStep().execute(healthy)

        assert result.status == StepStatus.COMPLETED
        assert result.message == "all 3 verification checks passed"
        assert healthy.get_state_bool(STATE_VERIFICATION_PASSED)
        assert healthy.get_state_string(STATE_DRIVER_VERSION_DETECTED) == "550.54.14"
        assert healthy.get_state_bool(STATE_NVIDIA_SMI_AVAILABLE)
        assert healthy.get_state_bool(STATE_MODULE_LOADED)
        assert healthy.get_state_bool(STATE_GPU_DETECTED)
        report = healthy.get_state_report(STATE_VERIFICATION_REPORT)
        assert report.driver_version == "550.54.14"
        assert report.summary() == "Verification PASSED: 3/3 checks passed"

    def test_missing_nvidia_smi_fails(self, healthy, executor):
        executor.set_response("nvidia-smi", failure("command not found", exit_code=127))

        result = VerificationStep().execute(healthy)

        assert result.status == StepStatus.FAILED
        assert result.message.startswith("verification failed: 2/3 critical checks failed")
        assert not healthy.get_state_bool(STATE_VERIFICATION_PASSED)
        assert len(healthy.get_state_list(STATE_VERIFICATION_ERRORS)) == 2

    def test_module_not_loaded_fails(self, make_context, executor):
        executor.set_response(SMI_VERSION, success("550.54.14\n"))
        executor.set_response(SMI_GPUS, success("NVIDIA GeForce RTX 4090, 24564 MiB\n"))

        result = VerificationStep().execute(make_context())

        assert result.status == StepStatus.FAILED
        assert "nvidia kernel module is not loaded" in result.message

    def test_empty_gpu_list_fails(self, healthy, executor):
        executor.set_response(SMI_GPUS, success(""))

        result = VerificationStep().execute(healthy)

        assert result.status == StepStatus.FAILED
        assert not healthy.get_state_bool(STATE_GPU_DETECTED)

    def test_xorg_check_is_a_warning(self, healthy, executor):
        executor.set_response("test", failure(""))

        result = VerificationStep(check_xorg_config=True).execute(healthy)

        assert result.status == StepStatus.COMPLETED
        assert result.message == "3/4 verification checks passed with 1 warning(s)"

    def test_xorg_check_uses_configured_path(self, healthy, executor):
        custom_path = "/etc/X11/xorg.conf.d/90-nvidia.conf"
        healthy.set_state(STATE_XORG_CONFIG_PATH, custom_path)
        executor.set_response("test", failure(""))
        executor.set_response(f"test -f {custom_path}", success())

        result = VerificationStep(check_xorg_config=True).execute(healthy)

        assert result.message == "all 4 verification checks passed"
        assert executor.was_called_with("test", "-f", custom_path)
        assert not executor.was_called_with("test", "-f", DEFAULT_XORG_CONF_PATH)

    def test_xorg_check_defaults_without_state(self, healthy, executor):
        VerificationStep(check_xorg_config=True).execute(healthy)

        assert executor.was_called_with("test", "-f", DEFAULT_XORG_CONF_PATH)

    def test_fail_on_warning(self, healthy, executor):
        executor.set_response("test", failure(""))

        result = VerificationStep(check_xorg_config=True, fail_on_warning=True).execute(healthy)

        assert result.status == StepStatus.FAILED

    def test_custom_checks(self, healthy):
        def custom(ctx):
            return VerificationCheck("cuda", passed=False, message="cuda missing", critical=True)

        result = VerificationStep(custom_checks=[custom]).execute(healthy)

        assert result.status == StepStatus.FAILED
        assert "cuda missing" in result.message

    def test_disabled_checks_do_not_run(self, healthy, executor):
        result = VerificationStep(
            check_nvidia_smi=False, check_gpu_detected=False
        ).execute(healthy)

        assert result.message == "all 1 verification checks passed"
        assert not executor.was_called("nvidia-smi")

    def test_dry_run(self, make_context, executor):
        ctx = make_context(dry_run=True)

        result = VerificationStep().execute(ctx)

        assert result.message == "dry run: verification checks would be performed"
        assert executor.calls == []
        assert ctx.state_keys() == []

    def test_cannot_roll_back(self):
        assert VerificationStep().can_rollback() is False
