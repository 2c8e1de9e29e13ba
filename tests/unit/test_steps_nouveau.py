"""Tests for the nouveau blacklisting step."""

import pytest

from igor.errors import OperationError, StepValidationError, is_cancellation
from igor.orchestration.workflow_engine.context import STATE_NEEDS_REBOOT
from igor.orchestration.workflow_engine.steps import StepStatus
from igor.steps.nouveau import (
    BLACKLIST_CONTENT,
    DEFAULT_BLACKLIST_PATH,
    STATE_NOUVEAU_BLACKLIST_FILE,
    STATE_NOUVEAU_BLACKLISTED,
    NouveauBlacklistStep,
    initramfs_command,
)
from igor.system.distro import DistroFamily

from tests.mocks import FakeNouveauDetector, failure


class TestInitramfsCommand:
    @pytest.mark.parametrize(
        "family,expected",
        [
            (DistroFamily.DEBIAN, ("update-initramfs", ["-u"])),
            (DistroFamily.RHEL, ("dracut", ["--force"])),
            (DistroFamily.SUSE, ("dracut", ["--force"])),
            (DistroFamily.ARCH, ("mkinitcpio", ["-P"])),
            (DistroFamily.UNKNOWN, ("update-initramfs", ["-u"])),
        ],
    )
    def test_per_family(self, family, expected):
        assert initramfs_command(family) == expected


class TestNouveauBlacklistStep:
    def test_validate_requires_file_writer(self, make_context):
        with pytest.raises(StepValidationError):
            NouveauBlacklistStep().validate(make_context(file_writer=None))

    def test_validate_requires_executor(self, make_context):
        with pytest.raises(StepValidationError):
            NouveauBlacklistStep().validate(make_context(executor=None))

    def test_writes_blacklist_and_regenerates_initramfs(self, ctx, file_writer, executor):
        result = NouveauBlacklistStep().execute(ctx)

        assert result.status == StepStatus.COMPLETED
        assert result.message == "nouveau blacklisted, reboot required"
        assert file_writer.files[DEFAULT_BLACKLIST_PATH] == BLACKLIST_CONTENT
        assert "blacklist nouveau" in BLACKLIST_CONTENT
        assert "options nouveau modeset=0" in BLACKLIST_CONTENT
        call = executor.calls_for("update-initramfs")[0]
        assert call.args == ("-u",)
        assert call.elevated
        assert ctx.get_state_bool(STATE_NOUVEAU_BLACKLISTED)
        assert ctx.get_state_string(STATE_NOUVEAU_BLACKLIST_FILE) == DEFAULT_BLACKLIST_PATH
        assert ctx.get_state_bool(STATE_NEEDS_REBOOT)

    def test_fedora_uses_dracut(self, make_context, fedora, executor):
        NouveauBlacklistStep().execute(make_context(distro=fedora))

        assert executor.was_called_with("dracut", "--force")

    def test_skip_initramfs(self, ctx, executor):
        NouveauBlacklistStep(skip_initramfs=True).execute(ctx)

        assert executor.calls == []

    def test_skips_when_detector_reports_blacklisted(self, make_context, file_writer):
        ctx = make_context(nouveau_detector=FakeNouveauDetector(blacklisted=True))

        result = NouveauBlacklistStep().execute(ctx)

        assert result.status == StepStatus.SKIPPED
        assert file_writer.files == {}
        assert not ctx.has_state(STATE_NOUVEAU_BLACKLISTED)

    def test_skips_when_file_exists(self, ctx, file_writer):
        file_writer.files[DEFAULT_BLACKLIST_PATH] = "blacklist nouveau\n"

        result = NouveauBlacklistStep().execute(ctx)

        assert result.status == StepStatus.SKIPPED
        assert result.message == "nouveau is already blacklisted"

    def test_dry_run(self, make_context, file_writer, executor):
        ctx = make_context(dry_run=True)

        result = NouveauBlacklistStep().execute(ctx)

        assert result.status == StepStatus.COMPLETED
        assert result.message == "dry run: nouveau would be blacklisted"
        assert file_writer.files == {}
        assert executor.calls == []
        assert ctx.state_keys() == []

    def test_write_failure(self, ctx, file_writer):
        file_writer.fail_write.add(DEFAULT_BLACKLIST_PATH)

        result = NouveauBlacklistStep().execute(ctx)

        assert result.status == StepStatus.FAILED
        assert result.message == "failed to write blacklist file"

    def test_initramfs_failure_removes_file(self, ctx, file_writer, executor):
        executor.set_response("update-initramfs", failure("no space left"))

        result = NouveauBlacklistStep().execute(ctx)

        assert result.status == StepStatus.FAILED
        assert result.message == "failed to regenerate initramfs"
        assert DEFAULT_BLACKLIST_PATH not in file_writer.files
        assert not ctx.has_state(STATE_NEEDS_REBOOT)

    def test_cancelled(self, ctx, file_writer):
        ctx.cancel()

        result = NouveauBlacklistStep().execute(ctx)

        assert is_cancellation(result.error)
        assert file_writer.files == {}


class TestNouveauRollback:
    def test_removes_file_and_regenerates(self, ctx, file_writer, executor):
        step = NouveauBlacklistStep()
        step.execute(ctx)
        executor.calls.clear()

        step.rollback(ctx)

        assert DEFAULT_BLACKLIST_PATH not in file_writer.files
        assert executor.was_called("update-initramfs")
        assert not ctx.has_state(STATE_NOUVEAU_BLACKLISTED)
        assert not ctx.has_state(STATE_NOUVEAU_BLACKLIST_FILE)

    def test_noop_without_marker(self, ctx, file_writer, executor):
        NouveauBlacklistStep().rollback(ctx)

        assert file_writer.operations == []
        assert executor.calls == []

    def test_initramfs_failure_raises(self, ctx, executor):
        step = NouveauBlacklistStep()
        step.execute(ctx)
        executor.set_response("update-initramfs", failure())

        with pytest.raises(OperationError):
            step.rollback(ctx)
