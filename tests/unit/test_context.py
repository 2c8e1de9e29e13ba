"""Tests for the execution context and its typed state store."""

import threading
from datetime import timedelta

import pytest

from igor.orchestration.workflow_engine.context import (
    STATE_NEEDS_REBOOT,
    Context,
    Report,
    StateKind,
    state_kind,
)


class SampleReport(Report):
    def summary(self):
        return "sample"

    def to_dict(self):
        return {"sample": True}


class TestStateStore:
    def test_typed_round_trips(self):
        ctx = Context()
        report = SampleReport()
        ctx.set_state("flag", True)
        ctx.set_state("name", "nvidia")
        ctx.set_state("packages", ["a", "b"])
        ctx.set_state("took", timedelta(seconds=3))
        ctx.set_state("report", report)

        assert ctx.get_state_bool("flag") is True
        assert ctx.get_state_string("name") == "nvidia"
        assert ctx.get_state_list("packages") == ["a", "b"]
        assert ctx.get_state_duration("took") == timedelta(seconds=3)
        assert ctx.get_state_report("report") is report

    def test_missing_keys_return_zero_values(self):
        ctx = Context()

        assert ctx.get_state_bool("missing") is False
        assert ctx.get_state_string("missing") == ""
        assert ctx.get_state_list("missing") == []
        assert ctx.get_state_duration("missing") == timedelta(0)
        assert ctx.get_state_report("missing") is None
        assert ctx.get_state("missing") == (None, False)

    def test_typed_getter_with_wrong_kind_returns_zero_value(self):
        ctx = Context()
        ctx.set_state("name", "nvidia")

        assert ctx.get_state_bool("name") is False
        assert ctx.get_state_list("name") == []

    def test_get_state_reports_presence(self):
        ctx = Context()
        ctx.set_state("flag", False)

        assert ctx.get_state("flag") == (False, True)

    def test_lists_are_copied(self):
        ctx = Context()
        packages = ["a"]
        ctx.set_state("packages", packages)
        packages.append("b")
        ctx.get_state_list("packages").append("c")

        assert ctx.get_state_list("packages") == ["a"]

    def test_unsupported_value_rejected(self):
        ctx = Context()

        with pytest.raises(TypeError):
            ctx.set_state("count", 3)
        with pytest.raises(TypeError):
            ctx.set_state("mixed", ["a", 1])

    def test_delete_and_clear(self):
        ctx = Context()
        ctx.set_state("a", True)
        ctx.set_state("b", True)

        ctx.delete_state("a")
        ctx.delete_state("never-set")
        assert not ctx.has_state("a")
        assert ctx.state_keys() == ["b"]

        ctx.clear_state()
        assert ctx.state_keys() == []

    def test_state_kind(self):
        assert state_kind(True) is StateKind.BOOL
        assert state_kind(("a",)) is StateKind.STRING_LIST
        assert state_kind(SampleReport()) is StateKind.REPORT


class TestCollaborators:
    def test_absent_collaborators(self):
        ctx = Context()

        assert not ctx.has_executor()
        assert not ctx.has_package_manager()
        assert not ctx.has_distro()
        assert not ctx.has_gpu_info()

    def test_present_collaborators(self, ctx):
        assert ctx.has_executor()
        assert ctx.has_package_manager()
        assert ctx.has_distro()
        assert ctx.has_gpu_info()

    def test_components_copied(self):
        components = ["driver"]
        ctx = Context(components=components)
        components.append("cuda")

        assert ctx.components == ["driver"]

    def test_needs_reboot(self):
        ctx = Context()
        assert ctx.needs_reboot() is False
        ctx.set_state(STATE_NEEDS_REBOOT, True)
        assert ctx.needs_reboot() is True


class TestCancellation:
    def test_cancel_from_another_thread(self):
        ctx = Context()
        thread = threading.Thread(target=ctx.cancel)
        thread.start()
        thread.join()

        assert ctx.is_cancelled()
