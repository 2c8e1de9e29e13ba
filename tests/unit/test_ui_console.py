"""Tests for console rendering and JSON output."""

import json
from io import StringIO

import pytest
from rich.console import Console

from igor.errors import CompensationError, OperationError, StepCancelledError
from igor.orchestration.workflow_engine import (
    Context,
    FuncStep,
    StepProgress,
    WorkflowResult,
    WorkflowStatus,
    complete_step,
)
from igor.steps.validation import STATE_VALIDATION_REPORT, ValidationReport
from igor.ui.console import ConsoleManager, result_to_dict


@pytest.fixture
def stream():
    return StringIO()


@pytest.fixture
def rich_output():
    return StringIO()


@pytest.fixture
def json_console(stream):
    return ConsoleManager(json_output=True, stream=stream)


@pytest.fixture
def rich_console(rich_output):
    return ConsoleManager(console=Console(file=rich_output, width=120))


def emitted(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def failed_result():
    return WorkflowResult(
        status=WorkflowStatus.FAILED,
        completed_steps=["validation", "repository"],
        failed_step="packages",
        error=OperationError("apt install failed"),
        total_duration=12.3456,
        rolled_back_steps=["repository"],
        rollback_errors=[CompensationError("repository", RuntimeError("ppa busy"))],
    )


class TestResultToDict:
    def test_failed_result(self):
        data = result_to_dict(failed_result())

        assert data == {
            "status": "failed",
            "completed_steps": ["validation", "repository"],
            "failed_step": "packages",
            "error": "apt install failed",
            "cancelled": False,
            "total_duration": 12.346,
            "needs_reboot": False,
            "rolled_back_steps": ["repository"],
            "rollback_errors": ["repository: rollback failed: ppa busy"],
        }

    def test_cancellation_flag(self):
        result = WorkflowResult(status=WorkflowStatus.FAILED, error=StepCancelledError())

        assert result_to_dict(result)["cancelled"] is True
        assert result_to_dict(WorkflowResult(status=WorkflowStatus.CANCELLED))["cancelled"] is True

    def test_reports_included(self):
        ctx = Context()
        ctx.set_state(STATE_VALIDATION_REPORT, ValidationReport(passed=True, checks_run=5))

        data = result_to_dict(WorkflowResult(status=WorkflowStatus.COMPLETED), ctx)

        assert data["reports"]["validation_report"]["checks_run"] == 5


class TestJSONOutput:
    def test_progress(self, json_console, stream):
        json_console.on_progress(StepProgress("packages", 3, 8, "Starting: Install NVIDIA packages"))

        event = emitted(stream)[0]
        assert event["type"] == "progress"
        assert event["step"] == "packages"
        assert event["percent"] == 37.5
        assert "timestamp" in event

    def test_plan(self, json_console, stream):
        steps = [
            FuncStep("a", "first", lambda ctx: complete_step("")),
            FuncStep("b", "second", lambda ctx: complete_step(""), rollback_fn=lambda ctx: None),
        ]

        json_console.print_plan("debian-nvidia-installation", steps)

        event = emitted(stream)[0]
        assert event["type"] == "plan"
        assert event["steps"] == [
            {"name": "a", "description": "first", "can_rollback": False},
            {"name": "b", "description": "second", "can_rollback": True},
        ]

    def test_summary(self, json_console, stream):
        json_console.print_summary(failed_result())

        event = emitted(stream)[0]
        assert event["type"] == "summary"
        assert event["result"]["failed_step"] == "packages"

    def test_error(self, json_console, stream):
        json_console.print_error("distribution is not set")

        assert emitted(stream)[0] == {
            "timestamp": emitted(stream)[0]["timestamp"],
            "type": "error",
            "message": "distribution is not set",
        }


class TestRichOutput:
    def test_progress_panel(self, rich_console, rich_output):
        rich_console.on_progress(StepProgress("packages", 3, 8, "Completed: packages installed"))

        text = rich_output.getvalue()
        assert "[4/8] packages" in text
        assert "packages installed" in text

    def test_final_progress(self, rich_console, rich_output):
        rich_console.on_progress(StepProgress("", 8, 8, "Workflow completed successfully"))

        assert "Workflow completed successfully" in rich_output.getvalue()
        assert "[9/8]" not in rich_output.getvalue()

    def test_summary_table(self, rich_console, rich_output):
        rich_console.print_summary(failed_result())

        text = rich_output.getvalue()
        assert "Installation Summary" in text
        assert "packages" in text
        assert "manual cleanup" in text

    def test_reboot_notice(self, rich_console, rich_output):
        result = WorkflowResult(status=WorkflowStatus.COMPLETED, needs_reboot=True)

        rich_console.print_summary(result)

        assert "reboot is required" in rich_output.getvalue()

    def test_plan_table(self, rich_console, rich_output):
        rich_console.print_plan("arch-nvidia-installation", [FuncStep("a", "first", None)])

        assert "arch-nvidia-installation" in rich_output.getvalue()
