"""Console output for installation runs.

Renders progress banners, the step plan and the final summary either with
Rich (interactive terminals) or as JSON lines for machine consumers.
"""

from __future__ import annotations

import json
import sys
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, TextIO

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..errors import is_cancellation
from ..orchestration.workflow_engine.context import Context
from ..orchestration.workflow_engine.steps import Step, StepProgress, WorkflowResult, WorkflowStatus

_STATUS_STYLES = {
    WorkflowStatus.COMPLETED: "green",
    WorkflowStatus.FAILED: "red",
    WorkflowStatus.CANCELLED: "yellow",
    WorkflowStatus.ROLLED_BACK: "yellow",
}

_REPORT_KEYS = ("validation_report", "verification_report")


def result_to_dict(result: WorkflowResult, ctx: Optional[Context] = None) -> Dict[str, Any]:
    """Plain-data form of a workflow result for JSON output."""
    data: Dict[str, Any] = {
        "status": result.status.value,
        "completed_steps": list(result.completed_steps),
        "failed_step": result.failed_step,
        "error": str(result.error) if result.error is not None else None,
        "cancelled": is_cancellation(result.error) or result.status is WorkflowStatus.CANCELLED,
        "total_duration": round(result.total_duration, 3),
        "needs_reboot": result.needs_reboot,
        "rolled_back_steps": list(result.rolled_back_steps),
        "rollback_errors": [str(e) for e in result.rollback_errors],
    }
    if ctx is not None:
        reports = {}
        for key in _REPORT_KEYS:
            report = ctx.get_state_report(key)
            if report is not None:
                reports[key] = report.to_dict()
        if reports:
            data["reports"] = reports
    return data


class ConsoleManager:
    """Renders workflow progress and results.

    Usage:
        console = ConsoleManager(json_output=False)
        workflow.on_progress(console.on_progress)
        result = workflow.execute(ctx)
        console.print_summary(result, ctx)
    """

    def __init__(
        self,
        json_output: bool = False,
        console: Optional[Console] = None,
        stream: Optional[TextIO] = None,
    ):
        """Initialize console manager.

        Args:
            json_output: Emit JSON lines instead of Rich renderables
            console: Rich console to render to (stderr by default)
            stream: Destination for JSON lines (stdout by default)
        """
        self.json_output = json_output
        self.console = console or Console(stderr=True)
        self.stream = stream or sys.stdout
        self._lock = threading.RLock()

    def on_progress(self, progress: StepProgress) -> None:
        """Progress callback for ``Workflow.on_progress``."""
        if self.json_output:
            self._emit(
                {
                    "type": "progress",
                    "step": progress.step_name,
                    "index": progress.step_index,
                    "total": progress.total_steps,
                    "percent": round(progress.percent, 1),
                    "message": progress.message,
                }
            )
            return
        if not progress.step_name:
            with self._lock:
                self.console.print(Panel(progress.message, style="green", padding=(0, 1)))
            return
        position = f"[{progress.step_index + 1}/{progress.total_steps}]"
        with self._lock:
            self.console.print(
                Panel(
                    f"[bold]{position} {progress.step_name}[/bold]  {progress.message}",
                    style="blue",
                    padding=(0, 1),
                )
            )

    def print_plan(self, name: str, steps: List[Step]) -> None:
        """Show the ordered step list of a workflow without running it."""
        if self.json_output:
            self._emit(
                {
                    "type": "plan",
                    "workflow": name,
                    "steps": [
                        {"name": s.name, "description": s.description, "can_rollback": s.can_rollback()}
                        for s in steps
                    ],
                }
            )
            return
        table = Table(title=f"Plan: {name}")
        table.add_column("#", justify="right")
        table.add_column("Step", style="cyan")
        table.add_column("Description")
        table.add_column("Rollback", justify="center")
        for index, step in enumerate(steps, start=1):
            table.add_row(str(index), step.name, step.description, "yes" if step.can_rollback() else "no")
        with self._lock:
            self.console.print(table)

    def print_summary(self, result: WorkflowResult, ctx: Optional[Context] = None) -> None:
        """Show the outcome of a run."""
        if self.json_output:
            self._emit({"type": "summary", "result": result_to_dict(result, ctx)})
            return

        style = _STATUS_STYLES.get(result.status, "white")
        table = Table(title="Installation Summary", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Status", f"[bold {style}]{result.status.value}[/bold {style}]")
        table.add_row("Duration", f"{result.total_duration:.1f}s")
        table.add_row("Completed steps", ", ".join(result.completed_steps) or "-")
        if result.failed_step:
            table.add_row("Failed step", result.failed_step)
        if result.error is not None:
            table.add_row("Error", str(result.error))
        if result.rolled_back_steps:
            table.add_row("Rolled back", ", ".join(result.rolled_back_steps))
        for error in result.rollback_errors:
            table.add_row("Rollback error", f"[red]{error}[/red]")
        if ctx is not None:
            for key in _REPORT_KEYS:
                report = ctx.get_state_report(key)
                if report is not None:
                    table.add_row("Report", report.summary())

        with self._lock:
            self.console.print(table)
            if result.needs_reboot and result.is_success():
                self.console.print("[bold yellow]A reboot is required to finish the installation.[/bold yellow]")
            if result.rollback_errors:
                self.console.print(
                    "[bold red]Some changes could not be undone; the system may need manual cleanup.[/bold red]"
                )

    def print_error(self, message: str) -> None:
        if self.json_output:
            self._emit({"type": "error", "message": message})
            return
        with self._lock:
            self.console.print(f"[bold red]Error:[/bold red] {message}")

    def _emit(self, payload: Dict[str, Any]) -> None:
        payload = {"timestamp": datetime.now().isoformat(), **payload}
        with self._lock:
            print(json.dumps(payload), file=self.stream)
            self.stream.flush()
