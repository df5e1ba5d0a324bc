"""Console reporter for flow execution output, adapting to the environment."""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table
from rich.text import Text

from .models import FlowResult, StepResult
from .output_config import OutputFormat


def _is_ci() -> bool:
    return any(name in os.environ for name in ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS", "GITHUB_ACTIONS"))


class ConsoleReporter:
    """
    Flow reporter that adapts to environment.

    - Interactive terminals get a Rich progress bar and step table
    - CI/CD environments and pipes get plain text
    - ``json`` prints one JSON document per finished flow
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO, console: Optional[Console] = None):
        self.output_format = output_format
        if output_format == OutputFormat.RICH:
            self.use_rich = True
        elif output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:
            self.use_rich = sys.stdout.isatty() and not _is_ci()

        self.console = console or Console()
        self.progress: Optional[Progress] = None
        self.progress_task: Optional[TaskID] = None
        self.live: Optional[Live] = None
        self.results_table: Optional[Table] = None

    def start_flow(self, name: str, total_steps: int) -> None:
        if self.output_format == OutputFormat.JSON:
            return
        if not self.use_rich:
            print(f"Running flow: {name}")
            print(f"Total steps: {total_steps}")
            print("-" * 80)
            return

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=self.console,
        )
        self.progress_task = self.progress.add_task(f"[cyan]Running {name}", total=total_steps)
        self.results_table = Table(show_header=True, header_style="bold cyan")
        self.results_table.add_column("Step", style="dim", width=16)
        self.results_table.add_column("Request", width=40)
        self.results_table.add_column("Status", width=10)
        self.results_table.add_column("Duration", justify="right", width=12)
        self.live = Live(Group(self.progress, self.results_table), console=self.console, refresh_per_second=4)
        self.live.start()

    def report_step(self, result: StepResult) -> None:
        if self.output_format == OutputFormat.JSON:
            return
        request = f"{result.request.method} {result.request.url}" if result.request else "-"
        status = result.response.status if result.response else "-"

        if not self.use_rich:
            outcome = "PASS" if result.success else "FAIL"
            print(f"[{result.index + 1}] {result.step}: {request} -> {status} {outcome} ({result.duration_ms:.0f}ms)")
            if result.error:
                print(f"  Error: {result.error}")
            return

        label = Text("✓ PASS", style="green") if result.success else Text("✗ FAIL", style="red")
        self.results_table.add_row(result.step, request, label, f"{result.duration_ms:.0f}ms")
        if result.error:
            self.results_table.add_row("", Text(f"Error: {result.error}", style="red"), "", "")
        self.progress.update(self.progress_task, advance=1)

    def finish_flow(self, result: FlowResult) -> None:
        if self.output_format == OutputFormat.JSON:
            print(json.dumps(_serialize_flow(result)))
            return

        passed = sum(1 for step in result.steps if step.success)
        failed = len(result.steps) - passed
        if not self.use_rich:
            print("-" * 80)
            print(f"Steps: {len(result.steps)} | Passed: {passed} | Failed: {failed} | Duration: {result.duration_ms:.0f}ms")
            print("✓ FLOW PASSED" if result.success else "✗ FLOW FAILED")
            return

        if self.live:
            self.live.stop()
        summary = Text()
        summary.append(f"Steps: {len(result.steps)}  ", style="bold")
        summary.append(f"Passed: {passed}  ", style="bold green")
        summary.append(f"Failed: {failed}  ", style="bold red" if failed else "bold green")
        summary.append(f"Duration: {result.duration_ms:.0f}ms", style="bold cyan")
        title = Text("✓ FLOW PASSED", style="bold green") if result.success else Text("✗ FLOW FAILED", style="bold red")
        self.console.print()
        self.console.print(Panel(summary, title=title, border_style="green" if result.success else "red"))

    def print_error(self, message: str) -> None:
        if self.use_rich:
            self.console.print(f"[bold red]Error:[/] {message}")
        else:
            print(f"Error: {message}", file=sys.stderr)


def _serialize_flow(result: FlowResult) -> dict[str, Any]:
    return result.model_dump(mode="json", exclude={"context"}, by_alias=True)
