"""Rich views for session logs and task attempts."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..models import LogEntry, Task
from .utils import exit_code_style, format_timestamp, level_style, truncate


def render_session_logs(
	logs: list[LogEntry],
	console: Optional[Console] = None,
	limit: int = 30,
	task_id: Optional[str] = None,
) -> None:
	"""Render the most recent log entries, oldest first."""
	console = console or Console()

	if task_id:
		logs = [e for e in logs if e.task_id == task_id]
	if not logs:
		console.print("[dim]No log entries.[/dim]")
		return

	table = Table(title=f"Log (last {min(limit, len(logs))} of {len(logs)})")
	table.add_column("When", style="dim")
	table.add_column("Level")
	table.add_column("Component", style="cyan")
	table.add_column("Task")
	table.add_column("Message")

	for entry in logs[-limit:]:
		style = level_style(entry.level)
		table.add_row(
			format_timestamp(entry.timestamp),
			f"[{style}]{entry.level.value}[/{style}]",
			entry.component,
			entry.task_id or "",
			truncate(entry.message, 80),
		)

	console.print(table)


def render_task_attempts(task: Task, console: Optional[Console] = None) -> None:
	"""Render the attempt history of one task."""
	console = console or Console()

	console.print(f"[bold]{task.description}[/bold] [dim]({task.id})[/dim]  status: {task.status}")
	if task.human_review_notes:
		console.print(f"[magenta]Human notes:[/magenta] {task.human_review_notes}")
	if not task.attempts:
		console.print("[dim]No attempts yet.[/dim]")
		return

	table = Table(title="Attempts")
	table.add_column("#", justify="right")
	table.add_column("Started", style="dim")
	table.add_column("Exit", justify="right")
	table.add_column("Summary")
	table.add_column("Error")

	for attempt in task.attempts:
		style = exit_code_style(attempt.verification_exit_code)
		table.add_row(
			str(attempt.attempt_number),
			format_timestamp(attempt.started_at),
			f"[{style}]{attempt.verification_exit_code}[/{style}]",
			truncate(attempt.generated_summary or "", 40),
			truncate(attempt.error_summary or "", 60),
		)

	console.print(table)
