"""Rich views for task graph progress."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from ..models import ProjectSession, ProjectStatusKind, Task, TaskStatusKind

STATUS_ICONS = {
	TaskStatusKind.PENDING: "[dim][ ][/dim]",
	TaskStatusKind.READY: "[dim][ ][/dim]",
	TaskStatusKind.IN_PROGRESS: "[yellow][~][/yellow]",
	TaskStatusKind.BLOCKED_BY_DEPENDENCY: "[dim][.][/dim]",
	TaskStatusKind.BLOCKED_BY_ERROR: "[yellow][!][/yellow]",
	TaskStatusKind.AWAITING_HUMAN_CLARIFICATION: "[magenta][?][/magenta]",
	TaskStatusKind.COMPLETED_SUCCESS: "[green][x][/green]",
	TaskStatusKind.COMPLETED_WITH_WARNINGS: "[green][w][/green]",
	TaskStatusKind.FAILED: "[red][!][/red]",
}

PROJECT_STATUS_STYLES = {
	ProjectStatusKind.COMPLETED_GOAL: "green",
	ProjectStatusKind.ERROR: "red",
	ProjectStatusKind.AWAITING_HUMAN_INPUT: "magenta",
	ProjectStatusKind.SELF_CORRECTING: "yellow",
	ProjectStatusKind.EXECUTING_TASK: "yellow",
}


def _task_label(task: Task) -> str:
	icon = STATUS_ICONS.get(task.status.kind, "[ ]")
	label = f"{icon} {task.description} [dim]({task.id})[/dim]"
	if task.current_attempt_number > 1:
		label += f" [yellow]x{task.current_attempt_number}[/yellow]"
	if task.dependencies:
		label += f" [dim]<- {', '.join(task.dependencies)}[/dim]"
	return label


def build_task_tree(tasks: list[Task], title: str = "Tasks") -> Tree:
	"""Tasks nested under their parents, in list order."""
	tree = Tree(f"[bold]{title}[/bold]")
	by_id = {t.id: t for t in tasks}
	children: dict[Optional[str], list[Task]] = {}
	for task in tasks:
		parent = task.parent_id if task.parent_id in by_id else None
		children.setdefault(parent, []).append(task)

	def add(branch: Tree, parent_id: Optional[str]) -> None:
		for task in children.get(parent_id, []):
			add(branch.add(_task_label(task)), task.id)

	add(tree, None)
	return tree


def render_task_tree(session: ProjectSession, console: Optional[Console] = None) -> None:
	"""Render the session's tasks as a Rich Tree."""
	console = console or Console()

	if not session.tasks:
		console.print("[dim]No tasks in this session.[/dim]")
		return

	progress = session.get_progress()
	title = (
		f"{session.active_spec or 'Tasks'}  "
		f"[dim]({progress['completed_tasks']}/{progress['total_tasks']} tasks, "
		f"{progress['percent_complete']:.0f}%)[/dim]"
	)
	console.print(build_task_tree(session.tasks, title))


def render_session_summary(session: ProjectSession, console: Optional[Console] = None) -> None:
	"""Render a summary panel for a session."""
	console = console or Console()

	progress = session.get_progress()
	style = PROJECT_STATUS_STYLES.get(session.status.kind, "cyan")

	lines = []
	lines.append(f"[bold]Project:[/bold] {session.project_path or '(none)'}")
	lines.append(f"[bold]Status:[/bold] [{style}]{session.status}[/{style}]")
	lines.append(f"[bold]Spec:[/bold] {session.active_spec or '(none)'}")
	if session.current_task_id:
		lines.append(f"[bold]Current task:[/bold] {session.current_task_id}")
	lines.append("")
	lines.append(
		f"[bold]Progress:[/bold] {progress['completed_tasks']}/{progress['total_tasks']} tasks "
		f"({progress['percent_complete']:.0f}%), {progress['failed_tasks']} failed"
	)

	if session.known_dependencies:
		lines.append("")
		lines.append("[bold]Dependencies:[/bold]")
		for dep in session.known_dependencies:
			version = f" {dep.version}" if dep.version else ""
			lines.append(f"  - {dep.name}{version}: {dep.approval_status.value}")

	console.print(Panel("\n".join(lines), title="Session", border_style=style))
