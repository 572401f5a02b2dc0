"""CLI for pilot-orchestrator: setup, plan check, verify, index, search, and session commands."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .config import get_config, load_config, load_settings
from .errors import ConfigurationError, TaskGraphError, VerificationError
from .logging_setup import setup_logging
from .orchestrator.graph import admit_drafts, topological_order
from .orchestrator.verifier import StageStatus, VerificationPipeline
from .plans.loader import load_plan_file
from .visualizer import (
	build_task_tree,
	render_session_logs,
	render_session_summary,
	render_task_attempts,
	render_task_tree,
)
from .visualizer.utils import format_duration, format_timestamp, truncate
from .workspace import LocalWorkspace

DEFAULT_CONFIG_TOML = (
	"# pilot-orchestrator configuration\n"
	"\n"
	"# data_dir = \"~/.local/share/pilot-orchestrator\"\n"
	"# log_level = \"INFO\"\n"
)

DEFAULT_PROJECT_TOML = (
	"# pilot-orchestrator project configuration\n"
	"code_root = \".\"\n"
	"specs_dir = \"docs/specifications\"\n"
	"architecture_file = \"docs/architecture.md\"\n"
	"code_docs_dir = \"docs/code_documentation\"\n"
	"\n"
	"[stages]\n"
	"# test = \"cargo test --all-targets\"\n"
)


def _project_root(path: str) -> Path:
	root = Path(path).expanduser().resolve()
	if not root.is_dir():
		print(f"Project path does not exist: {root}")
		sys.exit(1)
	return root


def cmd_setup(args: argparse.Namespace) -> None:
	"""Create app directories and default config files."""
	config = load_config()
	print("pilot-orchestrator setup")
	print(f"{'=' * 40}")
	print(f"  Config: {config.config_dir}")
	print(f"  Data:   {config.data_dir}")
	print(f"  Logs:   {config.log_dir}")
	print()

	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		toml_path.write_text(DEFAULT_CONFIG_TOML)
		print(f"  Config file created: {toml_path}")
	else:
		print(f"  Config file exists: {toml_path}")

	project = getattr(args, "project", None)
	if project:
		root = _project_root(project)
		project_toml = root / "pilot.toml"
		if not project_toml.exists():
			project_toml.write_text(DEFAULT_PROJECT_TOML)
			print(f"  Project file created: {project_toml}")
		else:
			print(f"  Project file exists: {project_toml}")


def cmd_plan_check(args: argparse.Namespace) -> None:
	"""Validate a plan file and show its task tree."""
	console = Console()
	try:
		drafts = load_plan_file(Path(args.file))
		tasks = admit_drafts(drafts)
	except (ConfigurationError, TaskGraphError) as e:
		console.print(f"[red]Invalid plan:[/red] {e}")
		sys.exit(1)

	console.print(build_task_tree(tasks, f"{args.file} [dim]({len(tasks)} tasks)[/dim]"))
	console.print(f"[bold]Execution order:[/bold] {' -> '.join(topological_order(tasks))}", highlight=False)
	console.print("[green]Plan is valid.[/green]")


def cmd_verify(args: argparse.Namespace) -> None:
	"""Run the verification pipeline against a project."""
	console = Console()
	root = _project_root(args.project)
	stages = args.stages.split(",") if args.stages else load_settings().verification_stages

	def stream(line: str) -> None:
		if not args.quiet:
			console.print(line, markup=False, highlight=False)

	pipeline = VerificationPipeline(LocalWorkspace())
	try:
		result = asyncio.run(pipeline.run(str(root), stages, on_output_line=stream))
	except (ConfigurationError, VerificationError) as e:
		console.print(f"[red]Verification could not run:[/red] {e}")
		sys.exit(2)

	table = Table(title="Verification")
	table.add_column("Stage", style="cyan")
	table.add_column("Status")
	table.add_column("Exit", justify="right")
	table.add_column("Time", justify="right")
	for stage in result.stages:
		style = "green" if stage.status == StageStatus.PASSED else "red"
		table.add_row(
			stage.name,
			f"[{style}]{stage.status.value}[/{style}]",
			str(stage.exit_code),
			format_duration(stage.duration_seconds),
		)
	console.print(table)
	console.print(result.summary)

	if not result.passed:
		sys.exit(1)


def cmd_index(args: argparse.Namespace) -> None:
	"""Refresh the knowledge index for a project."""
	from .knowledge.index import ProjectIndex

	root = _project_root(args.project)
	index = ProjectIndex(get_config().index_db_path)
	stats = asyncio.run(index.refresh(str(root)))
	print(f"Indexed {stats.total_chunks} chunks from {stats.total_files} files in {format_duration(stats.duration_seconds)}")


def cmd_search(args: argparse.Namespace) -> None:
	"""Search a project's knowledge index."""
	from .knowledge.index import ProjectIndex

	console = Console()
	root = _project_root(args.project)
	index = ProjectIndex(get_config().index_db_path)
	results = asyncio.run(index.search(args.query, args.limit, args.type, str(root)))

	if not results:
		console.print("[dim]No matching documents found. Has the project been indexed?[/dim]")
		return

	table = Table(title=f"Results for '{args.query}'")
	table.add_column("Score", justify="right")
	table.add_column("Type")
	table.add_column("File", style="cyan")
	table.add_column("Snippet")
	for r in results:
		table.add_row(f"{r.score:.2f}", r.doc_type, r.relative_path, truncate(r.snippet, 60))
	console.print(table)


async def _load_session(project: str, version: Optional[int] = None):
	from .store import get_session_store

	store = await get_session_store()
	try:
		return await store.load_session(project, version)
	finally:
		await store.close()


async def _list_projects() -> list[dict]:
	from .store import get_session_store

	store = await get_session_store()
	try:
		return await store.list_projects()
	finally:
		await store.close()


def cmd_session(args: argparse.Namespace) -> None:
	"""Show stored session snapshots."""
	console = Console()

	if args.session_action == "list":
		projects = asyncio.run(_list_projects())
		if not projects:
			console.print("[dim]No sessions stored yet.[/dim]")
			return
		table = Table(title="Sessions")
		table.add_column("Project", style="cyan")
		table.add_column("Snapshots", justify="right")
		table.add_column("Last Saved")
		for p in projects:
			table.add_row(p["project"], str(p["snapshot_count"]), format_timestamp(p["last_saved"]))
		console.print(table)
		return

	root = _project_root(args.project)
	session = asyncio.run(_load_session(str(root), args.version))
	if session is None:
		console.print(f"[dim]No stored session for {root}.[/dim]")
		sys.exit(1)

	if args.task:
		task = session.get_task(args.task)
		if task is None:
			console.print(f"[red]Task not found:[/red] {args.task}")
			sys.exit(1)
		render_task_attempts(task, console)
		render_session_logs(session.logs, console, limit=args.limit, task_id=task.id)
		return

	render_session_summary(session, console)
	render_task_tree(session, console)
	if args.logs:
		render_session_logs(session.logs, console, limit=args.limit)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="pilot-orchestrator",
		description="Spec-driven task orchestration: planning, verification, and self-correction",
	)
	parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")
	subparsers = parser.add_subparsers(dest="command")

	# setup
	setup_parser = subparsers.add_parser("setup", help="Create config directories and defaults")
	setup_parser.add_argument("--project", type=str, default=None, help="Also write pilot.toml into this project")
	setup_parser.set_defaults(func=cmd_setup)

	# plan
	plan_parser = subparsers.add_parser("plan", help="Work with plan files")
	plan_subparsers = plan_parser.add_subparsers(dest="plan_action")
	plan_check = plan_subparsers.add_parser("check", help="Validate a plan file")
	plan_check.add_argument("file", help="YAML, JSON, or markdown-with-frontmatter plan")
	plan_check.set_defaults(func=cmd_plan_check)

	# verify
	verify_parser = subparsers.add_parser("verify", help="Run verification stages")
	verify_parser.add_argument("project", help="Project root")
	verify_parser.add_argument("--stages", type=str, default=None, help="Comma-separated stage names")
	verify_parser.add_argument("--quiet", action="store_true", help="Don't stream stage output")
	verify_parser.set_defaults(func=cmd_verify)

	# index
	index_parser = subparsers.add_parser("index", help="Refresh the knowledge index")
	index_parser.add_argument("project", help="Project root")
	index_parser.set_defaults(func=cmd_index)

	# search
	search_parser = subparsers.add_parser("search", help="Search the knowledge index")
	search_parser.add_argument("project", help="Project root")
	search_parser.add_argument("query", help="Search query")
	search_parser.add_argument("--type", type=str, default=None, choices=["code", "code_doc", "spec_doc"])
	search_parser.add_argument("--limit", type=int, default=5, help="Max results")
	search_parser.set_defaults(func=cmd_search)

	# session
	session_parser = subparsers.add_parser("session", help="Inspect stored sessions")
	session_subparsers = session_parser.add_subparsers(dest="session_action")
	session_show = session_subparsers.add_parser("show", help="Show the latest snapshot of a project")
	session_show.add_argument("project", help="Project root")
	session_show.add_argument("--version", type=int, default=None, help="Snapshot version")
	session_show.add_argument("--task", type=str, default=None, help="Show one task's attempts")
	session_show.add_argument("--logs", action="store_true", help="Include recent log entries")
	session_show.add_argument("--limit", type=int, default=30, help="Max log entries")
	session_show.set_defaults(func=cmd_session)
	session_list = session_subparsers.add_parser("list", help="List projects with stored sessions")
	session_list.set_defaults(func=cmd_session)

	return parser


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not getattr(args, "func", None):
		parser.print_help()
		sys.exit(1)

	config = get_config()
	setup_logging(level=args.log_level or config.log_level, log_dir=config.log_dir)
	args.func(args)


if __name__ == "__main__":
	main()
