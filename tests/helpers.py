"""Shared test fixtures and helpers for pilot-orchestrator tests."""

import json
import subprocess
from pathlib import Path
from typing import Optional

from pilot_orchestrator.collaborators import SearchResult, StageOutput
from pilot_orchestrator.config import ProjectSettings
from pilot_orchestrator.errors import StageSpawnError
from pilot_orchestrator.models import (
	ChangedFile,
	GenerationOutcome,
	Task,
	TaskDraft,
	TaskStatus,
	TaskType,
)
from pilot_orchestrator.orchestrator.engine import Orchestrator

STDERR_LINES = [f"error[E{n:04d}]: failure line {n}" for n in range(1, 9)]


def init_git_repo(path: Path) -> None:
	"""Create a real git repo with an initial commit."""
	path.mkdir(parents=True, exist_ok=True)
	subprocess.run(["git", "init"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "config", "user.email", "test@test.com"], cwd=str(path), capture_output=True)
	subprocess.run(["git", "config", "user.name", "Test"], cwd=str(path), capture_output=True)
	(path / "README.md").write_text("# Test\n")
	subprocess.run(["git", "add", "README.md"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "commit", "-m", "init"], cwd=str(path), capture_output=True, check=True)


def write_stage_config(project: Path, stages: dict[str, list[str]]) -> None:
	"""Write a pilot.toml whose [stages] table holds the given commands."""
	lines = ["[stages]"]
	for name, command in stages.items():
		lines.append(f"{name} = [{', '.join(json.dumps(part) for part in command)}]")
	(project / "pilot.toml").write_text("\n".join(lines) + "\n")


def make_task(
	task_id: str,
	dependencies: Optional[list[str]] = None,
	status: Optional[TaskStatus] = None,
	task_type: TaskType = TaskType.IMPLEMENT_FUNCTION,
	description: Optional[str] = None,
) -> Task:
	"""Create a Task with sensible defaults."""
	return Task(
		id=task_id,
		description=description or f"Implement {task_id}",
		task_type=task_type,
		dependencies=dependencies or [],
		status=status or TaskStatus.pending(),
	)


def make_draft(task_id: str, dependencies: Optional[list[str]] = None, **kwargs) -> TaskDraft:
	return TaskDraft(
		id=task_id,
		description=kwargs.pop("description", f"Implement {task_id}"),
		dependencies=dependencies or [],
		**kwargs,
	)


def success_outcome(task: Task) -> GenerationOutcome:
	return GenerationOutcome(
		task_id=task.id,
		success=True,
		changed_files=[ChangedFile(relative_path=f"src/{task.id}.rs", content=f"// {task.id}\n")],
		summary=f"Generated {task.id}",
	)


class FakeDecomposer:
	"""Returns a fixed batch of drafts, or raises."""

	def __init__(self, drafts: Optional[list[TaskDraft]] = None, error: Optional[Exception] = None):
		self.drafts = drafts or []
		self.error = error
		self.calls: list[str] = []

	async def decompose(self, spec_ref, project_root, settings):
		self.calls.append(spec_ref)
		if self.error:
			raise self.error
		return list(self.drafts)


class FakeContextPreparer:
	"""Returns fixed context strings, or raises."""

	def __init__(self, error: Optional[Exception] = None):
		self.error = error
		self.calls: list[str] = []

	async def prepare(self, task, project_root, settings):
		self.calls.append(task.id)
		if self.error:
			raise self.error
		return "fn existing() {}", "# Architecture"


class FakeGenerator:
	"""
	Generator driven by a per-task script of True/False results.

	Unscripted calls succeed. Records (task_id, attempt_number, settings).
	"""

	def __init__(self, script: Optional[dict[str, list[bool]]] = None, error: Optional[Exception] = None):
		self.script = {k: list(v) for k, v in (script or {}).items()}
		self.error = error
		self.calls: list[tuple[str, int]] = []
		self.settings_seen: list[ProjectSettings] = []

	async def generate(self, task, code_context, reference_context, settings):
		self.calls.append((task.id, task.current_attempt_number))
		self.settings_seen.append(settings)
		if self.error:
			raise self.error
		results = self.script.get(task.id)
		ok = results.pop(0) if results else True
		if ok:
			return success_outcome(task)
		return GenerationOutcome(task_id=task.id, success=False, error="Model returned no code")


class FakeWorkspace:
	"""
	Workspace with scripted stage exit codes.

	``stage_exits`` maps a stage name to exit codes consumed one per call;
	exhausted or unscripted stages exit 0. Failing stages print
	STDERR_LINES on stderr.
	``stage_errors`` are raised once each from run_stage.
	"""

	def __init__(
		self,
		stage_exits: Optional[dict[str, list[int]]] = None,
		missing_stages: tuple[str, ...] = (),
		apply_error: Optional[Exception] = None,
		stage_errors: Optional[dict[str, Exception]] = None,
	):
		self.stage_exits = {k: list(v) for k, v in (stage_exits or {}).items()}
		self.missing_stages = missing_stages
		self.apply_error = apply_error
		self.stage_errors = dict(stage_errors or {})
		self.applied: list[GenerationOutcome] = []
		self.stage_calls: list[str] = []
		self.commits: list[tuple[str, Optional[str]]] = []

	async def apply(self, project_root, outcome):
		if self.apply_error:
			raise self.apply_error
		self.applied.append(outcome)
		return [f.relative_path for f in outcome.changed_files]

	async def run_stage(self, name, project_root, on_output_line=None):
		self.stage_calls.append(name)
		if name in self.missing_stages:
			raise StageSpawnError(name, "Command not found: cargo")
		if name in self.stage_errors:
			raise self.stage_errors.pop(name)
		codes = self.stage_exits.get(name)
		code = codes.pop(0) if codes else 0
		stdout = f"{name} running\n"
		stderr = "" if code == 0 else "\n".join(STDERR_LINES) + "\n"
		if on_output_line:
			on_output_line(f"[{name}:stdout] {name} running")
		return StageOutput(stdout, stderr, code)

	async def commit(self, project_root, message, task_id=None):
		self.commits.append((message, task_id))
		return "abc123"


class FakeIndex:
	"""Knowledge index returning canned results."""

	def __init__(self, results: Optional[list[SearchResult]] = None, refresh_error: Optional[Exception] = None):
		self.results = results or []
		self.refresh_error = refresh_error
		self.refreshed: list[str] = []
		self.queries: list[tuple[str, Optional[str]]] = []

	async def refresh(self, project_root, settings):
		self.refreshed.append(project_root)
		if self.refresh_error:
			raise self.refresh_error

	async def search(self, query, limit, type_filter, project_root):
		self.queries.append((query, type_filter))
		hits = [r for r in self.results if type_filter is None or r.doc_type == type_filter]
		return hits[:limit]


class FakeChannel:
	"""Records escalation requests."""

	def __init__(self):
		self.requests: list[tuple[str, str]] = []

	async def request_input(self, task_id, prompt):
		self.requests.append((task_id, prompt))


def make_orchestrator(
	drafts: Optional[list[TaskDraft]] = None,
	workspace: Optional[FakeWorkspace] = None,
	generator: Optional[FakeGenerator] = None,
	max_attempts: int = 3,
	stages: Optional[list[str]] = None,
	**kwargs,
) -> Orchestrator:
	"""Orchestrator wired to fakes; stages default to build + test."""
	settings = ProjectSettings(
		max_self_correction_attempts=max_attempts,
		verification_stages=stages or ["build", "test"],
	)
	return Orchestrator(
		decomposer=kwargs.pop("decomposer", FakeDecomposer(drafts)),
		context_preparer=kwargs.pop("context_preparer", FakeContextPreparer()),
		generator=generator or FakeGenerator(),
		workspace=workspace or FakeWorkspace(),
		settings=settings,
		**kwargs,
	)
