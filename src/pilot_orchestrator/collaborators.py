"""
Collaborator contracts used by the orchestration engine.

The engine never talks to a model, the filesystem, git or a search
index directly; it goes through these interfaces. Reference
implementations live in ``workspace``, ``knowledge`` and ``plans``.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .config import ProjectSettings
from .models import GenerationOutcome, LogEntry, Task, TaskDraft

OutputLineCallback = Callable[[str], None]
LogObserver = Callable[[LogEntry], None]


@dataclass
class StageOutput:
	"""Raw output of one verification stage."""
	stdout: str
	stderr: str
	exit_code: int


@dataclass
class SearchResult:
	"""A knowledge index hit."""
	relative_path: str
	doc_type: str
	score: float
	snippet: str = ""


@runtime_checkable
class SpecDecomposer(Protocol):
	async def decompose(
		self,
		spec_ref: str,
		project_root: str,
		settings: ProjectSettings,
	) -> list[TaskDraft]:
		...


@runtime_checkable
class ContextPreparer(Protocol):
	async def prepare(
		self,
		task: Task,
		project_root: str,
		settings: ProjectSettings,
	) -> tuple[str, str]:
		"""Return (code_context, reference_context)."""
		...


@runtime_checkable
class CodeGenerator(Protocol):
	async def generate(
		self,
		task: Task,
		code_context: str,
		reference_context: str,
		settings: ProjectSettings,
	) -> GenerationOutcome:
		...


@runtime_checkable
class Workspace(Protocol):
	async def apply(self, project_root: str, outcome: GenerationOutcome) -> list[str]:
		"""Apply generated file changes; return the paths touched."""
		...

	async def run_stage(
		self,
		name: str,
		project_root: str,
		on_output_line: Optional[OutputLineCallback] = None,
	) -> StageOutput:
		...

	async def commit(self, project_root: str, message: str, task_id: Optional[str] = None) -> Any:
		...


@runtime_checkable
class KnowledgeIndex(Protocol):
	async def refresh(self, project_root: str, settings: ProjectSettings) -> Any:
		...

	async def search(
		self,
		query: str,
		limit: int,
		type_filter: Optional[str],
		project_root: str,
	) -> list[SearchResult]:
		...


@runtime_checkable
class HumanEscalationChannel(Protocol):
	async def request_input(self, task_id: str, prompt: str) -> None:
		...
