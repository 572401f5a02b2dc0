"""
Task Graph Models - Pydantic schemas for orchestration state.

Defines tasks, their execution attempts, and the project session that
holds all mutable orchestration state for one loaded project. Status
values that carry a payload (blocked reason, self-correcting task id,
escalation message) are tagged variants: an enum ``kind`` plus the
payload fields that kind allows.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Session log ring buffer size
LOG_CAPACITY = 200


class TaskType(str, Enum):
	"""Kind of work a task represents."""
	ANALYZE_SPEC = "analyze_spec"
	DECOMPOSE_SPEC = "decompose_spec"
	DEFINE_STRUCT = "define_struct"
	IMPLEMENT_FUNCTION = "implement_function"
	WRITE_UNIT_TEST = "write_unit_test"
	WRITE_INTEGRATION_TEST = "write_integration_test"
	WRITE_E2E_TEST = "write_e2e_test"
	REFACTOR_CODE = "refactor_code"
	UPDATE_FILE_DOCUMENTATION = "update_file_documentation"
	UPDATE_CRATE_DOCUMENTATION = "update_crate_documentation"
	SETUP_NEW_CRATE = "setup_new_crate"
	RUN_VERIFICATION_STAGE = "run_verification_stage"
	REQUEST_HUMAN_INPUT = "request_human_input"
	GIT_COMMIT = "git_commit"
	GIT_PUSH = "git_push"
	UPDATE_FILE_INDEX = "update_file_index"
	QUALIFY_CRATE = "qualify_crate"


class TaskStatusKind(str, Enum):
	"""Discriminator for TaskStatus."""
	PENDING = "pending"
	READY = "ready"
	IN_PROGRESS = "in_progress"
	BLOCKED_BY_DEPENDENCY = "blocked_by_dependency"
	BLOCKED_BY_ERROR = "blocked_by_error"
	AWAITING_HUMAN_CLARIFICATION = "awaiting_human_clarification"
	COMPLETED_SUCCESS = "completed_success"
	COMPLETED_WITH_WARNINGS = "completed_with_warnings"
	FAILED = "failed"


TERMINAL_TASK_KINDS = frozenset({
	TaskStatusKind.COMPLETED_SUCCESS,
	TaskStatusKind.COMPLETED_WITH_WARNINGS,
	TaskStatusKind.FAILED,
})


class TaskStatus(BaseModel):
	"""Status of a task. Only BLOCKED_BY_ERROR carries a reason."""
	model_config = ConfigDict(frozen=True)

	kind: TaskStatusKind
	reason: Optional[str] = None

	@model_validator(mode="after")
	def _check_payload(self) -> "TaskStatus":
		if self.kind == TaskStatusKind.BLOCKED_BY_ERROR:
			if self.reason is None:
				raise ValueError("blocked_by_error requires a reason")
		elif self.reason is not None:
			raise ValueError(f"{self.kind.value} does not carry a reason")
		return self

	@classmethod
	def pending(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.PENDING)

	@classmethod
	def ready(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.READY)

	@classmethod
	def in_progress(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.IN_PROGRESS)

	@classmethod
	def blocked_by_dependency(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.BLOCKED_BY_DEPENDENCY)

	@classmethod
	def blocked_by_error(cls, reason: str) -> "TaskStatus":
		return cls(kind=TaskStatusKind.BLOCKED_BY_ERROR, reason=reason)

	@classmethod
	def awaiting_human_clarification(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.AWAITING_HUMAN_CLARIFICATION)

	@classmethod
	def completed_success(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.COMPLETED_SUCCESS)

	@classmethod
	def completed_with_warnings(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.COMPLETED_WITH_WARNINGS)

	@classmethod
	def failed(cls) -> "TaskStatus":
		return cls(kind=TaskStatusKind.FAILED)

	@property
	def is_terminal(self) -> bool:
		return self.kind in TERMINAL_TASK_KINDS

	def __str__(self) -> str:
		if self.reason is not None:
			return f"{self.kind.value}({self.reason})"
		return self.kind.value


class ProjectStatusKind(str, Enum):
	"""Discriminator for ProjectStatus."""
	UNLOADED = "unloaded"
	IDLE = "idle"
	PLANNING = "planning"
	READY_TO_EXECUTE = "ready_to_execute"
	EXECUTING_TASK = "executing_task"
	AWAITING_HUMAN_INPUT = "awaiting_human_input"
	SELF_CORRECTING = "self_correcting"
	PAUSED = "paused"
	ERROR = "error"
	COMPLETED_GOAL = "completed_goal"


class ProjectStatus(BaseModel):
	"""
	Session-level status.

	SELF_CORRECTING carries the task being retried, AWAITING_HUMAN_INPUT
	carries the escalated task and the prompt, ERROR carries a message.
	"""
	model_config = ConfigDict(frozen=True)

	kind: ProjectStatusKind
	task_id: Optional[str] = None
	message: Optional[str] = None

	@model_validator(mode="after")
	def _check_payload(self) -> "ProjectStatus":
		if self.kind == ProjectStatusKind.SELF_CORRECTING and self.task_id is None:
			raise ValueError("self_correcting requires a task_id")
		if self.kind in (ProjectStatusKind.AWAITING_HUMAN_INPUT, ProjectStatusKind.ERROR):
			if self.message is None:
				raise ValueError(f"{self.kind.value} requires a message")
		return self

	@classmethod
	def unloaded(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.UNLOADED)

	@classmethod
	def idle(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.IDLE)

	@classmethod
	def planning(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.PLANNING)

	@classmethod
	def ready_to_execute(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.READY_TO_EXECUTE)

	@classmethod
	def executing_task(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.EXECUTING_TASK)

	@classmethod
	def awaiting_human_input(cls, message: str, task_id: Optional[str] = None) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.AWAITING_HUMAN_INPUT, message=message, task_id=task_id)

	@classmethod
	def self_correcting(cls, task_id: str) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.SELF_CORRECTING, task_id=task_id)

	@classmethod
	def paused(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.PAUSED)

	@classmethod
	def error(cls, message: str) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.ERROR, message=message)

	@classmethod
	def completed_goal(cls) -> "ProjectStatus":
		return cls(kind=ProjectStatusKind.COMPLETED_GOAL)

	def __str__(self) -> str:
		payload = [p for p in (self.task_id, self.message) if p is not None]
		if payload:
			return f"{self.kind.value}({', '.join(payload)})"
		return self.kind.value


class FileAction(str, Enum):
	"""What to do with a generated file."""
	CREATED = "created"
	MODIFIED = "modified"
	DELETED = "deleted"


class ChangedFile(BaseModel):
	"""A single file produced (or removed) by the code generator."""
	relative_path: str = Field(description="Path relative to the code root")
	content: str = Field(default="")
	action: FileAction = Field(default=FileAction.MODIFIED)


class GenerationOutcome(BaseModel):
	"""Result reported by the code generator for one attempt."""
	task_id: str
	success: bool
	changed_files: list[ChangedFile] = Field(default_factory=list)
	generated_docs: list[ChangedFile] = Field(default_factory=list)
	notes: Optional[str] = None
	error: Optional[str] = None
	summary: Optional[str] = Field(default=None, description="Short summary of generated content")


class TaskAttempt(BaseModel):
	"""
	One execution record for a task.

	Generation fields are set when the attempt is appended; verification
	fields are filled in after the attempt runs. An exit code of -1 means
	verification was skipped.
	"""
	attempt_number: int
	generated_summary: Optional[str] = None
	verification_stdout: str = ""
	verification_stderr: str = ""
	verification_exit_code: int = 0
	error_summary: Optional[str] = None
	generator_notes: Optional[str] = None
	started_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class TaskDraft(BaseModel):
	"""A task as produced by specification decomposition, before admission."""
	id: str
	parent_id: Optional[str] = None
	description: str
	task_type: TaskType = TaskType.IMPLEMENT_FUNCTION
	dependencies: list[str] = Field(default_factory=list)


class Task(BaseModel):
	"""A unit of generation work."""
	id: str = Field(description="Unique, stable task identifier")
	parent_id: Optional[str] = Field(default=None)
	description: str = Field(description="What needs to be done")
	task_type: TaskType = Field(default=TaskType.IMPLEMENT_FUNCTION)
	status: TaskStatus = Field(default_factory=TaskStatus.pending)
	context_summary: str = Field(default="Awaiting context preparation")
	dependencies: list[str] = Field(default_factory=list, description="Task ids that must complete first")
	sub_task_ids: list[str] = Field(default_factory=list)
	attempts: list[TaskAttempt] = Field(default_factory=list)
	current_attempt_number: int = Field(default=0)
	retry_window_start: int = Field(
		default=0,
		description="Attempt counter value when the current retry window opened",
	)
	last_generated_output: Optional[GenerationOutcome] = Field(default=None)
	human_review_notes: Optional[str] = Field(default=None)

	@property
	def last_attempt(self) -> Optional[TaskAttempt]:
		return self.attempts[-1] if self.attempts else None

	@property
	def attempts_in_window(self) -> int:
		"""Attempts made since the last human reset."""
		return self.current_attempt_number - self.retry_window_start

	def begin_attempt(self) -> TaskAttempt:
		"""Open a new attempt. The first execution is attempt 1."""
		self.current_attempt_number += 1
		attempt = TaskAttempt(attempt_number=self.current_attempt_number)
		self.attempts.append(attempt)
		return attempt


class LogLevel(str, Enum):
	"""Severity of a session log entry."""
	INFO = "info"
	WARN = "warn"
	ERROR = "error"
	DEBUG = "debug"
	AGENT_TRACE = "agent_trace"
	HUMAN_INPUT = "human_input"
	LLM_TRACE = "llm_trace"


class LogEntry(BaseModel):
	"""A structured, user-visible record of a transition or stage result."""
	id: str = Field(default_factory=lambda: str(uuid.uuid4()))
	timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
	level: LogLevel = LogLevel.INFO
	component: str
	message: str
	task_id: Optional[str] = None
	details: Optional[dict[str, Any]] = None


class ApprovalStatus(str, Enum):
	"""Approval state of an external dependency."""
	PENDING = "pending"
	APPROVED = "approved"
	REJECTED = "rejected"
	NEEDS_MANUAL_REVIEW = "needs_manual_review"


class ExternalDependency(BaseModel):
	"""A third-party package the generated project may use."""
	name: str
	version: Optional[str] = None
	approval_status: ApprovalStatus = ApprovalStatus.PENDING
	documentation_summary: Optional[str] = None
	source_url: Optional[str] = None
	last_qualified_at: Optional[str] = None


class ProjectSession(BaseModel):
	"""
	The single mutable root of orchestration state for a loaded project.

	Guarded by the orchestrator's session lock; everything outside the
	lock works on detached copies.
	"""
	project_path: Optional[str] = None
	status: ProjectStatus = Field(default_factory=ProjectStatus.unloaded)
	active_spec: Optional[str] = None
	tasks: list[Task] = Field(default_factory=list)
	current_task_id: Optional[str] = None
	logs: list[LogEntry] = Field(default_factory=list)
	known_dependencies: list[ExternalDependency] = Field(default_factory=list)

	def append_log(self, entry: LogEntry) -> None:
		"""Append to the ring buffer, evicting the oldest entries first."""
		while len(self.logs) >= LOG_CAPACITY:
			self.logs.pop(0)
		self.logs.append(entry)

	def get_task(self, task_id: str) -> Optional[Task]:
		for task in self.tasks:
			if task.id == task_id:
				return task
		return None

	def get_dependency(self, name: str) -> Optional[ExternalDependency]:
		for dep in self.known_dependencies:
			if dep.name == name:
				return dep
		return None

	def reset(self, project_path: str) -> None:
		"""Re-initialize for a (re)loaded project."""
		self.project_path = project_path
		self.status = ProjectStatus.idle()
		self.active_spec = None
		self.tasks.clear()
		self.logs.clear()
		self.current_task_id = None

	def all_completed(self) -> bool:
		return all(t.status.kind == TaskStatusKind.COMPLETED_SUCCESS for t in self.tasks)

	def get_progress(self) -> dict:
		"""Calculate overall progress."""
		total = len(self.tasks)
		completed = len([t for t in self.tasks if t.status.kind == TaskStatusKind.COMPLETED_SUCCESS])
		failed = len([t for t in self.tasks if t.status.kind == TaskStatusKind.FAILED])
		return {
			"total_tasks": total,
			"completed_tasks": completed,
			"failed_tasks": failed,
			"percent_complete": round(completed / total * 100, 1) if total > 0 else 0,
		}
