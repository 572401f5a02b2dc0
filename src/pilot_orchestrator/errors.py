"""
Error taxonomy for the orchestration engine.

Structural errors (unknown dependency, duplicate id, cycles) reject a whole
decomposition batch. Per-task runtime failures are recorded as task state
instead of being raised out of the loop.
"""

from typing import Optional


class OrchestratorError(Exception):
	"""Base class for all orchestration errors."""
	pass


class ConfigurationError(OrchestratorError):
	"""Missing or invalid configuration (e.g. no project loaded)."""
	pass


class InvalidStateError(OrchestratorError):
	"""Raised when an operation is attempted in the wrong project state."""

	def __init__(self, current_state: str, expected_state: str, operation: str):
		self.current_state = current_state
		self.expected_state = expected_state
		self.operation = operation
		super().__init__(
			f"Invalid state for operation: current state {current_state}, "
			f"expected {expected_state} for {operation}"
		)


class TaskNotFoundError(OrchestratorError):
	"""An operation named a task id the session does not hold."""

	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task not found: {task_id}")


class TaskGraphError(OrchestratorError):
	"""A decomposition batch violates a task graph invariant."""
	pass


class TaskDependencyError(TaskGraphError):
	"""A task references a dependency id that is not in the batch."""

	def __init__(self, task_id: str, dependency_id: str):
		self.task_id = task_id
		self.dependency_id = dependency_id
		super().__init__(f"Task {task_id} missing dependency {dependency_id}")


class DuplicateTaskError(TaskGraphError):
	"""Two tasks in a batch share the same id."""

	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Duplicate task id: {task_id}")


class DependencyCycleError(TaskGraphError):
	"""The dependency or parent graph contains a cycle."""

	def __init__(self, task_ids: list[str]):
		self.task_ids = task_ids
		super().__init__(f"Dependency cycle among tasks: {', '.join(task_ids)}")


class VerificationError(OrchestratorError):
	"""Pipeline-level verification failure (not a failing stage)."""

	def __init__(self, stage: str, details: str):
		self.stage = stage
		self.details = details
		super().__init__(f"Verification failed: {stage} - {details}")


class StageSpawnError(OrchestratorError):
	"""A verification stage could not be started (tooling missing)."""

	def __init__(self, stage: str, details: str):
		self.stage = stage
		self.details = details
		super().__init__(f"Could not spawn stage '{stage}': {details}")


class GenerationError(OrchestratorError):
	"""A collaborator reported a generation failure."""

	def __init__(self, message: str, task_id: Optional[str] = None):
		self.task_id = task_id
		super().__init__(message)


class HumanInputRequired(OrchestratorError):
	"""The retry budget is exhausted and a human must respond."""

	def __init__(self, prompt: str, task_id: Optional[str] = None):
		self.prompt = prompt
		self.task_id = task_id
		super().__init__(f"Human input required: {prompt}")


class WorkspaceError(OrchestratorError):
	"""A git or filesystem operation on the workspace failed."""
	pass
