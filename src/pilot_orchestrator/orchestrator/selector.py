"""
Task Selector - picks the next runnable task.

A task is eligible when its status is PENDING or READY and every one of
its dependencies is COMPLETED_SUCCESS. While the session is
self-correcting a task, only that task may be offered, and only while
its attempt budget lasts.

Ties are broken by list order (decomposition order). An optional
priority key reorders candidates stably without changing the contract.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from ..models import ProjectStatus, ProjectStatusKind, Task, TaskStatusKind, TaskType

RUNNABLE_KINDS = frozenset({TaskStatusKind.PENDING, TaskStatusKind.READY})

PriorityKey = Callable[[Task], int]


@dataclass
class Selection:
	"""Outcome of a selection pass."""
	task: Optional[Task] = None
	escalation: Optional[str] = None

	@property
	def needs_escalation(self) -> bool:
		return self.escalation is not None


# Lower rank runs first
SETUP_FIRST_RANKS: dict[TaskType, int] = {
	TaskType.ANALYZE_SPEC: 0,
	TaskType.DECOMPOSE_SPEC: 0,
	TaskType.SETUP_NEW_CRATE: 1,
	TaskType.QUALIFY_CRATE: 1,
	TaskType.DEFINE_STRUCT: 2,
	TaskType.IMPLEMENT_FUNCTION: 3,
	TaskType.REFACTOR_CODE: 3,
	TaskType.WRITE_UNIT_TEST: 4,
	TaskType.WRITE_INTEGRATION_TEST: 4,
	TaskType.WRITE_E2E_TEST: 4,
}


def setup_first(task: Task) -> int:
	"""Priority key: setup, then definitions, implementation, tests, the rest."""
	return SETUP_FIRST_RANKS.get(task.task_type, 5)


def max_total_attempts(max_self_correction_attempts: int) -> int:
	"""The first execution plus the configured number of retries."""
	return max_self_correction_attempts + 1


def has_budget(task: Task, max_self_correction_attempts: int) -> bool:
	return task.attempts_in_window < max_total_attempts(max_self_correction_attempts)


def dependencies_met(task: Task, by_id: dict[str, Task]) -> bool:
	for dep_id in task.dependencies:
		dep = by_id.get(dep_id)
		if dep is None or dep.status.kind != TaskStatusKind.COMPLETED_SUCCESS:
			return False
	return True


def eligible_tasks(tasks: list[Task]) -> list[Task]:
	"""All tasks that could run now, in list order."""
	by_id = {t.id: t for t in tasks}
	return [
		t for t in tasks
		if t.status.kind in RUNNABLE_KINDS and dependencies_met(t, by_id)
	]


def select_next_task(
	tasks: list[Task],
	session_status: ProjectStatus,
	max_self_correction_attempts: int,
	priority: Optional[PriorityKey] = None,
) -> Selection:
	"""
	Pick at most one task to run next.

	Args:
		tasks: Session task list (not modified)
		session_status: Current project status
		max_self_correction_attempts: Configured retry budget
		priority: Optional key; lower values run first, ties keep list order

	Returns:
		Selection with the chosen task, or an escalation message when a
		self-correcting task has no budget left
	"""
	if session_status.kind == ProjectStatusKind.SELF_CORRECTING:
		task_id = session_status.task_id
		task = next((t for t in tasks if t.id == task_id), None)
		if task is None:
			return Selection(escalation=f"Task {task_id} failed self-correction: task not found.")
		if not has_budget(task, max_self_correction_attempts):
			return Selection(
				escalation=(
					f"Task {task_id} failed self-correction after "
					f"{task.attempts_in_window} attempts."
				)
			)
		return Selection(task=task)

	candidates = eligible_tasks(tasks)
	if not candidates:
		return Selection()
	if priority is not None:
		# sorted() is stable, so list order still breaks ties
		candidates = sorted(candidates, key=priority)
	return Selection(task=candidates[0])
