"""
Task graph admission.

Decomposition output is validated as a whole before any task enters the
session: ids must be unique, every dependency and parent id must resolve
within the batch, and neither the dependency graph nor the parent
hierarchy may contain a cycle. Any violation rejects the entire batch.
"""

import logging
from collections import deque

from ..errors import DependencyCycleError, DuplicateTaskError, TaskDependencyError
from ..models import Task, TaskDraft, TaskStatus

logger = logging.getLogger(__name__)


def admit_drafts(drafts: list[TaskDraft]) -> list[Task]:
	"""
	Validate a decomposition batch and convert it into session tasks.

	Args:
		drafts: Task drafts in decomposition order

	Returns:
		Tasks with status PENDING, in the same order, with sub_task_ids
		filled from the parent links

	Raises:
		DuplicateTaskError, TaskDependencyError, DependencyCycleError
	"""
	ids: set[str] = set()
	for draft in drafts:
		if draft.id in ids:
			raise DuplicateTaskError(draft.id)
		ids.add(draft.id)

	for draft in drafts:
		for dep_id in draft.dependencies:
			if dep_id not in ids:
				raise TaskDependencyError(draft.id, dep_id)
		if draft.parent_id is not None and draft.parent_id not in ids:
			raise TaskDependencyError(draft.id, draft.parent_id)

	_check_dependency_cycles(drafts)
	_check_parent_cycles(drafts)

	children: dict[str, list[str]] = {d.id: [] for d in drafts}
	for draft in drafts:
		if draft.parent_id is not None:
			children[draft.parent_id].append(draft.id)

	tasks = [
		Task(
			id=draft.id,
			parent_id=draft.parent_id,
			description=draft.description,
			task_type=draft.task_type,
			status=TaskStatus.pending(),
			dependencies=list(dict.fromkeys(draft.dependencies)),
			sub_task_ids=children[draft.id],
		)
		for draft in drafts
	]
	logger.debug(f"Admitted task graph with {len(tasks)} tasks")
	return tasks


def _check_dependency_cycles(drafts: list[TaskDraft]) -> None:
	"""Kahn's algorithm; whatever cannot be ordered is on or behind a cycle."""
	in_degree = {d.id: 0 for d in drafts}
	dependents: dict[str, list[str]] = {d.id: [] for d in drafts}
	for draft in drafts:
		for dep_id in set(draft.dependencies):
			in_degree[draft.id] += 1
			dependents[dep_id].append(draft.id)

	queue = deque(task_id for task_id, degree in in_degree.items() if degree == 0)
	ordered = 0
	while queue:
		task_id = queue.popleft()
		ordered += 1
		for dependent in dependents[task_id]:
			in_degree[dependent] -= 1
			if in_degree[dependent] == 0:
				queue.append(dependent)

	if ordered != len(drafts):
		stuck = [d.id for d in drafts if in_degree[d.id] > 0]
		raise DependencyCycleError(stuck)


def _check_parent_cycles(drafts: list[TaskDraft]) -> None:
	parents = {d.id: d.parent_id for d in drafts}
	for start in parents:
		seen = {start}
		current = parents[start]
		while current is not None:
			if current in seen:
				raise DependencyCycleError(sorted(seen))
			seen.add(current)
			current = parents[current]


def topological_order(tasks: list[Task]) -> list[str]:
	"""Return task ids in a dependency-respecting order, ties by list order."""
	remaining = {t.id: set(t.dependencies) for t in tasks}
	order: list[str] = []
	while remaining:
		ready = [t.id for t in tasks if t.id in remaining and not remaining[t.id]]
		if not ready:
			raise DependencyCycleError(sorted(remaining))
		for task_id in ready:
			del remaining[task_id]
			order.append(task_id)
		for deps in remaining.values():
			deps.difference_update(ready)
	return order
