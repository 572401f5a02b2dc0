"""Tests for task selection."""

import random

from pilot_orchestrator.models import ProjectStatus, TaskStatus, TaskStatusKind, TaskType
from pilot_orchestrator.orchestrator.selector import (
	eligible_tasks,
	has_budget,
	select_next_task,
	setup_first,
)
from tests.helpers import make_task

READY = ProjectStatus.ready_to_execute()


class TestEligibility:
	def test_first_pending_without_dependencies(self):
		tasks = [make_task("T1"), make_task("T2")]
		assert select_next_task(tasks, READY, 3).task.id == "T1"

	def test_skips_unmet_dependencies(self):
		tasks = [make_task("T2", ["T1"]), make_task("T1")]
		assert select_next_task(tasks, READY, 3).task.id == "T1"

	def test_insertion_order_tie_break(self):
		"""T2's dependency is done, so it wins over the later T3."""
		tasks = [
			make_task("T1", status=TaskStatus.completed_success()),
			make_task("T2", ["T1"]),
			make_task("T3"),
		]
		assert select_next_task(tasks, READY, 3).task.id == "T2"

	def test_blocked_dependency_falls_through(self):
		tasks = [
			make_task("T1", status=TaskStatus.blocked_by_error("build failed")),
			make_task("T2", ["T1"]),
			make_task("T3"),
		]
		assert select_next_task(tasks, READY, 3).task.id == "T3"

	def test_ready_status_is_eligible(self):
		tasks = [make_task("T1", status=TaskStatus.ready())]
		assert select_next_task(tasks, READY, 3).task.id == "T1"

	def test_nothing_eligible(self):
		tasks = [
			make_task("T1", status=TaskStatus.completed_success()),
			make_task("T2", status=TaskStatus.failed()),
		]
		selection = select_next_task(tasks, READY, 3)
		assert selection.task is None
		assert not selection.needs_escalation

	def test_never_returns_task_with_unmet_dependencies(self):
		rng = random.Random(7)
		kinds = [TaskStatus.pending(), TaskStatus.completed_success(), TaskStatus.failed(), TaskStatus.ready()]
		for _ in range(200):
			tasks = []
			for i in range(6):
				deps = [f"T{j}" for j in range(i) if rng.random() < 0.4]
				tasks.append(make_task(f"T{i}", deps, status=rng.choice(kinds)))
			selection = select_next_task(tasks, READY, 3)
			if selection.task is not None:
				by_id = {t.id: t for t in tasks}
				for dep in selection.task.dependencies:
					assert by_id[dep].status.kind == TaskStatusKind.COMPLETED_SUCCESS
				assert selection.task in eligible_tasks(tasks)

	def test_does_not_mutate_tasks(self):
		tasks = [make_task("T1"), make_task("T2", ["T1"])]
		before = [t.model_dump() for t in tasks]
		select_next_task(tasks, READY, 3)
		assert [t.model_dump() for t in tasks] == before


class TestSelfCorrecting:
	def test_only_the_correcting_task_is_offered(self):
		blocked = make_task("T2", status=TaskStatus.blocked_by_error("tests failed"))
		blocked.begin_attempt()
		tasks = [make_task("T1"), blocked]
		selection = select_next_task(tasks, ProjectStatus.self_correcting("T2"), 3)
		assert selection.task.id == "T2"

	def test_budget_exhausted_escalates(self):
		task = make_task("T1", status=TaskStatus.blocked_by_error("tests failed"))
		task.begin_attempt()
		task.begin_attempt()
		selection = select_next_task([task], ProjectStatus.self_correcting("T1"), 1)
		assert selection.task is None
		assert selection.needs_escalation
		assert "T1" in selection.escalation
		assert "2 attempts" in selection.escalation

	def test_missing_task_escalates(self):
		selection = select_next_task([make_task("T1")], ProjectStatus.self_correcting("T9"), 3)
		assert selection.needs_escalation

	def test_budget_counts_first_run_plus_retries(self):
		task = make_task("T1")
		assert has_budget(task, 0)
		task.begin_attempt()
		assert not has_budget(task, 0)
		assert has_budget(task, 1)
		task.begin_attempt()
		assert not has_budget(task, 1)


class TestPriority:
	def test_setup_first_reorders_stably(self):
		tasks = [
			make_task("impl", task_type=TaskType.IMPLEMENT_FUNCTION),
			make_task("test", task_type=TaskType.WRITE_UNIT_TEST),
			make_task("setup", task_type=TaskType.SETUP_NEW_CRATE),
			make_task("impl2", task_type=TaskType.IMPLEMENT_FUNCTION),
		]
		assert select_next_task(tasks, READY, 3, priority=setup_first).task.id == "setup"
		tasks[2].status = TaskStatus.completed_success()
		assert select_next_task(tasks, READY, 3, priority=setup_first).task.id == "impl"

	def test_priority_never_overrides_dependencies(self):
		tasks = [
			make_task("impl"),
			make_task("setup", ["impl"], task_type=TaskType.SETUP_NEW_CRATE),
		]
		assert select_next_task(tasks, READY, 3, priority=setup_first).task.id == "impl"
