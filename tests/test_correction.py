"""Tests for the self-correction policy."""

import pytest

from pilot_orchestrator.errors import VerificationError
from pilot_orchestrator.models import GenerationOutcome, ProjectStatusKind, TaskStatusKind
from pilot_orchestrator.orchestrator.correction import (
	DEFAULT_GENERATION_ERROR,
	CorrectionAction,
	SelfCorrectionPolicy,
	summarize_verification_failure,
)
from pilot_orchestrator.orchestrator.verifier import PipelineResult, StageResult, StageStatus
from tests.helpers import STDERR_LINES, make_task, success_outcome


def failed_pipeline(exit_code: int = 1) -> PipelineResult:
	stderr = "\n".join(STDERR_LINES)
	return PipelineResult(
		stages=[
			StageResult(name="build", status=StageStatus.PASSED),
			StageResult(name="test", status=StageStatus.FAILED, stderr=stderr, exit_code=exit_code),
		],
		combined_stderr="\n--- BUILD STDERR ---\n\n--- TEST STDERR ---\n" + stderr,
		exit_code=exit_code,
	)


def passed_pipeline() -> PipelineResult:
	return PipelineResult(stages=[StageResult(name="build", status=StageStatus.PASSED)])


def started_task(task_id: str = "T1", attempts: int = 1):
	task = make_task(task_id)
	for _ in range(attempts):
		task.begin_attempt()
	return task


class TestEvaluate:
	def test_success_completes(self):
		task = started_task()
		decision = SelfCorrectionPolicy(3).evaluate(task, success_outcome(task), passed_pipeline())
		assert decision.action == CorrectionAction.COMPLETE
		assert decision.next_status.kind == TaskStatusKind.COMPLETED_SUCCESS
		assert decision.session_status is None

	def test_verification_failure_retries_with_stderr_head(self):
		task = started_task()
		decision = SelfCorrectionPolicy(3).evaluate(task, success_outcome(task), failed_pipeline())
		assert decision.action == CorrectionAction.RETRY
		assert decision.next_status.kind == TaskStatusKind.BLOCKED_BY_ERROR
		reason = decision.next_status.reason
		assert reason.startswith("Verification failed (code 1): ")
		for line in STDERR_LINES[:5]:
			assert line in reason
		assert STDERR_LINES[5] not in reason
		assert "--- TEST STDERR ---" not in reason
		assert decision.session_status.kind == ProjectStatusKind.SELF_CORRECTING
		assert decision.session_status.task_id == "T1"

	def test_generation_failure_ignores_verification(self):
		task = started_task()
		outcome = GenerationOutcome(task_id="T1", success=False, error="Model timed out")
		decision = SelfCorrectionPolicy(3).evaluate(task, outcome, passed_pipeline())
		assert decision.next_status.kind == TaskStatusKind.BLOCKED_BY_ERROR
		assert decision.next_status.reason == "Model timed out"

	def test_generation_failure_default_message(self):
		task = started_task()
		outcome = GenerationOutcome(task_id="T1", success=False)
		decision = SelfCorrectionPolicy(3).evaluate(task, outcome)
		assert decision.next_status.reason == DEFAULT_GENERATION_ERROR

	def test_budget_exhausted_escalates(self):
		task = started_task(attempts=2)
		decision = SelfCorrectionPolicy(1).evaluate(task, success_outcome(task), failed_pipeline())
		assert decision.action == CorrectionAction.ESCALATE
		assert decision.next_status.kind == TaskStatusKind.FAILED
		assert decision.session_status.kind == ProjectStatusKind.AWAITING_HUMAN_INPUT
		assert decision.escalation_prompt == "Task T1 failed after 2 attempts. Needs review."

	def test_zero_retries_escalates_on_first_failure(self):
		task = started_task()
		decision = SelfCorrectionPolicy(0).evaluate(task, success_outcome(task), failed_pipeline())
		assert decision.action == CorrectionAction.ESCALATE

	def test_unrunnable_pipeline_escalates_immediately(self):
		task = started_task()
		result = PipelineResult.from_error(VerificationError("clippy", "Command not found: cargo"))
		decision = SelfCorrectionPolicy(3).evaluate(task, success_outcome(task), result)
		assert decision.action == CorrectionAction.ESCALATE
		assert "code -1" in decision.error_summary

	def test_evaluate_is_pure(self):
		task = started_task()
		policy = SelfCorrectionPolicy(3)
		before = task.model_dump()
		first = policy.evaluate(task, success_outcome(task), failed_pipeline())
		second = policy.evaluate(task, success_outcome(task), failed_pipeline())
		assert first == second
		assert task.model_dump() == before

	def test_negative_budget_rejected(self):
		with pytest.raises(ValueError):
			SelfCorrectionPolicy(-1)


class TestApply:
	def test_records_verification_on_attempt(self):
		task = started_task()
		policy = SelfCorrectionPolicy(3)
		outcome = success_outcome(task)
		verification = failed_pipeline()
		decision = policy.evaluate(task, outcome, verification)
		policy.apply(task, decision, outcome, verification)

		attempt = task.last_attempt
		assert task.status == decision.next_status
		assert task.last_generated_output == outcome
		assert attempt.generated_summary == "Generated T1"
		assert attempt.verification_exit_code == 1
		assert "TEST STDERR" in attempt.verification_stderr
		assert attempt.error_summary == decision.error_summary

	def test_skipped_verification_recorded_as_minus_one(self):
		task = started_task()
		policy = SelfCorrectionPolicy(3)
		outcome = GenerationOutcome(task_id="T1", success=False, error="boom")
		decision = policy.evaluate(task, outcome)
		policy.apply(task, decision, outcome)
		assert task.last_attempt.verification_exit_code == -1
		assert task.last_attempt.error_summary == "boom"


def test_summarize_keeps_first_lines():
	summary = summarize_verification_failure(101, "a\nb\nc\n", max_lines=2)
	assert summary == "Verification failed (code 101): a\nb"
