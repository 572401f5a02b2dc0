"""
Self-Correction Policy - decides what happens after a task attempt.

Responsibilities:
- Turn a generation outcome and verification result into a task status
- Allow a bounded number of automatic retries (self-correction)
- Escalate to a human once the retry budget is exhausted

Attempt counting: the first execution is attempt 1, and
``max_self_correction_attempts`` counts retries after it, so a task runs
at most ``max_self_correction_attempts + 1`` times per retry window.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import GenerationOutcome, ProjectStatus, Task, TaskStatus
from .selector import max_total_attempts
from .verifier import PipelineResult

logger = logging.getLogger(__name__)

# Lines of stderr kept in a blocked task's reason
STDERR_SUMMARY_LINES = 5

DEFAULT_GENERATION_ERROR = "Generator reported failure without details."


class CorrectionAction(str, Enum):
	"""Follow-up the orchestrator should take."""
	COMPLETE = "complete"
	RETRY = "retry"
	ESCALATE = "escalate"


@dataclass(frozen=True)
class CorrectionDecision:
	"""Result of evaluating one attempt."""
	task_id: str
	action: CorrectionAction
	next_status: TaskStatus
	session_status: Optional[ProjectStatus] = None
	error_summary: Optional[str] = None

	@property
	def escalation_prompt(self) -> Optional[str]:
		if self.action == CorrectionAction.ESCALATE and self.session_status is not None:
			return self.session_status.message
		return None


def summarize_verification_failure(exit_code: int, stderr: str, max_lines: int = STDERR_SUMMARY_LINES) -> str:
	"""Compact reason string: exit code plus the first lines of stderr."""
	head = "\n".join(stderr.strip("\n").splitlines()[:max_lines])
	return f"Verification failed (code {exit_code}): {head}"


class SelfCorrectionPolicy:
	"""
	Bounded retry policy for failed task attempts.

	``evaluate`` is a pure function of its inputs; ``apply`` records the
	attempt outcome on the (detached) task it is given.
	"""

	def __init__(self, max_self_correction_attempts: int, stderr_lines: int = STDERR_SUMMARY_LINES):
		"""
		Initialize the policy.

		Args:
			max_self_correction_attempts: Retries allowed after the first execution
			stderr_lines: Lines of stderr kept in a blocked reason
		"""
		if max_self_correction_attempts < 0:
			raise ValueError("max_self_correction_attempts must be >= 0")
		self.max_self_correction_attempts = max_self_correction_attempts
		self.stderr_lines = stderr_lines

	def evaluate(
		self,
		task: Task,
		outcome: GenerationOutcome,
		verification: Optional[PipelineResult] = None,
	) -> CorrectionDecision:
		"""
		Compute the task's next status and the session follow-up.

		Args:
			task: Task after its attempt was opened
			outcome: What the generator reported
			verification: Pipeline result (ignored when generation failed)

		Returns:
			CorrectionDecision
		"""
		can_retry = True
		if not outcome.success:
			reason = outcome.error or DEFAULT_GENERATION_ERROR
		elif verification is not None and verification.exit_code != 0:
			reason = summarize_verification_failure(
				verification.exit_code,
				verification.failure_stderr,
				self.stderr_lines,
			)
			can_retry = verification.can_retry
		else:
			return CorrectionDecision(
				task_id=task.id,
				action=CorrectionAction.COMPLETE,
				next_status=TaskStatus.completed_success(),
			)

		attempts = task.attempts_in_window
		if can_retry and attempts < max_total_attempts(self.max_self_correction_attempts):
			return CorrectionDecision(
				task_id=task.id,
				action=CorrectionAction.RETRY,
				next_status=TaskStatus.blocked_by_error(reason),
				session_status=ProjectStatus.self_correcting(task.id),
				error_summary=reason,
			)

		prompt = f"Task {task.id} failed after {attempts} attempts. Needs review."
		return CorrectionDecision(
			task_id=task.id,
			action=CorrectionAction.ESCALATE,
			next_status=TaskStatus.failed(),
			session_status=ProjectStatus.awaiting_human_input(prompt, task_id=task.id),
			error_summary=reason,
		)

	def apply(
		self,
		task: Task,
		decision: CorrectionDecision,
		outcome: GenerationOutcome,
		verification: Optional[PipelineResult] = None,
	) -> None:
		"""Record the attempt outcome on the task and set its status."""
		task.last_generated_output = outcome
		task.status = decision.next_status

		attempt = task.last_attempt
		if attempt is None:
			logger.warning(f"Task {task.id} has no open attempt to record")
			return

		attempt.generated_summary = outcome.summary
		attempt.generator_notes = outcome.notes
		if outcome.success and verification is not None:
			attempt.verification_stdout = verification.combined_stdout
			attempt.verification_stderr = verification.combined_stderr
			attempt.verification_exit_code = verification.exit_code
		else:
			# Verification skipped
			attempt.verification_exit_code = -1
		if decision.error_summary is not None:
			attempt.error_summary = decision.error_summary
