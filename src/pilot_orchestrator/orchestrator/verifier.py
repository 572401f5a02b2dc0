"""
Verification Pipeline - ordered verification stages for generated code.

Key Principle: Tasks are NOT self-verified. Generated changes are run
through an independent sequence of named stages (format check, build
check, lint, tests) before a task can be marked complete.

Behavior:
- Stages run strictly in order through the Workspace collaborator
- Output lines stream to an optional observer callback
- The first non-zero exit code stops the pipeline
- Output of every attempted stage is aggregated, labeled by stage
- Stage failures are never retried here; the self-correction policy decides
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..collaborators import OutputLineCallback, Workspace
from ..errors import StageSpawnError, VerificationError
from ..models import LogEntry, LogLevel

logger = logging.getLogger(__name__)

COMPONENT = "VerificationPipeline"

# Exit code recorded for a stage whose workspace call raised
STAGE_ERROR_EXIT_CODE = 1

LogSink = Callable[[LogEntry], Awaitable[None]]


class StageStatus(str, Enum):
	"""Status of a verification stage."""
	PASSED = "passed"
	FAILED = "failed"
	ERROR = "error"


@dataclass
class StageResult:
	"""Result of a single verification stage."""
	name: str
	status: StageStatus
	stdout: str = ""
	stderr: str = ""
	exit_code: int = 0
	duration_seconds: float = 0.0


@dataclass
class PipelineResult:
	"""Aggregated result of a pipeline run."""
	stages: list[StageResult]
	combined_stdout: str = ""
	combined_stderr: str = ""
	exit_code: int = 0
	can_retry: bool = True
	logs: list[LogEntry] = field(default_factory=list)
	summary: str = ""
	verified_at: str = ""

	def __post_init__(self):
		if not self.verified_at:
			self.verified_at = datetime.now().isoformat()

		# Build summary
		passed = sum(1 for s in self.stages if s.status == StageStatus.PASSED)
		failed = sum(1 for s in self.stages if s.status != StageStatus.PASSED)
		self.summary = f"{passed} passed, {failed} failed out of {len(self.stages)} stages run"

	@property
	def passed(self) -> bool:
		return self.exit_code == 0

	@property
	def failed_stage(self) -> Optional[str]:
		for stage in self.stages:
			if stage.status != StageStatus.PASSED:
				return stage.name
		return None

	@property
	def failure_stderr(self) -> str:
		"""Stderr of the stage that stopped the pipeline, or everything."""
		for stage in self.stages:
			if stage.status != StageStatus.PASSED:
				return stage.stderr
		return self.combined_stderr

	@classmethod
	def from_error(cls, error: VerificationError) -> "PipelineResult":
		"""A pipeline that could not run is reported as non-retryable."""
		return cls(
			stages=[StageResult(name=error.stage, status=StageStatus.ERROR, stderr=error.details, exit_code=-1)],
			combined_stderr=_label(error.stage, "STDERR", error.details),
			exit_code=-1,
			can_retry=False,
		)

	@classmethod
	def from_exception(cls, stage: str, error: Exception) -> "PipelineResult":
		"""A stage that raised is reported as an ordinary, retryable failure."""
		details = f"{type(error).__name__}: {error}"
		return cls(
			stages=[StageResult(name=stage, status=StageStatus.ERROR, stderr=details, exit_code=STAGE_ERROR_EXIT_CODE)],
			combined_stderr=_label(stage, "STDERR", details),
			exit_code=STAGE_ERROR_EXIT_CODE,
		)


def _label(stage: str, stream: str, text: str) -> str:
	return f"\n--- {stage.upper()} {stream} ---\n{text}"


class VerificationPipeline:
	"""
	Runs an ordered list of verification stages against a workspace.

	Usage:
		pipeline = VerificationPipeline(workspace)
		result = await pipeline.run("/path/to/project", ["fmt", "check", "test"])
		if not result.passed:
			print(result.combined_stderr)
	"""

	def __init__(self, workspace: Workspace):
		"""
		Initialize the pipeline.

		Args:
			workspace: Collaborator that actually executes stages
		"""
		self.workspace = workspace

	async def run(
		self,
		project_root: str,
		stages: list[str],
		task_id: Optional[str] = None,
		on_output_line: Optional[OutputLineCallback] = None,
		on_log: Optional[LogSink] = None,
	) -> PipelineResult:
		"""
		Run verification stages in order, stopping at the first failure.

		Args:
			project_root: Project the stages run against
			stages: Stage names, in execution order
			task_id: Task being verified (for log records)
			on_output_line: Receives each output line as it is produced
			on_log: Receives one log record per stage as it finishes

		Returns:
			PipelineResult; exit_code is the last observed (0 if all passed)

		Raises:
			VerificationError: A stage could not be spawned
		"""
		results: list[StageResult] = []
		logs: list[LogEntry] = []
		combined_stdout = ""
		combined_stderr = ""
		last_exit_code = 0

		async def emit(entry: LogEntry) -> None:
			logs.append(entry)
			if on_log:
				await on_log(entry)

		for stage in stages:
			start = datetime.now()
			try:
				output = await self.workspace.run_stage(stage, project_root, on_output_line)
			except StageSpawnError as e:
				await emit(LogEntry(
					level=LogLevel.ERROR,
					component=COMPONENT,
					message=f"Verification stage '{stage}' could not be started: {e.details}",
					task_id=task_id,
					details={"stage": stage},
				))
				logger.error(f"Stage {stage} could not be spawned: {e.details}")
				raise VerificationError(stage, e.details) from e
			except Exception as e:
				failed = PipelineResult.from_exception(stage, e).stages[0]
				results.append(failed)
				combined_stderr += _label(stage, "STDERR", failed.stderr)
				last_exit_code = failed.exit_code
				await emit(LogEntry(
					level=LogLevel.ERROR,
					component=COMPONENT,
					message=f"Verification stage '{stage}' raised for task {task_id}: {e}",
					task_id=task_id,
					details={"stage": stage, "exit_code": failed.exit_code, "stderr": failed.stderr},
				))
				logger.error(f"Stage {stage} raised: {e}")
				break

			duration = (datetime.now() - start).total_seconds()
			status = StageStatus.PASSED if output.exit_code == 0 else StageStatus.FAILED
			results.append(StageResult(
				name=stage,
				status=status,
				stdout=output.stdout,
				stderr=output.stderr,
				exit_code=output.exit_code,
				duration_seconds=duration,
			))
			combined_stdout += _label(stage, "STDOUT", output.stdout)
			combined_stderr += _label(stage, "STDERR", output.stderr)
			last_exit_code = output.exit_code

			if output.exit_code != 0:
				await emit(LogEntry(
					level=LogLevel.WARN,
					component=COMPONENT,
					message=f"Verification stage '{stage}' FAILED for task {task_id}",
					task_id=task_id,
					details={"stage": stage, "exit_code": output.exit_code, "stderr": output.stderr},
				))
				logger.info(f"Stage {stage} failed with exit code {output.exit_code}")
				break

			await emit(LogEntry(
				level=LogLevel.INFO,
				component=COMPONENT,
				message=f"Verification stage '{stage}' PASSED for task {task_id}",
				task_id=task_id,
			))

		return PipelineResult(
			stages=results,
			combined_stdout=combined_stdout,
			combined_stderr=combined_stderr,
			exit_code=last_exit_code,
			logs=logs,
		)
