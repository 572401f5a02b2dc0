"""
Orchestrator - the top-level execution loop.

Drives one project session: decomposes a specification into a task
graph, then repeatedly selects a runnable task, prepares context,
generates code, applies and verifies it, and feeds the outcome through
the self-correction policy.

Concurrency discipline:
- The ProjectSession is guarded by one asyncio.Lock, held only for short
  synchronous updates (selection, status transitions, merges, log appends)
- A selected task is copied out under the lock, worked on lock-free, and
  merged back by id under the lock
- Settings sit behind their own lock and are snapshotted per iteration
- Commits and index refreshes are fire-and-forget background tasks
- The loop can only be halted between iterations
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, Optional

from ..collaborators import (
	CodeGenerator,
	ContextPreparer,
	HumanEscalationChannel,
	KnowledgeIndex,
	LogObserver,
	OutputLineCallback,
	SpecDecomposer,
	Workspace,
)
from ..config import GitCommitStrategy, ProjectConfig, ProjectSettings, save_settings
from ..errors import (
	ConfigurationError,
	GenerationError,
	HumanInputRequired,
	InvalidStateError,
	TaskGraphError,
	TaskNotFoundError,
	VerificationError,
)
from ..models import (
	ApprovalStatus,
	ExternalDependency,
	GenerationOutcome,
	LogEntry,
	LogLevel,
	ProjectSession,
	ProjectStatus,
	ProjectStatusKind,
	TaskStatus,
	TaskStatusKind,
)
from .correction import CorrectionAction, SelfCorrectionPolicy
from .graph import admit_drafts
from .selector import PriorityKey, select_next_task
from .verifier import PipelineResult, VerificationPipeline

logger = logging.getLogger(__name__)

# Statuses in which the loop may select work
LOOP_RUNNABLE = frozenset({
	ProjectStatusKind.READY_TO_EXECUTE,
	ProjectStatusKind.SELF_CORRECTING,
	ProjectStatusKind.IDLE,
	ProjectStatusKind.COMPLETED_GOAL,
})

# Statuses from which a new specification may be started
SPEC_STARTABLE = frozenset({
	ProjectStatusKind.IDLE,
	ProjectStatusKind.COMPLETED_GOAL,
	ProjectStatusKind.ERROR,
})

HUMAN_RESETTABLE = frozenset({
	TaskStatusKind.FAILED,
	TaskStatusKind.AWAITING_HUMAN_CLARIFICATION,
})

# Session statuses that a task reset by a human response turns into READY_TO_EXECUTE
RESPONSE_READIES = frozenset({
	ProjectStatusKind.IDLE,
	ProjectStatusKind.READY_TO_EXECUTE,
	ProjectStatusKind.COMPLETED_GOAL,
})

_PY_LEVELS = {
	LogLevel.INFO: logging.INFO,
	LogLevel.WARN: logging.WARNING,
	LogLevel.ERROR: logging.ERROR,
	LogLevel.DEBUG: logging.DEBUG,
	LogLevel.AGENT_TRACE: logging.DEBUG,
	LogLevel.HUMAN_INPUT: logging.INFO,
	LogLevel.LLM_TRACE: logging.DEBUG,
}


def _entry(
	component: str,
	level: LogLevel,
	message: str,
	task_id: Optional[str] = None,
	details: Optional[dict[str, Any]] = None,
) -> LogEntry:
	return LogEntry(component=component, level=level, message=message, task_id=task_id, details=details)


class Orchestrator:
	"""
	Orchestrates spec decomposition and task execution for one project.

	Usage:
		orchestrator = Orchestrator(decomposer, preparer, generator, workspace)
		await orchestrator.initialize_project("/path/to/project")
		loop_task = await orchestrator.start_spec("docs/specifications/auth.md")
		await loop_task
	"""

	def __init__(
		self,
		decomposer: SpecDecomposer,
		context_preparer: ContextPreparer,
		generator: CodeGenerator,
		workspace: Workspace,
		knowledge_index: Optional[KnowledgeIndex] = None,
		escalation: Optional[HumanEscalationChannel] = None,
		settings: Optional[ProjectSettings] = None,
		store: Optional[Any] = None,
		priority: Optional[PriorityKey] = None,
		on_output_line: Optional[OutputLineCallback] = None,
		settings_path: Optional[Path] = None,
	):
		"""
		Initialize the orchestrator.

		Args:
			decomposer: Turns a spec reference into task drafts
			context_preparer: Builds code/reference context for a task
			generator: Produces file changes for a task
			workspace: Applies changes, runs verification stages, commits
			knowledge_index: Refreshed in the background after successful tasks
			escalation: Receives human-input requests
			settings: Initial settings (defaults if omitted)
			store: Optional SessionStore for snapshots
			priority: Optional selection priority key
			on_output_line: Receives streamed verification output
			settings_path: Where save_settings persists (not persisted if omitted)
		"""
		self.decomposer = decomposer
		self.context_preparer = context_preparer
		self.generator = generator
		self.workspace = workspace
		self.knowledge_index = knowledge_index
		self.escalation = escalation
		self.store = store
		self.priority = priority
		self.on_output_line = on_output_line
		self.settings_path = settings_path
		self.pipeline = VerificationPipeline(workspace)

		self.session = ProjectSession()
		self._session_lock = asyncio.Lock()
		self._settings = settings or ProjectSettings()
		self._settings_lock = asyncio.Lock()

		self._observers: list[LogObserver] = []
		self._background: set[asyncio.Task] = set()
		self._loop_task: Optional[asyncio.Task] = None
		self._running = False
		self._halt_requested = False

	# ------------------------------------------------------------------
	# Logging
	# ------------------------------------------------------------------

	def add_observer(self, observer: LogObserver) -> None:
		"""Mirror every session log entry to an external observer."""
		self._observers.append(observer)

	def _publish(self, entry: LogEntry) -> None:
		"""Forward an already-stored entry to stdlib logging and observers."""
		logger.log(_PY_LEVELS.get(entry.level, logging.INFO), f"[{entry.component}] {entry.message}")
		for observer in self._observers:
			try:
				observer(entry)
			except Exception as e:
				logger.error(f"Log observer failed: {e}")

	async def _record(self, entry: LogEntry) -> None:
		async with self._session_lock:
			self.session.append_log(entry)
		self._publish(entry)

	async def _log(
		self,
		component: str,
		level: LogLevel,
		message: str,
		task_id: Optional[str] = None,
		details: Optional[dict[str, Any]] = None,
	) -> None:
		await self._record(_entry(component, level, message, task_id, details))

	# ------------------------------------------------------------------
	# Settings
	# ------------------------------------------------------------------

	async def get_settings(self) -> ProjectSettings:
		"""Snapshot of the current settings."""
		async with self._settings_lock:
			return self._settings.model_copy(deep=True)

	async def save_settings(self, settings: ProjectSettings) -> None:
		"""Replace settings; in-flight tasks keep their snapshot."""
		async with self._settings_lock:
			self._settings = settings.model_copy(deep=True)
		if self.settings_path is not None:
			save_settings(settings, self.settings_path)
		await self._log(
			"System",
			LogLevel.INFO,
			"Settings saved.",
			details=settings.model_dump(mode="json", exclude={"api_key"}),
		)

	# ------------------------------------------------------------------
	# Session commands
	# ------------------------------------------------------------------

	async def get_session_state(self) -> ProjectSession:
		"""Deep copy of the session for display or persistence."""
		async with self._session_lock:
			return self.session.model_copy(deep=True)

	async def initialize_project(self, project_path: str) -> None:
		"""
		Load a project, resetting tasks and logs.

		Raises:
			ConfigurationError: Path or code root missing, bad pilot.toml
			InvalidStateError: A task or planning pass is in flight
		"""
		path = Path(project_path).expanduser().resolve()
		if not path.is_dir():
			raise ConfigurationError(f"Project path does not exist: {path}")
		project_config = ProjectConfig.load(path)
		code_path = project_config.code_path(path)
		if not code_path.is_dir():
			raise ConfigurationError(f"Code root does not exist: {code_path}")

		async with self._session_lock:
			if self.session.status.kind in (ProjectStatusKind.EXECUTING_TASK, ProjectStatusKind.PLANNING):
				raise InvalidStateError(
					str(self.session.status),
					"not planning/executing",
					"initialize_project",
				)
			self.session.reset(str(path))
			entry = _entry("System", LogLevel.INFO, f"Project initialized: {path}")
			self.session.append_log(entry)
		self._publish(entry)

		if self.knowledge_index is not None:
			settings = await self.get_settings()
			self._spawn_background(self._refresh_index(str(path), settings))

	async def start_spec(self, spec_ref: str) -> asyncio.Task:
		"""
		Begin planning for a specification and run the loop in the background.

		Returns:
			The background task driving planning and execution

		Raises:
			ConfigurationError: No project loaded
			InvalidStateError: Session is not idle/completed/errored
		"""
		async with self._session_lock:
			if self.session.project_path is None:
				raise ConfigurationError("No project loaded.")
			if self.session.status.kind not in SPEC_STARTABLE:
				raise InvalidStateError(
					str(self.session.status),
					"idle/completed_goal/error",
					"start_spec",
				)
			self.session.status = ProjectStatus.planning()
			self.session.active_spec = spec_ref
			self.session.tasks.clear()
			project_root = self.session.project_path
			entry = _entry("System", LogLevel.INFO, f"Starting processing for spec: {spec_ref}")
			self.session.append_log(entry)
		self._publish(entry)

		self._loop_task = asyncio.create_task(self._plan_and_run(spec_ref, project_root))
		return self._loop_task

	async def _plan_and_run(self, spec_ref: str, project_root: str) -> ProjectStatus:
		settings = await self.get_settings()
		try:
			drafts = await self.decomposer.decompose(spec_ref, project_root, settings)
			tasks = admit_drafts(drafts)
		except TaskGraphError as e:
			return await self._fail_planning(f"Planner Error: {e}")
		except Exception as e:
			logger.exception("Decomposition raised")
			return await self._fail_planning(f"Planner Error: {e}")

		async with self._session_lock:
			if self.session.status.kind != ProjectStatusKind.PLANNING or self.session.active_spec != spec_ref:
				entry = _entry("Planner", LogLevel.WARN, f"Discarding decomposition of {spec_ref}: session changed")
				self.session.append_log(entry)
				status = self.session.status
			else:
				self.session.tasks = tasks
				self.session.status = ProjectStatus.ready_to_execute()
				entry = _entry("Planner", LogLevel.INFO, f"Decomposition complete. {len(tasks)} tasks created.")
				self.session.append_log(entry)
				status = None
		self._publish(entry)
		if status is not None:
			return status

		await self._snapshot()
		return await self.run()

	async def _fail_planning(self, message: str) -> ProjectStatus:
		async with self._session_lock:
			self.session.status = ProjectStatus.error(message)
			self.session.tasks.clear()
			entry = _entry("Planner", LogLevel.ERROR, message)
			self.session.append_log(entry)
			status = self.session.status
		self._publish(entry)
		await self._snapshot()
		return status

	async def submit_human_response(self, task_id: str, response_text: str) -> None:
		"""
		Accept a human response, clearing an escalation.

		FAILED or AWAITING_HUMAN_CLARIFICATION tasks go back to PENDING with
		a fresh retry window. An AWAITING_HUMAN_INPUT session for this task, or
		an idle or finished session once a task was reset, goes back to
		READY_TO_EXECUTE. The loop is not restarted; call ``resume`` for that.
		"""
		async with self._session_lock:
			task = self.session.get_task(task_id)
			if task is None:
				raise TaskNotFoundError(task_id)
			entries = [_entry(
				"HumanInterface",
				LogLevel.HUMAN_INPUT,
				f"Human response for task {task_id}: {response_text}",
				task_id=task_id,
			)]
			task.human_review_notes = response_text
			reset = task.status.kind in HUMAN_RESETTABLE
			if reset:
				task.status = TaskStatus.pending()
				task.retry_window_start = task.current_attempt_number
			status = self.session.status
			escalated = status.kind == ProjectStatusKind.AWAITING_HUMAN_INPUT and status.task_id in (None, task_id)
			if escalated or (reset and status.kind in RESPONSE_READIES):
				self.session.status = ProjectStatus.ready_to_execute()
				entries.append(_entry("HumanInterface", LogLevel.INFO, "Escalation cleared; ready to execute.", task_id))
			for entry in entries:
				self.session.append_log(entry)
		for entry in entries:
			self._publish(entry)
		await self._snapshot()

	async def set_dependency_status(
		self,
		name: str,
		approval_status: ApprovalStatus,
		version: Optional[str] = None,
	) -> ExternalDependency:
		"""Record the approval decision for an external dependency."""
		async with self._session_lock:
			dep = self.session.get_dependency(name)
			if dep is None:
				dep = ExternalDependency(name=name, version=version)
				self.session.known_dependencies.append(dep)
			elif version is not None:
				dep.version = version
			dep.approval_status = approval_status
			entry = _entry("System", LogLevel.INFO, f"Dependency {name} marked {approval_status.value}")
			self.session.append_log(entry)
			result = dep.model_copy()
		self._publish(entry)
		return result

	async def approve_dependency(self, name: str, version: Optional[str] = None) -> ExternalDependency:
		return await self.set_dependency_status(name, ApprovalStatus.APPROVED, version)

	async def reject_dependency(self, name: str) -> ExternalDependency:
		return await self.set_dependency_status(name, ApprovalStatus.REJECTED)

	def halt(self) -> None:
		"""Stop the loop after the current iteration finishes."""
		self._halt_requested = True

	def resume(self) -> asyncio.Task:
		"""Run the loop in the background unless it is already running."""
		if self._loop_task is not None and not self._loop_task.done():
			return self._loop_task
		self._loop_task = asyncio.create_task(self.run())
		return self._loop_task

	async def wait_for_background(self) -> None:
		"""Wait for outstanding commits and index refreshes."""
		while self._background:
			await asyncio.gather(*list(self._background), return_exceptions=True)

	# ------------------------------------------------------------------
	# Main loop
	# ------------------------------------------------------------------

	async def run(self) -> ProjectStatus:
		"""
		Execute tasks until none is runnable, an escalation occurs, or halt.

		Returns:
			The session status when the loop stopped

		Raises:
			HumanInputRequired: The session is waiting on a human response
			InvalidStateError: The loop is already running
		"""
		async with self._session_lock:
			status = self.session.status
			if status.kind == ProjectStatusKind.AWAITING_HUMAN_INPUT:
				raise HumanInputRequired(status.message or "Awaiting human input", status.task_id)
			if self._running:
				raise InvalidStateError("running", "stopped", "run")
			self._running = True
		self._halt_requested = False

		try:
			await self._log("System", LogLevel.INFO, "Starting main execution loop...")
			while not self._halt_requested:
				try:
					proceed = await self._run_iteration()
				except Exception as e:
					logger.exception("Execution loop failed")
					await self._enter_error(f"Loop Error: {e}")
					break
				if not proceed:
					break
			await self._log("System", LogLevel.INFO, "Main execution loop finished.")
		finally:
			async with self._session_lock:
				self._running = False
				status = self.session.status
		return status

	async def _enter_error(self, message: str) -> None:
		async with self._session_lock:
			task = self.session.get_task(self.session.current_task_id) if self.session.current_task_id else None
			if task is not None and task.status.kind == TaskStatusKind.IN_PROGRESS:
				task.status = TaskStatus.blocked_by_error(message)
			self.session.status = ProjectStatus.error(message)
			self.session.current_task_id = None
			entry = _entry("System", LogLevel.ERROR, message, task.id if task is not None else None)
			self.session.append_log(entry)
		self._publish(entry)
		await self._snapshot()

	async def _run_iteration(self) -> bool:
		"""One select/execute/merge cycle. Returns False when the loop should stop."""
		settings = await self.get_settings()
		entries: list[LogEntry] = []
		escalation: Optional[tuple[str, str]] = None

		# --- Selection (under lock) ---
		async with self._session_lock:
			session = self.session
			if session.project_path is None:
				raise ConfigurationError("Project path not set in loop")
			project_root = session.project_path

			detached = None
			if session.status.kind not in LOOP_RUNNABLE:
				entries.append(_entry(
					"System",
					LogLevel.WARN,
					f"Execution loop paused or in non-runnable state: {session.status}",
				))
			else:
				selection = select_next_task(
					session.tasks,
					session.status,
					settings.max_self_correction_attempts,
					self.priority,
				)
				if selection.needs_escalation:
					task_id = session.status.task_id
					task = session.get_task(task_id)
					if task is not None:
						task.status = TaskStatus.failed()
					session.status = ProjectStatus.awaiting_human_input(selection.escalation, task_id=task_id)
					entries.append(_entry("Planner", LogLevel.ERROR, selection.escalation, task_id))
					escalation = (task_id, selection.escalation)
				elif selection.task is None:
					session.status = (
						ProjectStatus.completed_goal() if session.all_completed() else ProjectStatus.idle()
					)
					entries.append(_entry("Planner", LogLevel.INFO, "No more runnable tasks found."))
				else:
					task = selection.task
					task.status = TaskStatus.in_progress()
					session.status = ProjectStatus.executing_task()
					session.current_task_id = task.id
					detached = task.model_copy(deep=True)
					entries.append(_entry(
						"Planner",
						LogLevel.INFO,
						f"Selected task: {task.description} ({task.id})",
						task.id,
					))
			for entry in entries:
				session.append_log(entry)

		for entry in entries:
			self._publish(entry)
		if escalation is not None:
			await self._escalate(*escalation)
		if detached is None:
			await self._snapshot()
			return False

		# --- Execution (lock-free, on the detached copy) ---
		detached.begin_attempt()
		code_ctx, ref_ctx = await self._prepare_context(detached, project_root, settings)
		detached.context_summary = f"Code Ctx: {len(code_ctx)} chars, Reference Docs: {len(ref_ctx)} chars"

		outcome = await self._generate(detached, code_ctx, ref_ctx, settings)
		verification: Optional[PipelineResult] = None
		if outcome.success:
			try:
				touched = await self.workspace.apply(project_root, outcome)
				await self._log(
					"Workspace",
					LogLevel.DEBUG,
					f"Applied {len(touched)} file changes",
					detached.id,
					{"files": touched},
				)
			except Exception as e:
				logger.warning(f"Applying changes for task {detached.id} failed: {e}")
				outcome = outcome.model_copy(update={"success": False, "error": f"Failed to apply changes: {e}"})
			else:
				try:
					verification = await self.pipeline.run(
						project_root,
						settings.verification_stages,
						task_id=detached.id,
						on_output_line=self.on_output_line,
						on_log=self._record,
					)
				except VerificationError as e:
					verification = PipelineResult.from_error(e)
				except Exception as e:
					logger.exception("Verification pipeline raised")
					verification = PipelineResult.from_exception("verification", e)

		policy = SelfCorrectionPolicy(settings.max_self_correction_attempts)
		decision = policy.evaluate(detached, outcome, verification)
		policy.apply(detached, decision, outcome, verification)

		# --- Merge (under lock) ---
		entries = []
		escalation = None
		async with self._session_lock:
			session = self.session
			task = session.get_task(detached.id)
			if task is None or session.current_task_id != detached.id:
				entries.append(_entry(
					"System",
					LogLevel.WARN,
					f"Discarding result for task {detached.id}: session was reset",
					detached.id,
				))
			else:
				task.status = detached.status
				task.attempts = detached.attempts
				task.current_attempt_number = detached.current_attempt_number
				task.last_generated_output = detached.last_generated_output
				task.context_summary = detached.context_summary
				prefix = f"[Task {task.id} Att.{task.current_attempt_number}] "

				if decision.action == CorrectionAction.COMPLETE:
					session.status = ProjectStatus.ready_to_execute()
					entries.append(_entry("Planner", LogLevel.INFO, f"{prefix}Task successfully coded and verified.", task.id))
					if settings.git_commit_strategy == GitCommitStrategy.PER_TASK:
						message = f"AI: Task {task.id} - {task.description[:50]} completed."
						self._spawn_background(self._commit(project_root, message, task.id))
					if self.knowledge_index is not None:
						self._spawn_background(self._refresh_index(project_root, settings))
				elif decision.action == CorrectionAction.RETRY:
					session.status = decision.session_status
					entries.append(_entry(
						"Planner",
						LogLevel.INFO,
						f"{prefix}Attempting self-correction "
						f"(retry {task.attempts_in_window}/{settings.max_self_correction_attempts})",
						task.id,
						{"reason": decision.error_summary},
					))
				else:
					session.status = decision.session_status
					entries.append(_entry(
						"Planner",
						LogLevel.ERROR,
						f"{prefix}Max self-correction attempts reached. Task failed.",
						task.id,
						{"reason": decision.error_summary},
					))
					escalation = (task.id, decision.escalation_prompt)
			session.current_task_id = None
			for entry in entries:
				session.append_log(entry)

		for entry in entries:
			self._publish(entry)
		if escalation is not None:
			await self._escalate(*escalation)
		await self._snapshot()
		return escalation is None

	async def _prepare_context(self, task, project_root: str, settings: ProjectSettings) -> tuple[str, str]:
		"""Context failures degrade to empty context instead of failing the task."""
		try:
			return await self.context_preparer.prepare(task, project_root, settings)
		except Exception as e:
			await self._log("Planner", LogLevel.WARN, f"Context preparation failed: {e}", task.id)
			return "", ""

	async def _generate(self, task, code_ctx: str, ref_ctx: str, settings: ProjectSettings) -> GenerationOutcome:
		try:
			return await self.generator.generate(task, code_ctx, ref_ctx, settings)
		except GenerationError as e:
			await self._log("Generator", LogLevel.WARN, f"Generation failed: {e}", task.id)
			return GenerationOutcome(task_id=task.id, success=False, error=str(e))
		except Exception as e:
			await self._log("Generator", LogLevel.ERROR, f"Generation raised: {e}", task.id)
			return GenerationOutcome(task_id=task.id, success=False, error=f"Generation raised: {e}")

	async def _escalate(self, task_id: Optional[str], prompt: str) -> None:
		if self.escalation is None or task_id is None:
			return
		try:
			await self.escalation.request_input(task_id, prompt)
		except Exception as e:
			logger.error(f"Escalation callback failed: {e}")

	# ------------------------------------------------------------------
	# Background work
	# ------------------------------------------------------------------

	def _spawn_background(self, coro: Coroutine) -> None:
		task = asyncio.create_task(coro)
		self._background.add(task)
		task.add_done_callback(self._background.discard)

	async def _commit(self, project_root: str, message: str, task_id: str) -> None:
		try:
			await self.workspace.commit(project_root, message, task_id)
		except Exception as e:
			await self._log("Workspace", LogLevel.ERROR, f"Commit failed: {e}", task_id)
			return
		await self._log("Workspace", LogLevel.INFO, f"Committed changes: {message}", task_id)

	async def _refresh_index(self, project_root: str, settings: ProjectSettings) -> None:
		try:
			await self.knowledge_index.refresh(project_root, settings)
		except Exception as e:
			await self._log("KnowledgeIndex", LogLevel.ERROR, f"Index refresh failed: {e}")
			return
		await self._log("KnowledgeIndex", LogLevel.DEBUG, "Index refreshed.")

	async def _snapshot(self) -> None:
		if self.store is None:
			return
		snapshot = await self.get_session_state()
		try:
			await self.store.save_session(snapshot)
		except Exception as e:
			logger.error(f"Session snapshot failed: {e}")
