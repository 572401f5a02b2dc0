"""
Local workspace - applies generated files, runs verification stages, commits.

Stage names are resolved through the project's stage command table
(``pilot.toml`` ``[stages]``, defaulting to the cargo toolchain). Commands
run in the code root with their output streamed line by line.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .collaborators import OutputLineCallback, StageOutput
from .config import ProjectConfig
from .errors import StageSpawnError, WorkspaceError
from .models import ChangedFile, FileAction, GenerationOutcome

logger = logging.getLogger(__name__)

# Exit code reported for a stage killed on timeout
TIMEOUT_EXIT_CODE = 124


async def _run_git(args: list[str], cwd: Path, timeout: int = 30) -> tuple[str, str, int]:
	"""Run a git command and return (stdout, stderr, returncode)."""
	proc = await asyncio.create_subprocess_exec(
		"git", *args,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
		cwd=str(cwd),
	)
	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		proc.kill()
		return ("", f"git {args[0]} timed out after {timeout}s", -1)
	return (
		stdout.decode().strip(),
		stderr.decode().strip(),
		proc.returncode or 0,
	)


class LocalWorkspace:
	"""
	Workspace backed by the local filesystem and git.

	Usage:
		workspace = LocalWorkspace()
		await workspace.apply("/path/to/project", outcome)
		output = await workspace.run_stage("test", "/path/to/project", print)
	"""

	def __init__(self, timeout: int = 600):
		"""
		Initialize the workspace.

		Args:
			timeout: Per-stage timeout in seconds
		"""
		self.timeout = timeout

	def _config(self, project_root: str) -> ProjectConfig:
		return ProjectConfig.load(Path(project_root))

	async def apply(self, project_root: str, outcome: GenerationOutcome) -> list[str]:
		"""
		Write generated files under the code root and docs under the docs dir.

		Returns:
			Paths touched, relative to the project root

		Raises:
			ValueError: A path escapes its base directory
		"""
		root = Path(project_root).resolve()
		config = self._config(project_root)
		code_root = config.code_path(root)
		docs_root = (root / config.code_docs_dir).resolve()

		touched = []
		for changed in outcome.changed_files:
			touched.append(self._write(root, code_root, changed))
		for doc in outcome.generated_docs:
			touched.append(self._write(root, docs_root, doc))
		logger.debug(f"Applied {len(touched)} changes for task {outcome.task_id}")
		return touched

	def _write(self, root: Path, base: Path, changed: ChangedFile) -> str:
		target = (base / changed.relative_path).resolve()
		if not target.is_relative_to(base):
			raise ValueError(f"Path escapes workspace: {changed.relative_path}")

		if changed.action == FileAction.DELETED:
			target.unlink(missing_ok=True)
		else:
			target.parent.mkdir(parents=True, exist_ok=True)
			target.write_text(changed.content, encoding="utf-8")

		try:
			return str(target.relative_to(root))
		except ValueError:
			return str(target)

	async def run_stage(
		self,
		name: str,
		project_root: str,
		on_output_line: Optional[OutputLineCallback] = None,
	) -> StageOutput:
		"""
		Run one named stage in the code root.

		Raises:
			StageSpawnError: Stage unknown or its command could not be started
		"""
		config = self._config(project_root)
		command = config.stage_commands.get(name)
		if not command:
			raise StageSpawnError(name, "No command configured for stage")

		cwd = config.code_path(Path(project_root))
		try:
			proc = await asyncio.create_subprocess_exec(
				*command,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(cwd),
			)
		except FileNotFoundError as e:
			raise StageSpawnError(name, f"Command not found: {command[0]}") from e
		except OSError as e:
			raise StageSpawnError(name, str(e)) from e

		stdout_lines: list[str] = []
		stderr_lines: list[str] = []

		async def pump(stream: asyncio.StreamReader, label: str, sink: list[str]) -> None:
			while True:
				line = await stream.readline()
				if not line:
					break
				text = line.decode("utf-8", errors="replace")
				sink.append(text)
				if on_output_line:
					on_output_line(f"[{name}:{label}] {text.rstrip()}")

		try:
			await asyncio.wait_for(
				asyncio.gather(
					pump(proc.stdout, "stdout", stdout_lines),
					pump(proc.stderr, "stderr", stderr_lines),
					proc.wait(),
				),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError:
			proc.kill()
			await proc.wait()
			stderr_lines.append(f"Stage {name} timed out after {self.timeout}s\n")
			return StageOutput("".join(stdout_lines), "".join(stderr_lines), TIMEOUT_EXIT_CODE)

		return StageOutput("".join(stdout_lines), "".join(stderr_lines), proc.returncode or 0)

	async def commit(self, project_root: str, message: str, task_id: Optional[str] = None) -> Optional[str]:
		"""
		Stage everything and commit.

		Returns:
			The new commit hash, or None when there was nothing to commit

		Raises:
			WorkspaceError: git failed
		"""
		root = Path(project_root)
		_, stderr, rc = await _run_git(["add", "-A"], root)
		if rc != 0:
			raise WorkspaceError(f"git add failed: {stderr}")

		stdout, stderr, rc = await _run_git(["commit", "-m", message], root)
		if rc != 0:
			if "nothing to commit" in stdout or "nothing to commit" in stderr:
				logger.info(f"Nothing to commit for task {task_id}")
				return None
			raise WorkspaceError(f"git commit failed: {stderr or stdout}")

		sha, _, _ = await _run_git(["rev-parse", "HEAD"], root)
		logger.info(f"Committed {sha[:8]} for task {task_id}")
		return sha
