"""
Session Store - SQLite-backed snapshots of project sessions.

Features:
- Append a snapshot every time the orchestrator reaches a stable point
- Load the latest snapshot for a project
- Version history per project, with pruning of old snapshots
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import ProjectSession

logger = logging.getLogger(__name__)

# Snapshots kept per project
DEFAULT_HISTORY = 50


class SessionStore:
	"""
	SQLite-backed session snapshots.

	Usage:
		store = SessionStore("data/sessions.db")
		await store.init()
		await store.save_session(session)
		latest = await store.load_session("/path/to/project")
	"""

	def __init__(self, db_path: str, history: int = DEFAULT_HISTORY):
		"""Initialize the session store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self.history = history
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS sessions (
				project TEXT NOT NULL,
				version INTEGER NOT NULL,
				status TEXT NOT NULL,
				data TEXT NOT NULL,
				saved_at TEXT NOT NULL,
				PRIMARY KEY (project, version)
			)
		""")

		await self._db.commit()
		logger.info(f"Session store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def save_session(self, session: ProjectSession) -> int:
		"""
		Append a snapshot.

		Returns:
			The snapshot version

		Raises:
			ValueError: The session has no project loaded
		"""
		if session.project_path is None:
			raise ValueError("Cannot store a session without a project path")
		if not self._db:
			await self.init()

		project = session.project_path
		async with self._db.execute(
			"SELECT COALESCE(MAX(version), 0) AS latest FROM sessions WHERE project = ?",
			(project,)
		) as cursor:
			row = await cursor.fetchone()
		version = row["latest"] + 1

		await self._db.execute(
			"""
			INSERT INTO sessions (project, version, status, data, saved_at)
			VALUES (?, ?, ?, ?, ?)
			""",
			(project, version, session.status.kind.value, session.model_dump_json(), datetime.now().isoformat())
		)
		await self._db.execute(
			"DELETE FROM sessions WHERE project = ? AND version <= ?",
			(project, version - self.history)
		)
		await self._db.commit()
		logger.debug(f"Saved session snapshot v{version} for {project}")
		return version

	async def load_session(self, project: str, version: Optional[int] = None) -> Optional[ProjectSession]:
		"""Latest (or a specific) snapshot for a project."""
		if not self._db:
			await self.init()

		if version is None:
			query = "SELECT data FROM sessions WHERE project = ? ORDER BY version DESC LIMIT 1"
			params: tuple = (project,)
		else:
			query = "SELECT data FROM sessions WHERE project = ? AND version = ?"
			params = (project, version)

		async with self._db.execute(query, params) as cursor:
			row = await cursor.fetchone()
		if row is None:
			return None
		return ProjectSession.model_validate_json(row["data"])

	async def get_history(self, project: str) -> list[dict]:
		"""Snapshot versions for a project, newest first."""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT version, status, saved_at FROM sessions WHERE project = ? ORDER BY version DESC",
			(project,)
		) as cursor:
			rows = await cursor.fetchall()
		return [
			{"version": row["version"], "status": row["status"], "saved_at": row["saved_at"]}
			for row in rows
		]

	async def list_projects(self) -> list[dict]:
		"""Projects with stored snapshots, most recently saved first."""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"""
			SELECT
				project,
				COUNT(*) as snapshot_count,
				MAX(saved_at) as last_saved
			FROM sessions
			GROUP BY project
			ORDER BY last_saved DESC
			"""
		) as cursor:
			rows = await cursor.fetchall()

		return [
			{
				"project": row["project"],
				"snapshot_count": row["snapshot_count"],
				"last_saved": row["last_saved"],
			}
			for row in rows
		]


# Global store instance
_store: Optional[SessionStore] = None


async def get_session_store(db_path: str = "") -> SessionStore:
	"""Get or create the global session store."""
	global _store
	if _store is None:
		if not db_path:
			from .config import get_config
			db_path = str(get_config().sessions_db_path)
		_store = SessionStore(db_path)
		await _store.init()
	return _store
