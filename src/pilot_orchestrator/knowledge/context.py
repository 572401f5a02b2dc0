"""Context preparation from the project index."""

import logging
from pathlib import Path

from ..collaborators import KnowledgeIndex, SearchResult
from ..config import ProjectSettings
from ..models import Task
from .index import DOC_TYPE_CODE, DOC_TYPE_CODE_DOC, DOC_TYPE_SPEC_DOC

logger = logging.getLogger(__name__)

CODE_HITS = 2
CODE_CHARS = 1500
DOC_HITS = 1
DOC_CHARS = 1000

NO_CODE_CONTEXT = "// No specific code context found for this task."
NO_REFERENCE_CONTEXT = "No reference documentation found for this task."


def _unique_paths(results: list[SearchResult], limit: int) -> list[SearchResult]:
	"""Best hit per file, keeping rank order."""
	picked: list[SearchResult] = []
	seen: set[str] = set()
	for r in results:
		if r.relative_path in seen:
			continue
		seen.add(r.relative_path)
		picked.append(r)
		if len(picked) == limit:
			break
	return picked


class IndexContextPreparer:
	"""
	Builds (code_context, reference_context) for a task.

	The task description is the query. The top code files and the top
	documentation file are read from disk and truncated.
	"""

	def __init__(self, index: KnowledgeIndex):
		self.index = index

	async def prepare(self, task: Task, project_root: str, settings: ProjectSettings) -> tuple[str, str]:
		query = task.description
		root = Path(project_root)

		code_hits = await self.index.search(query, CODE_HITS * 3, DOC_TYPE_CODE, project_root)
		code_parts = []
		for hit in _unique_paths(code_hits, CODE_HITS):
			content = self._read(root, hit)
			code_parts.append(
				f"\n--- Relevant Code File: {hit.relative_path} (Score: {hit.score:.2f}) ---\n"
				f"{content[:CODE_CHARS]}\n"
			)

		doc_hits = await self.index.search(query, DOC_HITS * 3, DOC_TYPE_CODE_DOC, project_root)
		if not doc_hits:
			doc_hits = await self.index.search(query, DOC_HITS * 3, DOC_TYPE_SPEC_DOC, project_root)
		doc_parts = []
		for hit in _unique_paths(doc_hits, DOC_HITS):
			content = self._read(root, hit)
			doc_parts.append(
				f"\n--- Relevant Documentation: {hit.relative_path} (Score: {hit.score:.2f}) ---\n"
				f"{content[:DOC_CHARS]}\n"
			)

		code_context = "".join(code_parts) or NO_CODE_CONTEXT
		reference_context = "".join(doc_parts) or NO_REFERENCE_CONTEXT
		return code_context, reference_context

	def _read(self, root: Path, hit: SearchResult) -> str:
		"""Full file content, falling back to the indexed snippet."""
		try:
			return (root / hit.relative_path).read_text(encoding="utf-8")
		except (OSError, UnicodeDecodeError) as e:
			logger.warning(f"Failed to read {hit.relative_path}: {e}")
			return hit.snippet
