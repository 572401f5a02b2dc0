"""
Project Index - semantic search over a project's code and documentation.

Features:
- Classify project files as code, code documentation or specification docs
- Chunk files into manageable pieces (markdown split by heading first)
- Generate embeddings with sentence-transformers
- Store in LanceDB, one row per chunk, scoped by project root
"""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import lancedb
from sentence_transformers import SentenceTransformer

from ..collaborators import SearchResult
from ..config import ProjectConfig, ProjectSettings

logger = logging.getLogger(__name__)

# Default embedding model - small and efficient
DEFAULT_MODEL = "all-MiniLM-L6-v2"

DOC_TYPE_CODE = "code"
DOC_TYPE_CODE_DOC = "code_doc"
DOC_TYPE_SPEC_DOC = "spec_doc"

CODE_EXTENSIONS = frozenset({
	".rs", ".toml", ".py", ".ts", ".tsx", ".js", ".go", ".java", ".c", ".h", ".cpp",
})

SKIP_DIRS = frozenset({".git", "target", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"})


@dataclass
class IndexStats:
	"""Statistics from one refresh."""
	total_files: int
	total_chunks: int
	duration_seconds: float


def _quote(value: str) -> str:
	return "'" + value.replace("'", "''") + "'"


def _as_floats(vector) -> list[float]:
	return [float(v) for v in vector]


class ProjectIndex:
	"""
	Indexes a project's files in LanceDB for semantic search.

	Usage:
		index = ProjectIndex(get_config().index_db_path)
		await index.refresh("/path/to/project", settings)
		hits = await index.search("parse config", 3, "code", "/path/to/project")
	"""

	CHUNK_SIZE = 500  # Target tokens per chunk
	CHUNK_OVERLAP = 50  # Overlap between chunks
	TABLE_NAME = "documents"

	def __init__(self, db_path: Path, model_name: str = DEFAULT_MODEL):
		"""
		Initialize the index.

		Args:
			db_path: Path to the LanceDB database directory
			model_name: Sentence transformer model name
		"""
		self.db_path = Path(db_path)
		self.db_path.mkdir(parents=True, exist_ok=True)

		self.model_name = model_name
		self._model: Optional[SentenceTransformer] = None
		self._db = None

	@property
	def model(self) -> SentenceTransformer:
		"""Lazy load the embedding model."""
		if self._model is None:
			logger.info(f"Loading embedding model: {self.model_name}")
			self._model = SentenceTransformer(self.model_name)
		return self._model

	@property
	def db(self):
		"""Lazy connect to database."""
		if self._db is None:
			self._db = lancedb.connect(str(self.db_path))
		return self._db

	# ------------------------------------------------------------------
	# Refresh
	# ------------------------------------------------------------------

	async def refresh(self, project_root: str, settings: Optional[ProjectSettings] = None) -> IndexStats:
		"""Re-index every code and documentation file of a project."""
		return await asyncio.to_thread(self._refresh_sync, project_root)

	def _refresh_sync(self, project_root: str) -> IndexStats:
		start_time = datetime.now()
		root = Path(project_root).resolve()
		if not root.is_dir():
			raise ValueError(f"Directory not found: {root}")

		chunks: list[dict] = []
		files = list(self.discover_files(root))
		for path, doc_type in files:
			chunks.extend(self._process_file(root, path, doc_type))

		if chunks:
			logger.info(f"Generating embeddings for {len(chunks)} chunks...")
			embeddings = self.model.encode([c["content"] for c in chunks])
			for chunk, embedding in zip(chunks, embeddings):
				chunk["vector"] = _as_floats(embedding)

		self._replace_project(str(root), chunks)

		stats = IndexStats(
			total_files=len(files),
			total_chunks=len(chunks),
			duration_seconds=(datetime.now() - start_time).total_seconds(),
		)
		logger.info(
			f"Indexed {stats.total_chunks} chunks from {stats.total_files} files "
			f"in {stats.duration_seconds:.1f}s"
		)
		return stats

	def discover_files(self, root: Path) -> Iterator[tuple[Path, str]]:
		"""Yield (path, doc_type) for every indexable file in the project."""
		config = ProjectConfig.load(root)
		seen: set[Path] = set()

		spec_paths = [root / config.specs_dir, root / config.architecture_file]
		for path in self._walk(spec_paths, {".md"}):
			seen.add(path)
			yield path, DOC_TYPE_SPEC_DOC

		for path in self._walk([root / config.code_docs_dir], {".md"}):
			if path not in seen:
				seen.add(path)
				yield path, DOC_TYPE_CODE_DOC

		for path in self._walk([config.code_path(root)], CODE_EXTENSIONS):
			if path not in seen:
				seen.add(path)
				yield path, DOC_TYPE_CODE

	def _walk(self, bases: list[Path], extensions) -> Iterator[Path]:
		for base in bases:
			if base.is_file():
				if base.suffix in extensions:
					yield base.resolve()
				continue
			if not base.is_dir():
				continue
			for path in sorted(base.rglob("*")):
				if any(part in SKIP_DIRS for part in path.relative_to(base).parts):
					continue
				if path.is_file() and path.suffix in extensions:
					yield path.resolve()

	def _process_file(self, root: Path, path: Path, doc_type: str) -> list[dict]:
		"""Process a single file into chunks."""
		try:
			content = path.read_text(encoding="utf-8")
		except (OSError, UnicodeDecodeError) as e:
			logger.warning(f"Skipping unreadable file {path}: {e}")
			return []

		relative_path = str(path.relative_to(root))
		if path.suffix == ".md":
			sections = self._split_sections(content)
		else:
			sections = [("Content", content)]

		chunks = []
		for section_name, section_content in sections:
			for i, chunk_text in enumerate(self._chunk_text(section_content)):
				chunks.append({
					"id": self._generate_chunk_id(path, section_name, i),
					"project": str(root),
					"relative_path": relative_path,
					"doc_type": doc_type,
					"section": section_name,
					"chunk_index": i,
					"content": chunk_text,
					"indexed_at": datetime.now().isoformat(),
				})
		return chunks

	def _split_sections(self, content: str) -> list[tuple[str, str]]:
		"""Split markdown into sections based on headings."""
		sections = []
		current_section = "Introduction"
		current_content = []

		for line in content.split("\n"):
			heading_match = re.match(r"^(#{1,3})\s+(.+)$", line)
			if heading_match:
				if current_content:
					text = "\n".join(current_content).strip()
					if text:
						sections.append((current_section, text))
				current_section = heading_match.group(2)
				current_content = []
			else:
				current_content.append(line)

		if current_content:
			text = "\n".join(current_content).strip()
			if text:
				sections.append((current_section, text))

		return sections if sections else [("Content", content)]

	def _chunk_text(self, text: str) -> list[str]:
		"""Split text into chunks of roughly CHUNK_SIZE tokens."""
		# Approximate tokens as words * 1.3
		words = text.split()
		if not words:
			return []

		target_words = int(self.CHUNK_SIZE / 1.3)
		overlap_words = int(self.CHUNK_OVERLAP / 1.3)

		chunks = []
		i = 0
		while i < len(words):
			end = min(i + target_words, len(words))
			chunks.append(" ".join(words[i:end]))
			i = end - overlap_words if end < len(words) else end
		return chunks

	def _generate_chunk_id(self, file_path: Path, section: str, index: int) -> str:
		key = f"{file_path}:{section}:{index}"
		return hashlib.md5(key.encode()).hexdigest()[:16]

	def _replace_project(self, project: str, chunks: list[dict]) -> None:
		"""Drop a project's rows and insert the fresh chunks."""
		if self.TABLE_NAME in self.db.table_names():
			table = self.db.open_table(self.TABLE_NAME)
			table.delete(f"project = {_quote(project)}")
			if chunks:
				table.add(chunks)
		elif chunks:
			self.db.create_table(self.TABLE_NAME, chunks)
		logger.debug(f"Stored {len(chunks)} chunks for {project}")

	# ------------------------------------------------------------------
	# Search
	# ------------------------------------------------------------------

	async def search(
		self,
		query: str,
		limit: int,
		type_filter: Optional[str],
		project_root: str,
	) -> list[SearchResult]:
		"""
		Search a project's chunks, best match first.

		Args:
			query: Natural-language query
			limit: Maximum results to return
			type_filter: Optional doc type (code, code_doc, spec_doc)
			project_root: Project whose chunks are searched
		"""
		return await asyncio.to_thread(self._search_sync, query, limit, type_filter, project_root)

	def _search_sync(
		self,
		query: str,
		limit: int,
		type_filter: Optional[str],
		project_root: str,
	) -> list[SearchResult]:
		if self.TABLE_NAME not in self.db.table_names():
			return []

		query_embedding = _as_floats(self.model.encode(query))
		table = self.db.open_table(self.TABLE_NAME)

		where = f"project = {_quote(str(Path(project_root).resolve()))}"
		if type_filter:
			where += f" AND doc_type = {_quote(type_filter)}"

		rows = table.search(query_embedding).where(where, prefilter=True).limit(limit).to_list()
		return [
			SearchResult(
				relative_path=r["relative_path"],
				doc_type=r["doc_type"],
				score=1.0 / (1.0 + float(r.get("_distance", 0.0))),
				snippet=r["content"],
			)
			for r in rows
		]
