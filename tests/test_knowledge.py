"""Tests for the project index and context preparation."""

from pathlib import Path

import pytest

from pilot_orchestrator.collaborators import SearchResult
from pilot_orchestrator.config import ProjectSettings
from pilot_orchestrator.knowledge.context import (
	CODE_CHARS,
	NO_CODE_CONTEXT,
	NO_REFERENCE_CONTEXT,
	IndexContextPreparer,
)
from pilot_orchestrator.knowledge.index import (
	DOC_TYPE_CODE,
	DOC_TYPE_CODE_DOC,
	DOC_TYPE_SPEC_DOC,
	ProjectIndex,
)
from tests.helpers import FakeIndex, make_task

KEYWORDS = ["config", "parser", "network", "storage"]


class KeywordModel:
	"""Embeds text as keyword counts so searches are deterministic."""

	def _embed(self, text: str) -> list[float]:
		lowered = text.lower()
		return [float(lowered.count(word)) + 0.01 for word in KEYWORDS]

	def encode(self, texts):
		if isinstance(texts, str):
			return self._embed(texts)
		return [self._embed(t) for t in texts]


def make_project(root: Path) -> Path:
	(root / "src").mkdir(parents=True)
	(root / "src" / "config.rs").write_text("// config loading\npub fn load_config() {}\n")
	(root / "src" / "net.rs").write_text("// network client\npub fn connect() {}\n")
	(root / "target" / "debug").mkdir(parents=True)
	(root / "target" / "debug" / "build.rs").write_text("// generated\n")
	(root / "docs" / "specifications").mkdir(parents=True)
	(root / "docs" / "specifications" / "storage.md").write_text("# Storage\n\nThe storage layer.\n")
	(root / "docs" / "architecture.md").write_text("# Architecture\n\nOverview.\n")
	(root / "docs" / "code_documentation").mkdir(parents=True)
	(root / "docs" / "code_documentation" / "config.md").write_text("# Config\n\nHow config works.\n")
	return root


@pytest.fixture
def index(tmp_path: Path) -> ProjectIndex:
	index = ProjectIndex(tmp_path / "index")
	index._model = KeywordModel()
	return index


class TestDiscovery:
	def test_classifies_files(self, tmp_path: Path, index: ProjectIndex):
		root = make_project(tmp_path / "project")
		found = {str(path.relative_to(root.resolve())): doc_type for path, doc_type in index.discover_files(root.resolve())}

		assert found["src/config.rs"] == DOC_TYPE_CODE
		assert found["src/net.rs"] == DOC_TYPE_CODE
		assert found["docs/specifications/storage.md"] == DOC_TYPE_SPEC_DOC
		assert found["docs/architecture.md"] == DOC_TYPE_SPEC_DOC
		assert found["docs/code_documentation/config.md"] == DOC_TYPE_CODE_DOC
		assert "target/debug/build.rs" not in found

	def test_split_sections(self, index: ProjectIndex):
		sections = index._split_sections("intro text\n# One\nbody one\n## Two\nbody two\n")
		assert sections == [("Introduction", "intro text"), ("One", "body one"), ("Two", "body two")]

	def test_chunk_text_overlaps(self, index: ProjectIndex):
		words = [f"w{i}" for i in range(1000)]
		chunks = index._chunk_text(" ".join(words))
		assert len(chunks) > 1
		first = chunks[0].split()
		second = chunks[1].split()
		assert first[0] == "w0"
		assert second[0] in first

	def test_chunk_empty_text(self, index: ProjectIndex):
		assert index._chunk_text("   \n") == []


class TestRefreshAndSearch:
	@pytest.mark.asyncio
	async def test_refresh_then_search_by_type(self, tmp_path: Path, index: ProjectIndex):
		root = make_project(tmp_path / "project")
		stats = await index.refresh(str(root), ProjectSettings())
		assert stats.total_files == 5
		assert stats.total_chunks >= 5

		hits = await index.search("config", 5, DOC_TYPE_CODE, str(root))
		assert hits
		assert hits[0].relative_path == "src/config.rs"
		assert all(h.doc_type == DOC_TYPE_CODE for h in hits)

		docs = await index.search("storage", 5, DOC_TYPE_SPEC_DOC, str(root))
		assert docs[0].relative_path == "docs/specifications/storage.md"

	@pytest.mark.asyncio
	async def test_refresh_replaces_project_rows(self, tmp_path: Path, index: ProjectIndex):
		root = make_project(tmp_path / "project")
		await index.refresh(str(root))
		(root / "src" / "net.rs").unlink()
		await index.refresh(str(root))

		hits = await index.search("network", 10, DOC_TYPE_CODE, str(root))
		assert "src/net.rs" not in [h.relative_path for h in hits]

	@pytest.mark.asyncio
	async def test_projects_are_isolated(self, tmp_path: Path, index: ProjectIndex):
		first = make_project(tmp_path / "first")
		second = tmp_path / "second"
		(second / "src").mkdir(parents=True)
		(second / "src" / "parser.rs").write_text("// parser\n")
		await index.refresh(str(first))
		await index.refresh(str(second))

		hits = await index.search("config", 10, None, str(second))
		assert [h.relative_path for h in hits] == ["src/parser.rs"]

	@pytest.mark.asyncio
	async def test_search_before_refresh(self, tmp_path: Path, index: ProjectIndex):
		assert await index.search("anything", 3, None, str(tmp_path)) == []

	@pytest.mark.asyncio
	async def test_refresh_missing_directory(self, tmp_path: Path, index: ProjectIndex):
		with pytest.raises(ValueError):
			await index.refresh(str(tmp_path / "missing"))


class TestContextPreparer:
	@pytest.mark.asyncio
	async def test_placeholders_when_nothing_found(self, tmp_path: Path):
		code, reference = await IndexContextPreparer(FakeIndex()).prepare(
			make_task("T1"), str(tmp_path), ProjectSettings()
		)
		assert code == NO_CODE_CONTEXT
		assert reference == NO_REFERENCE_CONTEXT

	@pytest.mark.asyncio
	async def test_code_files_read_and_truncated(self, tmp_path: Path):
		(tmp_path / "src").mkdir()
		(tmp_path / "src" / "big.rs").write_text("x" * (CODE_CHARS + 500))
		(tmp_path / "src" / "small.rs").write_text("fn small() {}")
		results = [
			SearchResult("src/big.rs", DOC_TYPE_CODE, 0.9),
			SearchResult("src/big.rs", DOC_TYPE_CODE, 0.8),
			SearchResult("src/small.rs", DOC_TYPE_CODE, 0.7),
			SearchResult("src/third.rs", DOC_TYPE_CODE, 0.6, snippet="fn third() {}"),
		]
		code, _ = await IndexContextPreparer(FakeIndex(results)).prepare(
			make_task("T1"), str(tmp_path), ProjectSettings()
		)

		assert "--- Relevant Code File: src/big.rs (Score: 0.90) ---" in code
		assert "x" * CODE_CHARS in code
		assert "x" * (CODE_CHARS + 1) not in code
		assert "src/small.rs" in code
		assert "third" not in code

	@pytest.mark.asyncio
	async def test_docs_fall_back_to_specs(self, tmp_path: Path):
		index = FakeIndex([SearchResult("docs/specifications/a.md", DOC_TYPE_SPEC_DOC, 0.5, snippet="spec text")])
		task = make_task("T1", description="Implement the parser")
		_, reference = await IndexContextPreparer(index).prepare(task, str(tmp_path), ProjectSettings())

		assert "docs/specifications/a.md" in reference
		assert "spec text" in reference
		assert ("Implement the parser", DOC_TYPE_CODE_DOC) in index.queries
		assert ("Implement the parser", DOC_TYPE_SPEC_DOC) in index.queries
