"""
Plan Loader - reads pre-decomposed task lists.

A plan is either a YAML/JSON file with a top-level ``tasks`` list, or a
markdown specification whose YAML frontmatter carries that list:

```markdown
---
tasks:
  - id: t1
    description: Define the Config struct
    task_type: define_struct
  - id: t2
    description: Implement Config::load
    dependencies: [t1]
---
# Configuration
...
```
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..config import ProjectConfig, ProjectSettings
from ..errors import ConfigurationError
from ..models import TaskDraft

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n(.*))?$", re.DOTALL)


def parse_plan(content: str, source: str = "<plan>") -> list[TaskDraft]:
	"""
	Parse plan text into task drafts.

	Raises:
		ConfigurationError: Not parseable or not a valid task list
	"""
	suffix = Path(source).suffix.lower()
	try:
		if suffix == ".json":
			data = json.loads(content)
		elif suffix == ".md":
			match = FRONTMATTER_RE.match(content)
			if not match:
				raise ConfigurationError(f"No task frontmatter found in {source}")
			data = yaml.safe_load(match.group(1))
		else:
			data = yaml.safe_load(content)
	except (json.JSONDecodeError, yaml.YAMLError) as e:
		raise ConfigurationError(f"Invalid plan file {source}: {e}") from e

	entries: Any = data.get("tasks") if isinstance(data, dict) else data
	if not isinstance(entries, list):
		raise ConfigurationError(f"Plan {source} has no 'tasks' list")

	drafts = []
	for i, entry in enumerate(entries):
		try:
			drafts.append(TaskDraft.model_validate(entry))
		except ValidationError as e:
			raise ConfigurationError(f"Invalid task #{i + 1} in {source}: {e}") from e
	return drafts


def load_plan_file(path: Path) -> list[TaskDraft]:
	"""Read and parse a plan file."""
	try:
		content = path.read_text(encoding="utf-8")
	except OSError as e:
		raise ConfigurationError(f"Cannot read plan {path}: {e}") from e
	drafts = parse_plan(content, str(path))
	logger.info(f"Loaded {len(drafts)} task drafts from {path}")
	return drafts


class PlanFileDecomposer:
	"""
	Decomposer that reads the task list from disk instead of asking a model.

	``spec_ref`` is resolved against the project root, then the project's
	specs directory.
	"""

	async def decompose(self, spec_ref: str, project_root: str, settings: ProjectSettings) -> list[TaskDraft]:
		root = Path(project_root)
		candidates = [Path(spec_ref), root / spec_ref, root / ProjectConfig.load(root).specs_dir / spec_ref]
		for candidate in candidates:
			if candidate.is_file():
				return load_plan_file(candidate)
		raise ConfigurationError(f"Specification not found: {spec_ref}")
