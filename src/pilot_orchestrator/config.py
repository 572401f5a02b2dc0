"""Configuration: app paths via platformdirs, runtime settings, per-project config."""

import json
import os
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import platformdirs
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

APP_NAME = "pilot-orchestrator"
APP_AUTHOR = "pilot-orchestrator"

PROJECT_CONFIG_FILE = "pilot.toml"

DEFAULT_STAGES = ["fmt", "check", "clippy", "test"]

DEFAULT_STAGE_COMMANDS: dict[str, list[str]] = {
	"fmt": ["cargo", "fmt", "--all", "--check"],
	"check": ["cargo", "check", "--all-targets", "--all-features"],
	"clippy": ["cargo", "clippy", "--all-targets", "--all-features", "--", "-D", "warnings"],
	"test": ["cargo", "test", "--all-targets", "--all-features", "--no-fail-fast"],
}


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	settings_file: Path = field(init=False)
	sessions_db_path: Path = field(init=False)
	index_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.settings_file = self.config_dir / "settings.json"
		self.sessions_db_path = self.data_dir / "sessions.db"
		self.index_db_path = self.data_dir / "knowledge.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def _apply_env_overrides(config: Config) -> Config:
	"""Apply PILOT_ORCHESTRATOR_* environment variable overrides."""
	env_map = {
		"PILOT_ORCHESTRATOR_CONFIG_DIR": "config_dir",
		"PILOT_ORCHESTRATOR_DATA_DIR": "data_dir",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))
	level = os.getenv("LOG_LEVEL")
	if level:
		config.log_level = level.upper()
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if hasattr(config, key):
			if key in path_fields:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config


class AutonomyLevel(str, Enum):
	FULL_AUTOPILOT = "full_autopilot"
	APPROVAL_CHECKPOINTS = "approval_checkpoints"
	MANUAL_STEP_THROUGH = "manual_step_through"


class GitCommitStrategy(str, Enum):
	PER_TASK = "per_task"
	PER_FEATURE = "per_feature"
	MANUAL = "manual"


class ProjectSettings(BaseModel):
	"""Runtime settings, snapshotted at the start of every loop iteration."""
	primary_model_alias: str = Field(default="", description="Model used for generation")
	secondary_model_alias: str = Field(default="", description="Model used for summaries")
	api_key: Optional[str] = Field(default=None)
	autonomy_level: AutonomyLevel = Field(default=AutonomyLevel.FULL_AUTOPILOT)
	git_commit_strategy: GitCommitStrategy = Field(default=GitCommitStrategy.PER_TASK)
	max_self_correction_attempts: int = Field(default=3, ge=0, description="Retries after the first execution")
	verification_stages: list[str] = Field(default_factory=lambda: list(DEFAULT_STAGES))


def load_settings(path: Optional[Path] = None) -> ProjectSettings:
	"""Load settings JSON, falling back to defaults when the file is absent."""
	path = path or get_config().settings_file
	if not path.exists():
		return ProjectSettings()
	try:
		return ProjectSettings.model_validate_json(path.read_text(encoding="utf-8"))
	except ValidationError as e:
		raise ConfigurationError(f"Invalid settings file {path}: {e}") from e


def save_settings(settings: ProjectSettings, path: Optional[Path] = None) -> Path:
	"""Write settings JSON. The API key is never written to disk."""
	path = path or get_config().settings_file
	path.parent.mkdir(parents=True, exist_ok=True)
	data = settings.model_dump(mode="json", exclude={"api_key"})
	path.write_text(json.dumps(data, indent=2), encoding="utf-8")
	return path


class ProjectConfig(BaseModel):
	"""Per-project layout and stage commands, read from pilot.toml."""
	code_root: str = "."
	specs_dir: str = "docs/specifications"
	architecture_file: str = "docs/architecture.md"
	code_docs_dir: str = "docs/code_documentation"
	stage_commands: dict[str, list[str]] = Field(
		default_factory=lambda: {k: list(v) for k, v in DEFAULT_STAGE_COMMANDS.items()}
	)

	@classmethod
	def load(cls, project_root: Path) -> "ProjectConfig":
		"""Load pilot.toml from the project root; missing file means defaults."""
		config_path = Path(project_root) / PROJECT_CONFIG_FILE
		if not config_path.exists():
			return cls()
		try:
			with open(config_path, "rb") as f:
				data = tomllib.load(f)
		except tomllib.TOMLDecodeError as e:
			raise ConfigurationError(f"Failed to parse {PROJECT_CONFIG_FILE}: {e}") from e

		# Stage tables merge over the defaults instead of replacing them
		stages = data.pop("stages", {})
		try:
			config = cls.model_validate(data)
		except ValidationError as e:
			raise ConfigurationError(f"Invalid {PROJECT_CONFIG_FILE}: {e}") from e
		for name, command in stages.items():
			if isinstance(command, str):
				command = command.split()
			config.stage_commands[name] = list(command)
		return config

	def code_path(self, project_root: Path) -> Path:
		return (Path(project_root) / self.code_root).resolve()
