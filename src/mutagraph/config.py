"""Configuration management for MutaGraph."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from mutagraph.exceptions import ConfigError

MUTAGRAPH_DIR = ".mutagraph"
CONFIG_FILE = "config.json"
STATE_DB_FILE = "state.db"
BACKUP_DIR = "backups"
TRACE_FILE = "trace.jsonl"


class ScanConfig(BaseModel):
    """Which files are scanned and which operators are applied."""

    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "__pycache__",
            ".git",
            ".mutagraph",
            ".venv",
            "venv",
            "build",
            "dist",
            "tests",
            "test_*.py",
            "*_test.py",
            "conftest.py",
            "setup.py",
        ]
    )
    max_file_size_kb: int = 500
    preset: Literal["fast", "default", "thorough"] = "default"
    operators: list[str] = Field(default_factory=list)  # explicit ids override preset
    pragma: str = "pragma: no mutate"


class ReductionConfig(BaseModel):
    """Optimization pipeline switches."""

    equivalence: bool = True
    subsumption: bool = True
    cluster_by: Literal["operator", "location", "shape"] | None = None
    cluster_prefix_trim: int = 0  # segments dropped from the coordinate for "location"


class ExecutionConfig(BaseModel):
    """How targeted tests are run."""

    timeout_ms: int = 2000
    test_workers: int = 1
    schemata: bool = True
    schemata_batch_size: int = 50
    python: str = ""  # empty = current interpreter
    pytest_args: list[str] = Field(default_factory=lambda: ["-q", "-p", "no:cacheprovider"])


class CoverageConfig(BaseModel):
    """Where coverage comes from."""

    # "trace": replay recorded events; "exhaustive": every test covers every node
    mode: Literal["trace", "exhaustive"] = "trace"
    trace_file: str = f"{MUTAGRAPH_DIR}/{TRACE_FILE}"
    test_paths: list[str] = Field(default_factory=lambda: ["tests"])
    refresh_workers: int = 4


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    scan: ScanConfig = Field(default_factory=ScanConfig)
    reduction: ReductionConfig = Field(default_factory=ReductionConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    coverage: CoverageConfig = Field(default_factory=CoverageConfig)

    def fingerprint(self) -> str:
        """Digest of every setting that changes which mutants exist or how they are judged."""
        relevant = {
            "preset": self.scan.preset,
            "operators": sorted(self.scan.operators),
            "pragma": self.scan.pragma,
            "reduction": self.reduction.model_dump(),
        }
        return hashlib.sha256(json.dumps(relevant, sort_keys=True).encode()).hexdigest()[:16]


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .mutagraph directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / MUTAGRAPH_DIR).is_dir():
            return current
        current = current.parent
    if (current / MUTAGRAPH_DIR).is_dir():
        return current
    return None


def get_mutagraph_dir(root: Path) -> Path:
    """Get the .mutagraph directory for a project root."""
    return root / MUTAGRAPH_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .mutagraph/config.json."""
    config_path = get_mutagraph_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .mutagraph/config.json."""
    mg_dir = get_mutagraph_dir(root)
    mg_dir.mkdir(parents=True, exist_ok=True)
    config_path = mg_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'execution.timeout_ms')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e
