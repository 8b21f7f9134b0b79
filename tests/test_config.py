"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from mutagraph.config import (
    ProjectConfig,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from mutagraph.exceptions import ConfigError
from mutagraph.sources import collect_files


class TestConfig:
    def test_default_config(self):
        config = ProjectConfig()
        assert config.scan.preset == "default"
        assert config.execution.timeout_ms == 2000
        assert config.execution.schemata is True
        assert config.reduction.cluster_by is None
        assert config.coverage.mode == "trace"
        assert len(config.scan.exclude_patterns) > 0

    def test_save_and_load(self, tmp_path: Path):
        config = ProjectConfig(name="test-project")
        config.scan.preset = "thorough"
        config.reduction.cluster_by = "location"

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded.name == "test-project"
        assert loaded.scan.preset == "thorough"
        assert loaded.reduction.cluster_by == "location"

    def test_load_without_file(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config.name == tmp_path.name

    def test_load_invalid_file(self, tmp_path: Path):
        (tmp_path / ".mutagraph").mkdir()
        (tmp_path / ".mutagraph" / "config.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_find_project_root(self, tmp_path: Path):
        # No .mutagraph dir - should return None
        assert find_project_root(tmp_path) is None

        (tmp_path / ".mutagraph").mkdir()
        assert find_project_root(tmp_path) == tmp_path

        # Should find from subdirectory
        sub = tmp_path / "src" / "module"
        sub.mkdir(parents=True)
        assert find_project_root(sub) == tmp_path

    def test_set_config_value(self):
        config = ProjectConfig()
        new_config = set_config_value(config, "execution.timeout_ms", 500)
        assert new_config.execution.timeout_ms == 500
        assert config.execution.timeout_ms == 2000

        new_config = set_config_value(new_config, "scan.operators", ["aor:add->sub"])
        assert new_config.scan.operators == ["aor:add->sub"]

    def test_set_invalid_key(self):
        config = ProjectConfig()
        with pytest.raises(KeyError):
            set_config_value(config, "nonexistent.key", "value")
        with pytest.raises(KeyError):
            set_config_value(config, "execution.missing", 1)

    def test_set_invalid_value(self):
        config = ProjectConfig()
        with pytest.raises(ConfigError):
            set_config_value(config, "coverage.mode", "psychic")
        with pytest.raises(ConfigError):
            set_config_value(config, "execution.timeout_ms", "soon")

    def test_fingerprint(self):
        config = ProjectConfig()
        baseline = config.fingerprint()

        slower = set_config_value(config, "execution.timeout_ms", 9000)
        assert slower.fingerprint() == baseline

        narrowed = set_config_value(config, "scan.operators", ["aor:add->sub"])
        assert narrowed.fingerprint() != baseline

        clustered = set_config_value(config, "reduction.cluster_by", "shape")
        assert clustered.fingerprint() != baseline

    def test_exclude_patterns(self, tmp_project: Path):
        (tmp_project / "build").mkdir()
        (tmp_project / "build" / "generated.py").write_text("X = 1\n")
        (tmp_project / "pkg").mkdir()
        (tmp_project / "pkg" / "core.py").write_text("def f():\n    return 1\n")
        (tmp_project / "pkg" / "core_test.py").write_text("def test_f():\n    pass\n")

        files = collect_files(tmp_project, ProjectConfig().scan)
        assert files == ["calc.py", "pkg/core.py"]
