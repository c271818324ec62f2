"""Tests for config loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from ruleforge.core.config import (
    RuleForgeConfig,
    ensure_gitignore,
    get_state_dir,
    load_config,
    read_toml,
)
from ruleforge.core.errors import ConfigError


class TestLoadConfig:
    def test_defaults_when_no_config_file(self, tmp_path: Path):
        """Without a ruleforge.toml, load_config should return defaults."""
        config = load_config(tmp_path)

        assert isinstance(config, RuleForgeConfig)
        assert config.distill.min_confidence == 0.85
        assert config.gate.auto_apply_threshold == 0.95
        assert config.gate.propose_threshold == 0.80
        assert config.pipeline.max_parallel_targets == 8
        assert config.fleet_manifest == "fleet.toml"

    def test_loads_sections(self, tmp_path: Path):
        (tmp_path / "ruleforge.toml").write_text("""\
[general]
state_dir = ".forge-state"
fleet_manifest = "repos.toml"

[distill]
min_confidence = 0.9

[gate]
auto_apply_threshold = 0.99
propose_threshold = 0.7

[executor]
action_timeout = 5

[scoring]
critical = 20
""")
        config = load_config(tmp_path)

        assert config.state_dir == ".forge-state"
        assert config.fleet_manifest == "repos.toml"
        assert config.distill.min_confidence == 0.9
        assert config.gate.auto_apply_threshold == 0.99
        assert config.gate.propose_threshold == 0.7
        assert config.executor.action_timeout == 5
        assert config.executor.lock_ttl == 60.0
        assert config.scoring.critical == 20
        assert config.scoring.warning == 5

    def test_unknown_keys_are_ignored(self, tmp_path: Path):
        (tmp_path / "ruleforge.toml").write_text("[gate]\nhysteresis = 0.1\n")
        assert load_config(tmp_path).gate.auto_apply_threshold == 0.95

    def test_malformed_toml(self, tmp_path: Path):
        (tmp_path / "ruleforge.toml").write_text("[gate\n")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    @pytest.mark.parametrize(
        "content",
        [
            "[gate]\nauto_apply_threshold = 1.5\n",
            "[gate]\nauto_apply_threshold = 0.8\npropose_threshold = 0.9\n",
            "[executor]\nlock_ttl = 0\n",
            "[executor]\naction_timeout = 60\nlock_ttl = 60\n",
            "[pipeline]\nmax_parallel_targets = 0\n",
            "[scoring]\ninfo = -1\n",
        ],
    )
    def test_invalid_values(self, tmp_path: Path, content: str):
        (tmp_path / "ruleforge.toml").write_text(content)
        with pytest.raises(ConfigError):
            load_config(tmp_path)


class TestReadToml:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            read_toml(tmp_path / "fleet.toml")

    def test_parses(self, tmp_path: Path):
        path = tmp_path / "fleet.toml"
        path.write_text('[[targets]]\nforge = "github"\n')
        assert read_toml(path) == {"targets": [{"forge": "github"}]}


class TestStateDir:
    def test_created_under_project(self, tmp_path: Path):
        state = get_state_dir(tmp_path)
        assert state == tmp_path / ".ruleforge"
        assert state.is_dir()

    def test_gitignore_entry_added_once(self, tmp_path: Path):
        (tmp_path / ".gitignore").write_text("build/")
        ensure_gitignore(tmp_path)
        ensure_gitignore(tmp_path)
        assert (tmp_path / ".gitignore").read_text() == "build/\n.ruleforge/\n"
