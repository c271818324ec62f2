"""Configuration management for RuleForge (ruleforge.toml parsing + defaults)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ruleforge.core.errors import ConfigError

try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore[no-redef]
    except ImportError:
        tomllib = None  # type: ignore[assignment]


CONFIG_FILENAME = "ruleforge.toml"


@dataclass
class DistillConfig:
    min_confidence: float = 0.85


@dataclass
class GateConfig:
    auto_apply_threshold: float = 0.95
    propose_threshold: float = 0.80


@dataclass
class ExecutorConfig:
    action_timeout: float = 30.0
    lock_ttl: float = 60.0


@dataclass
class CacheConfig:
    ttl: float = 3600.0
    shards: int = 16


@dataclass
class PipelineConfig:
    max_parallel_targets: int = 8


@dataclass
class ScoringConfig:
    critical: int = 15
    warning: int = 5
    info: int = 1


@dataclass
class RuleForgeConfig:
    """Complete RuleForge configuration."""

    state_dir: str = ".ruleforge"
    fleet_manifest: str = "fleet.toml"
    patterns_file: str = "patterns.jsonl"
    distill: DistillConfig = field(default_factory=DistillConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)

    def validate(self) -> RuleForgeConfig:
        """Raise :class:`ConfigError` on values the engine cannot honour."""
        for name, value in (
            ("distill.min_confidence", self.distill.min_confidence),
            ("gate.auto_apply_threshold", self.gate.auto_apply_threshold),
            ("gate.propose_threshold", self.gate.propose_threshold),
        ):
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}")
        if self.gate.propose_threshold > self.gate.auto_apply_threshold:
            raise ConfigError("gate.propose_threshold must not exceed gate.auto_apply_threshold")
        if self.executor.action_timeout <= 0 or self.executor.lock_ttl <= 0:
            raise ConfigError("executor timeouts must be positive")
        if self.executor.lock_ttl <= self.executor.action_timeout:
            raise ConfigError("executor.lock_ttl must exceed executor.action_timeout")
        if self.cache.shards < 1:
            raise ConfigError("cache.shards must be at least 1")
        if self.pipeline.max_parallel_targets < 1:
            raise ConfigError("pipeline.max_parallel_targets must be at least 1")
        if min(self.scoring.critical, self.scoring.warning, self.scoring.info) < 0:
            raise ConfigError("scoring deductions must not be negative")
        return self


_SECTIONS = {
    "distill": ("min_confidence",),
    "gate": ("auto_apply_threshold", "propose_threshold"),
    "executor": ("action_timeout", "lock_ttl"),
    "cache": ("ttl", "shards"),
    "pipeline": ("max_parallel_targets",),
    "scoring": ("critical", "warning", "info"),
}


def load_config(project_path: Path | None = None) -> RuleForgeConfig:
    """Load configuration from ruleforge.toml if present, otherwise return defaults."""
    config = RuleForgeConfig()

    if project_path is None:
        project_path = Path.cwd()

    config_file = project_path / CONFIG_FILENAME
    if not config_file.exists():
        return config

    if tomllib is None:
        return config

    with open(config_file, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{config_file}: {exc}") from exc

    if "general" in data:
        gen = data["general"]
        for attr in ("state_dir", "fleet_manifest", "patterns_file"):
            if attr in gen:
                setattr(config, attr, gen[attr])

    for section, attrs in _SECTIONS.items():
        if section not in data:
            continue
        target = getattr(config, section)
        for attr in attrs:
            if attr in data[section]:
                setattr(target, attr, data[section][attr])

    return config.validate()


def get_state_dir(project_path: Path | None = None, config: RuleForgeConfig | None = None) -> Path:
    """Get or create the .ruleforge state directory."""
    if project_path is None:
        project_path = Path.cwd()
    state_dir = project_path / (config.state_dir if config else ".ruleforge")
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def ensure_gitignore(project_path: Path | None = None, entry: str = ".ruleforge/") -> None:
    """Add the state directory to .gitignore if not already present."""
    if project_path is None:
        project_path = Path.cwd()
    gitignore = project_path / ".gitignore"

    if gitignore.exists():
        content = gitignore.read_text()
        if entry in content:
            return
        if not content.endswith("\n"):
            content += "\n"
        content += f"{entry}\n"
        gitignore.write_text(content)
    else:
        gitignore.write_text(f"{entry}\n")


def read_toml(path: Path) -> dict:
    """Parse a TOML file, raising :class:`ConfigError` if it cannot be read."""
    if tomllib is None:
        raise ConfigError(f"Cannot read {path}: no TOML parser available (install tomli)")
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
