"""Adapters over local checkouts: fleet manifest, observations, repairs, patterns."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from ruleforge.core.config import read_toml
from ruleforge.core.errors import ActionFailed, ConfigError, ObservationUnavailable
from ruleforge.core.models import (
    ActionResult,
    ActionSpec,
    FactSnapshot,
    FeedbackRecord,
    Pattern,
    TargetRef,
)
from ruleforge.sources.base import ActionPort, ObservationSource, PatternSource

logger = logging.getLogger(__name__)

SETTINGS_PATH = ".forge/settings.json"
PROPOSALS_DIR = ".forge/proposals"

WELL_KNOWN_FILES = (
    "README.md",
    "LICENSE",
    "SECURITY.md",
    "CONTRIBUTING.md",
    "CHANGELOG.md",
    "CODE_OF_CONDUCT.md",
    ".gitignore",
    ".env",
    "Dockerfile",
    ".github/CODEOWNERS",
    ".github/dependabot.yml",
)

LICENSE_VARIANTS = ("LICENSE", "LICENSE.md", "LICENSE.txt", "COPYING")

DEPENDENCY_MANIFESTS = (
    "requirements.txt",
    "pyproject.toml",
    "Pipfile",
    "setup.py",
    "package.json",
    "Cargo.toml",
    "go.mod",
    "Gemfile",
    "pom.xml",
    "build.gradle",
    "composer.json",
)

DEPENDENCY_BOT_CONFIGS = (
    ".github/dependabot.yml",
    ".github/dependabot.yaml",
    "renovate.json",
    ".renovaterc",
    ".renovaterc.json",
)

CI_CONFIGS = (
    ".gitlab-ci.yml",
    ".circleci/config.yml",
    ".travis.yml",
    "Jenkinsfile",
    "azure-pipelines.yml",
)

LANGUAGE_EXTENSIONS = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".java": "java",
    ".kt": "kotlin",
    ".php": "php",
    ".cs": "csharp",
}

_TEST_FILE = re.compile(r"(^test_.*\.py$|_test\.(py|go)$|\.(test|spec)\.[jt]s$)")

SKIP_DIRS = {".git", ".forge", "node_modules", "venv", ".venv", "__pycache__", "dist", "build", "target"}


# ---------------------------------------------------------------------------
# Fleet manifest
# ---------------------------------------------------------------------------

@dataclass
class FleetTarget:
    ref: TargetRef
    path: Path


@dataclass
class FleetManifest:
    """Targets of the fleet and the local checkout backing each one."""

    targets: list[FleetTarget] = field(default_factory=list)

    def refs(self) -> list[TargetRef]:
        return [t.ref for t in self.targets]

    def get(self, target_id: str) -> FleetTarget | None:
        for t in self.targets:
            if t.ref.id == target_id:
                return t
        return None

    def path_for(self, target: TargetRef) -> Path | None:
        entry = self.get(target.id)
        return entry.path if entry else None


def load_fleet(manifest_path: Path) -> FleetManifest:
    """Load ``fleet.toml``.

    Each ``[[targets]]`` table names ``forge``, ``owner`` and ``name``;
    ``path`` (relative to the manifest) defaults to ``<owner>/<name>``.
    """
    if not manifest_path.exists():
        raise ConfigError(f"Fleet manifest not found: {manifest_path}")
    data = read_toml(manifest_path)

    base = manifest_path.parent
    fleet = FleetManifest()
    seen: set[str] = set()
    for i, entry in enumerate(data.get("targets", [])):
        try:
            ref = TargetRef(forge=entry["forge"], owner=entry["owner"], name=entry["name"])
        except (KeyError, TypeError) as exc:
            raise ConfigError(f"{manifest_path}: target #{i + 1} is missing {exc}") from exc
        if ref.id in seen:
            raise ConfigError(f"{manifest_path}: duplicate target {ref.id}")
        seen.add(ref.id)
        path = Path(entry.get("path", f"{ref.owner}/{ref.name}"))
        if not path.is_absolute():
            path = base / path
        fleet.targets.append(FleetTarget(ref=ref, path=path))
    return fleet


# ---------------------------------------------------------------------------
# Observation source
# ---------------------------------------------------------------------------

class DirectoryObservationSource(ObservationSource):
    """Derives facts from a target's local checkout and forge settings file."""

    def __init__(self, fleet: FleetManifest) -> None:
        self.fleet = fleet

    async def facts(self, target: TargetRef) -> FactSnapshot:
        path = self.fleet.path_for(target)
        if path is None:
            raise ObservationUnavailable(target.id, "not in fleet manifest")
        return await asyncio.to_thread(self._observe, target, path)

    def _observe(self, target: TargetRef, root: Path) -> FactSnapshot:
        if not root.is_dir():
            raise ObservationUnavailable(target.id, f"checkout missing at {root}")

        tags: set[str] = set()
        values: dict[str, Any] = {}

        for name in WELL_KNOWN_FILES:
            if (root / name).is_file():
                tags.add(f"has-file:{name}")
        if any((root / name).is_file() for name in LICENSE_VARIANTS):
            tags.add("has-file:LICENSE")

        if any((root / name).is_file() for name in DEPENDENCY_MANIFESTS):
            tags.add("has-dependency-manager")
        if any((root / name).is_file() for name in DEPENDENCY_BOT_CONFIGS):
            tags.add("has-dependency-bot")

        workflows = root / ".github" / "workflows"
        has_workflows = workflows.is_dir() and any(
            p.suffix in (".yml", ".yaml") for p in workflows.iterdir()
        )
        if has_workflows or any((root / name).exists() for name in CI_CONFIGS):
            tags.add("has-ci")

        languages: dict[str, int] = {}
        file_count = 0
        has_tests = (root / "tests").is_dir() or (root / "test").is_dir()
        for path in _walk(root):
            file_count += 1
            lang = LANGUAGE_EXTENSIONS.get(path.suffix)
            if lang:
                languages[lang] = languages.get(lang, 0) + 1
            if not has_tests and _TEST_FILE.search(path.name):
                has_tests = True
        if has_tests:
            tags.add("has-tests")
        for lang in languages:
            tags.add(f"language:{lang}")
        values["file-count"] = file_count
        if languages:
            values["primary-language"] = max(sorted(languages), key=lambda k: languages[k])

        self._read_settings(target, root, tags, values)
        return FactSnapshot(target_id=target.id, tags=frozenset(tags), values=values)

    def _read_settings(self, target: TargetRef, root: Path, tags: set[str], values: dict[str, Any]) -> None:
        settings_file = root / SETTINGS_PATH
        if not settings_file.exists():
            return
        try:
            settings = json.loads(settings_file.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise ObservationUnavailable(target.id, f"unreadable {SETTINGS_PATH}: {exc}") from exc
        if not isinstance(settings, dict):
            raise ObservationUnavailable(target.id, f"{SETTINGS_PATH} must hold a JSON object")

        for key, value in settings.items():
            if key == "visibility":
                values["visibility"] = value
                if value == "public":
                    tags.add("is-public")
            elif key == "maintainers" and isinstance(value, list):
                values["maintainers"] = len(value)
                if len(value) > 1:
                    tags.add("has-multiple-maintainers")
            elif isinstance(value, bool):
                if value:
                    tags.add(key)
            elif isinstance(value, (int, float, str)):
                values[key] = value


def _walk(root: Path) -> Iterator[Path]:
    for entry in root.iterdir():
        if entry.is_dir():
            if entry.name not in SKIP_DIRS:
                yield from _walk(entry)
        elif entry.is_file():
            yield entry


# ---------------------------------------------------------------------------
# Action port
# ---------------------------------------------------------------------------

class FileSystemActionPort(ActionPort):
    """Applies repairs directly to the local checkouts of the fleet.

    Every action is idempotent: a target already in the desired state
    reports ``unchanged``.
    """

    def __init__(self, fleet: FleetManifest) -> None:
        self.fleet = fleet

    async def apply(self, target: TargetRef, action: ActionSpec) -> ActionResult:
        root = self.fleet.path_for(target)
        if root is None:
            return ActionResult.failed(f"{target.id} is not in the fleet manifest")
        return await asyncio.to_thread(self._apply, target, root, action)

    def _apply(self, target: TargetRef, root: Path, action: ActionSpec) -> ActionResult:
        handler = {
            "inject-file": self._inject_file,
            "modify-setting": self._modify_setting,
            "open-proposal": self._open_proposal,
        }.get(action.kind)
        if handler is None:
            return ActionResult.failed(f"unsupported action kind {action.kind!r}")
        try:
            return handler(target, root, action.params)
        except KeyError as exc:
            return ActionResult.failed(f"{action.kind} is missing parameter {exc}")
        except OSError as exc:
            raise ActionFailed(f"{action.kind} on {target.id}: {exc}") from exc

    def _inject_file(self, target: TargetRef, root: Path, params: dict) -> ActionResult:
        dest = _inside(root, params["path"])
        if dest is None:
            return ActionResult.failed(f"path {params['path']!r} escapes the checkout")
        if dest.exists():
            return ActionResult.unchanged(f"{params['path']} already present")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(render(params.get("content", ""), target))
        return ActionResult.applied(f"created {params['path']}")

    def _modify_setting(self, target: TargetRef, root: Path, params: dict) -> ActionResult:
        setting, value = params["setting"], params["value"]
        settings_file = root / SETTINGS_PATH
        settings: dict[str, Any] = {}
        if settings_file.exists():
            try:
                settings = json.loads(settings_file.read_text())
            except json.JSONDecodeError as exc:
                return ActionResult.failed(f"unreadable {SETTINGS_PATH}: {exc}")
        if settings.get(setting) == value:
            return ActionResult.unchanged(f"{setting} already {value!r}")
        settings[setting] = value
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        settings_file.write_text(json.dumps(settings, indent=2, sort_keys=True) + "\n")
        return ActionResult.applied(f"set {setting} = {value!r}")

    def _open_proposal(self, target: TargetRef, root: Path, params: dict) -> ActionResult:
        title = params["title"]
        dest = root / PROPOSALS_DIR / f"{_slug(title)}.md"
        if dest.exists():
            return ActionResult.unchanged(f"proposal '{title}' already open")
        dest.parent.mkdir(parents=True, exist_ok=True)
        body = render(params.get("body", ""), target)
        dest.write_text(f"# {title}\n\n{body}\n")
        return ActionResult.applied(f"opened proposal '{title}'")


def render(template: str, target: TargetRef) -> str:
    """Fill ``{forge}``, ``{owner}`` and ``{name}`` placeholders."""
    return (
        template.replace("{forge}", target.forge)
        .replace("{owner}", target.owner)
        .replace("{name}", target.name)
    )


def _inside(root: Path, relative: str) -> Path | None:
    dest = (root / relative).resolve()
    try:
        dest.relative_to(root.resolve())
    except ValueError:
        return None
    return dest


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "proposal"


# ---------------------------------------------------------------------------
# Pattern source
# ---------------------------------------------------------------------------

def pattern_from_dict(data: dict[str, Any]) -> Pattern:
    if isinstance(data["features"], str):
        raise ValueError("features must be a list")
    return Pattern(
        id=str(data["id"]),
        features=frozenset(data["features"]),
        outcome=str(data["outcome"]),
        confidence=float(data["confidence"]),
        origin=str(data.get("origin", "")),
    )


def feedback_to_dict(record: FeedbackRecord) -> dict[str, Any]:
    return {
        "target": record.target_id,
        "rule": record.rule_id,
        "status": record.status,
        "succeeded": record.succeeded,
        "patterns": record.pattern_ids,
        "pattern_confidence": record.pattern_confidence,
        "success_rate": record.success_rate,
        "emitted_at": record.emitted_at.isoformat(),
    }


class JsonlPatternSource(PatternSource):
    """Reads patterns from a JSON-lines file and appends feedback to another.

    With a ``cursor_path`` the byte offset of the last consumed line is
    persisted, so each cycle only sees patterns appended since the previous
    one.
    """

    def __init__(
        self,
        patterns_path: Path,
        feedback_path: Path | None = None,
        cursor_path: Path | None = None,
    ) -> None:
        self.patterns_path = patterns_path
        self.feedback_path = feedback_path
        self.cursor_path = cursor_path
        self._lock = threading.Lock()

    def next_patterns(self) -> Iterator[Pattern]:
        if not self.patterns_path.exists():
            return
        offset = self._read_cursor()
        with open(self.patterns_path, "rb") as f:
            f.seek(offset)
            for raw in iter(f.readline, b""):
                if not raw.endswith(b"\n"):
                    # writer is mid-line; resume from here next cycle
                    logger.debug("Pattern feed %s ends in a partial line", self.patterns_path)
                    break
                pattern = self._parse(raw)
                self._write_cursor(f.tell())
                if pattern is not None:
                    yield pattern

    def _parse(self, raw: bytes) -> Pattern | None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return None
        try:
            return pattern_from_dict(json.loads(line))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed pattern in %s: %s", self.patterns_path, exc)
            return None

    def feedback(self, record: FeedbackRecord) -> None:
        if self.feedback_path is None:
            return
        line = json.dumps(feedback_to_dict(record), default=str)
        with self._lock:
            self.feedback_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.feedback_path, "a") as f:
                f.write(line + "\n")

    def read_feedback(self) -> list[dict[str, Any]]:
        if self.feedback_path is None or not self.feedback_path.exists():
            return []
        return [json.loads(line) for line in self.feedback_path.read_text().splitlines() if line.strip()]

    def _read_cursor(self) -> int:
        if self.cursor_path is None or not self.cursor_path.exists():
            return 0
        try:
            data = json.loads(self.cursor_path.read_text())
        except json.JSONDecodeError:
            logger.warning("Pattern cursor %s is corrupt; rereading from the start", self.cursor_path)
            return 0
        if data.get("file") != str(self.patterns_path):
            return 0
        offset = int(data.get("offset", 0))
        if offset > self.patterns_path.stat().st_size:
            return 0
        return offset

    def _write_cursor(self, offset: int) -> None:
        if self.cursor_path is None:
            return
        self.cursor_path.write_text(json.dumps({
            "file": str(self.patterns_path),
            "offset": offset,
            "updated_at": datetime.now().isoformat(),
        }))
