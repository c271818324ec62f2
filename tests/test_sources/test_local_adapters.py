"""Tests for the local-checkout adapters."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from ruleforge.core.errors import ConfigError, ObservationUnavailable
from ruleforge.core.models import ActionSpec, ActionStatus, FeedbackRecord, TargetRef
from ruleforge.sources.local import (
    SETTINGS_PATH,
    DirectoryObservationSource,
    FileSystemActionPort,
    JsonlPatternSource,
    load_fleet,
    render,
)

API = TargetRef("github", "acme", "api")


def _fleet(tmp_path: Path, extra: str = "") -> Path:
    manifest = tmp_path / "fleet.toml"
    manifest.write_text(
        '[[targets]]\nforge = "github"\nowner = "acme"\nname = "api"\n'
        '\n[[targets]]\nforge = "gitlab"\nowner = "acme"\nname = "web"\npath = "checkouts/web"\n'
        + extra
    )
    return manifest


class TestLoadFleet:
    def test_paths_default_to_owner_name(self, tmp_path: Path):
        fleet = load_fleet(_fleet(tmp_path))
        assert [r.id for r in fleet.refs()] == ["github:acme/api", "gitlab:acme/web"]
        assert fleet.path_for(API) == tmp_path / "acme" / "api"
        assert fleet.get("gitlab:acme/web").path == tmp_path / "checkouts" / "web"
        assert fleet.get("github:acme/none") is None

    def test_missing_manifest(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            load_fleet(tmp_path / "fleet.toml")

    def test_missing_key(self, tmp_path: Path):
        manifest = tmp_path / "fleet.toml"
        manifest.write_text('[[targets]]\nforge = "github"\nname = "api"\n')
        with pytest.raises(ConfigError, match="owner"):
            load_fleet(manifest)

    def test_duplicate_target(self, tmp_path: Path):
        extra = '\n[[targets]]\nforge = "github"\nowner = "acme"\nname = "api"\n'
        with pytest.raises(ConfigError, match="duplicate"):
            load_fleet(_fleet(tmp_path, extra))


def _checkout(tmp_path: Path) -> Path:
    root = tmp_path / "acme" / "api"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("print('hi')\n")
    (root / "src" / "util.py").write_text("")
    (root / "web.js").write_text("")
    (root / "README.md").write_text("# api\n")
    (root / "LICENSE.txt").write_text("MIT\n")
    (root / "requirements.txt").write_text("click\n")
    (root / "test_app.py").write_text("")
    (root / "node_modules" / "left-pad").mkdir(parents=True)
    (root / "node_modules" / "left-pad" / "index.js").write_text("")
    return root


class TestDirectoryObservationSource:
    def test_file_and_language_facts(self, tmp_path: Path):
        _checkout(tmp_path)
        source = DirectoryObservationSource(load_fleet(_fleet(tmp_path)))

        facts = asyncio.run(source.facts(API))

        assert {"has-file:README.md", "has-file:LICENSE", "has-dependency-manager", "has-tests",
                "language:python", "language:javascript"} <= facts.tags
        assert "has-dependency-bot" not in facts.tags
        assert "has-ci" not in facts.tags
        assert facts.values["primary-language"] == "python"
        # node_modules is skipped
        assert facts.values["file-count"] == 7

    def test_ci_and_bot_detection(self, tmp_path: Path):
        root = _checkout(tmp_path)
        (root / ".github" / "workflows").mkdir(parents=True)
        (root / ".github" / "workflows" / "ci.yml").write_text("on: push\n")
        (root / ".github" / "dependabot.yml").write_text("version: 2\n")
        facts = asyncio.run(DirectoryObservationSource(load_fleet(_fleet(tmp_path))).facts(API))
        assert {"has-ci", "has-dependency-bot", "has-file:.github/dependabot.yml"} <= facts.tags

    def test_settings_become_facts(self, tmp_path: Path):
        root = _checkout(tmp_path)
        (root / ".forge").mkdir()
        (root / SETTINGS_PATH).write_text(json.dumps({
            "visibility": "public",
            "maintainers": ["ana", "bo"],
            "branch-protection": True,
            "archived": False,
            "open-issues": 12,
        }))
        facts = asyncio.run(DirectoryObservationSource(load_fleet(_fleet(tmp_path))).facts(API))
        assert {"is-public", "has-multiple-maintainers", "branch-protection"} <= facts.tags
        assert "archived" not in facts.tags
        assert facts.values["maintainers"] == 2
        assert facts.values["open-issues"] == 12

    def test_corrupt_settings(self, tmp_path: Path):
        root = _checkout(tmp_path)
        (root / ".forge").mkdir()
        (root / SETTINGS_PATH).write_text("{nope")
        with pytest.raises(ObservationUnavailable):
            asyncio.run(DirectoryObservationSource(load_fleet(_fleet(tmp_path))).facts(API))

    def test_missing_checkout_and_unknown_target(self, tmp_path: Path):
        source = DirectoryObservationSource(load_fleet(_fleet(tmp_path)))
        with pytest.raises(ObservationUnavailable, match="checkout missing"):
            asyncio.run(source.facts(API))
        with pytest.raises(ObservationUnavailable, match="not in fleet"):
            asyncio.run(source.facts(TargetRef("github", "acme", "ghost")))


class TestFileSystemActionPort:
    def _port(self, tmp_path: Path) -> tuple[FileSystemActionPort, Path]:
        root = _checkout(tmp_path)
        return FileSystemActionPort(load_fleet(_fleet(tmp_path))), root

    def test_inject_file_is_idempotent(self, tmp_path: Path):
        port, root = self._port(tmp_path)
        action = ActionSpec("inject-file", {"path": "SECURITY.md", "content": "Report to {owner}/{name}\n"})

        first = asyncio.run(port.apply(API, action))
        second = asyncio.run(port.apply(API, action))

        assert first.status == ActionStatus.APPLIED
        assert second.status == ActionStatus.UNCHANGED
        assert (root / "SECURITY.md").read_text() == "Report to acme/api\n"

    def test_inject_file_refuses_escape(self, tmp_path: Path):
        port, _ = self._port(tmp_path)
        result = asyncio.run(port.apply(API, ActionSpec("inject-file", {"path": "../../evil"})))
        assert result.status == ActionStatus.FAILED

    def test_modify_setting(self, tmp_path: Path):
        port, root = self._port(tmp_path)
        action = ActionSpec("modify-setting", {"setting": "branch-protection", "value": True})

        assert asyncio.run(port.apply(API, action)).status == ActionStatus.APPLIED
        assert asyncio.run(port.apply(API, action)).status == ActionStatus.UNCHANGED
        assert json.loads((root / SETTINGS_PATH).read_text()) == {"branch-protection": True}

    def test_open_proposal(self, tmp_path: Path):
        port, root = self._port(tmp_path)
        action = ActionSpec("open-proposal", {"title": "Add CI workflow", "body": "For {name}."})
        assert asyncio.run(port.apply(API, action)).status == ActionStatus.APPLIED
        assert asyncio.run(port.apply(API, action)).status == ActionStatus.UNCHANGED
        text = (root / ".forge" / "proposals" / "add-ci-workflow.md").read_text()
        assert text == "# Add CI workflow\n\nFor api.\n"

    @pytest.mark.parametrize(
        "action",
        [ActionSpec("delete-repo", {}), ActionSpec("modify-setting", {"setting": "x"})],
    )
    def test_unsupported_or_incomplete_actions_fail(self, tmp_path: Path, action):
        port, _ = self._port(tmp_path)
        assert asyncio.run(port.apply(API, action)).status == ActionStatus.FAILED

    def test_render(self):
        assert render("{forge}:{owner}/{name}", API) == "github:acme/api"


def _write_patterns(path: Path, *lines: str) -> None:
    with open(path, "a") as f:
        for line in lines:
            f.write(line + "\n")


PATTERN = '{"id": "%s", "features": ["missing-readme"], "outcome": "onboarding-failure", "confidence": 0.9}'


class TestJsonlPatternSource:
    def test_reads_and_skips_malformed(self, tmp_path: Path):
        path = tmp_path / "patterns.jsonl"
        _write_patterns(path, PATTERN % "p-1", "{broken", "", '{"id": "p-x", "features": "a"}', PATTERN % "p-2")
        assert [p.id for p in JsonlPatternSource(path).next_patterns()] == ["p-1", "p-2"]

    def test_missing_file_yields_nothing(self, tmp_path: Path):
        assert list(JsonlPatternSource(tmp_path / "none.jsonl").next_patterns()) == []

    def test_cursor_yields_only_new_patterns(self, tmp_path: Path):
        path = tmp_path / "patterns.jsonl"
        cursor = tmp_path / "patterns.cursor"
        _write_patterns(path, PATTERN % "p-1")

        assert [p.id for p in JsonlPatternSource(path, cursor_path=cursor).next_patterns()] == ["p-1"]
        assert list(JsonlPatternSource(path, cursor_path=cursor).next_patterns()) == []

        _write_patterns(path, PATTERN % "p-2")
        assert [p.id for p in JsonlPatternSource(path, cursor_path=cursor).next_patterns()] == ["p-2"]

    def test_partial_consumption_resumes(self, tmp_path: Path):
        path = tmp_path / "patterns.jsonl"
        cursor = tmp_path / "patterns.cursor"
        _write_patterns(path, PATTERN % "p-1", PATTERN % "p-2")

        stream = JsonlPatternSource(path, cursor_path=cursor).next_patterns()
        assert next(stream).id == "p-1"
        stream.close()

        assert [p.id for p in JsonlPatternSource(path, cursor_path=cursor).next_patterns()] == ["p-2"]

    def test_line_still_being_written_is_not_consumed(self, tmp_path: Path):
        path = tmp_path / "patterns.jsonl"
        cursor = tmp_path / "patterns.cursor"
        line = PATTERN % "p-1"
        path.write_text(line[:20])

        assert list(JsonlPatternSource(path, cursor_path=cursor).next_patterns()) == []

        with open(path, "a") as f:
            f.write(line[20:] + "\n")
        assert [p.id for p in JsonlPatternSource(path, cursor_path=cursor).next_patterns()] == ["p-1"]

    def test_feedback_appends_jsonl(self, tmp_path: Path):
        source = JsonlPatternSource(tmp_path / "patterns.jsonl", feedback_path=tmp_path / "out" / "feedback.jsonl")
        source.feedback(FeedbackRecord("github:acme/api", "needs-license", "applied", True, ["p-1"], 0.9, 1.0))
        source.feedback(FeedbackRecord("github:acme/api", "needs-license", "failed", False))

        records = source.read_feedback()
        assert [(r["rule"], r["status"], r["succeeded"]) for r in records] == [
            ("needs-license", "applied", True),
            ("needs-license", "failed", False),
        ]
        assert records[0]["patterns"] == ["p-1"]
