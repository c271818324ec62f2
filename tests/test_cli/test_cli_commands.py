"""Tests for the ruleforge command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from ruleforge.cli.main import cli

API = "github:acme/api"

PATTERNS = [
    {"id": "p-1", "features": ["is-public", "missing-security-policy"],
     "outcome": "unreported-vulnerability", "confidence": 0.99, "origin": "fleet-miner"},
    {"id": "p-2", "features": ["has-tests", "missing-ci"], "outcome": "broken-main", "confidence": 0.9},
    {"id": "p-3", "features": ["uses-tabs"], "outcome": "broken-main", "confidence": 0.99},
]

MANUAL_RULES = """\
[[rules]]
id = "needs-readme"
category = "declarative"
severity = "critical"
conditions = [{ fact = "is-public" }]
conclusion = { fact = "has-file:README.md" }

[[rules]]
id = "broken"
category = "curative"
conclusion = { fact = "has-file:NOTICE" }
"""


@pytest.fixture()
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A fleet of one public repository with tests but no CI."""
    (tmp_path / "fleet.toml").write_text('[[targets]]\nforge = "github"\nowner = "acme"\nname = "api"\n')
    checkout = tmp_path / "acme" / "api"
    (checkout / "tests").mkdir(parents=True)
    (checkout / "tests" / "test_app.py").write_text("def test_ok():\n    pass\n")
    (checkout / "README.md").write_text("# api\n")
    (checkout / ".forge").mkdir()
    (checkout / ".forge" / "settings.json").write_text(json.dumps({"visibility": "public"}))
    (tmp_path / "patterns.jsonl").write_text("".join(json.dumps(p) + "\n" for p in PATTERNS))
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


class TestDistill:
    def test_distill_then_nothing_new(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["distill"])
        assert result.exit_code == 0, result.output
        assert "+ p-1" in result.output
        assert "unmapped-pattern" in result.output

        again = runner.invoke(cli, ["distill"])
        assert again.exit_code == 0
        assert "No new patterns." in again.output

    def test_distill_json(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["distill", "--json"])
        data = json.loads(result.output)
        assert [(d["pattern"], d["status"]) for d in data] == [
            ("p-1", "accepted"),
            ("p-2", "accepted"),
            ("p-3", "rejected"),
        ]
        assert data[0]["rule"] == "needs-security-policy"
        assert (project / ".ruleforge" / "distillation.log").exists()
        assert ".ruleforge/" in (project / ".gitignore").read_text()


class TestRules:
    def test_list_show_disable_enable(self, project: Path, runner: CliRunner):
        runner.invoke(cli, ["distill"])

        listed = runner.invoke(cli, ["rules", "list", "--json"])
        assert sorted(r["id"] for r in json.loads(listed.output)) == ["needs-ci", "needs-security-policy"]

        shown = runner.invoke(cli, ["rules", "show", "needs-ci", "--json"])
        data = json.loads(shown.output)
        assert data["category"] == "declarative"
        assert data["health"] == "probationary"

        disabled = runner.invoke(cli, ["rules", "disable", "needs-ci", "--reason", "noisy"])
        assert "Disabled needs-ci." in disabled.output
        listed = runner.invoke(cli, ["rules", "list", "--json"])
        assert [r["id"] for r in json.loads(listed.output)] == ["needs-security-policy"]

        enabled = runner.invoke(cli, ["rules", "enable", "needs-ci"])
        assert enabled.exit_code == 0
        assert "Enabled needs-ci." in enabled.output

    def test_show_unknown_rule(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["rules", "show", "nope"])
        assert result.exit_code == 1

    def test_empty_store(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["rules", "list"])
        assert "No rules yet" in result.output

    def test_add_reports_each_rule(self, project: Path, runner: CliRunner):
        (project / "manual.toml").write_text(MANUAL_RULES)
        result = runner.invoke(cli, ["rules", "add", "manual.toml", "--author", "ana"])

        assert result.exit_code == 1
        assert "+ needs-readme" in result.output
        assert "- broken" in result.output
        assert "invalid-rule" in result.output

        shown = json.loads(runner.invoke(cli, ["rules", "show", "needs-readme", "--json"]).output)
        assert shown["provenance"]["author"] == "ana"

    def test_check_clean_store(self, project: Path, runner: CliRunner):
        runner.invoke(cli, ["distill"])
        result = runner.invoke(cli, ["rules", "check"])
        assert result.exit_code == 0
        assert "No conflicts" in result.output


class TestRun:
    def test_run_repairs_and_reports(self, project: Path, runner: CliRunner):
        runner.invoke(cli, ["distill"])
        result = runner.invoke(cli, ["run", "--export", "json"])

        assert result.exit_code == 0, result.output
        assert (project / "acme" / "api" / "SECURITY.md").exists()

        exported = json.loads((project / ".ruleforge" / "reports" / "fleet-report.json").read_text())
        [report] = exported
        assert report["target"] == API
        assert report["state"] == "complete"
        assert [f["rule_id"] for f in report["findings"]] == ["needs-ci"]
        assert [o["status"] for o in report["outcomes"]] == ["applied"]
        # needs-ci is info severity; the security policy was repaired
        assert report["health_score"] == 99

        feedback = (project / ".ruleforge" / "feedback.jsonl").read_text().splitlines()
        assert json.loads(feedback[0])["rule"] == "needs-security-policy"

    def test_second_run_is_unchanged(self, project: Path, runner: CliRunner):
        runner.invoke(cli, ["distill"])
        runner.invoke(cli, ["run"])
        result = runner.invoke(cli, ["run", "--export", "json"])
        exported = json.loads((project / ".ruleforge" / "reports" / "fleet-report.json").read_text())
        assert result.exit_code == 0
        # the policy file exists now, so the curative rule no longer matches
        assert exported[0]["decisions"] == []

    def test_fail_under(self, project: Path, runner: CliRunner):
        runner.invoke(cli, ["distill"])
        result = runner.invoke(cli, ["run", "--summary", "--fail-under", "100"])
        assert result.exit_code == 1
        assert "below threshold" in result.output

    def test_html_export(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["run", "--export", "html"])
        assert result.exit_code == 0
        assert "RuleForge Fleet Report" in (project / ".ruleforge" / "reports" / "fleet-report.html").read_text()

    def test_invalid_target_id(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["run", "--target", "not-a-target"])
        assert result.exit_code == 1

    def test_missing_manifest(self, project: Path, runner: CliRunner):
        (project / "fleet.toml").unlink()
        result = runner.invoke(cli, ["run"])
        assert result.exit_code == 1
        assert "Fleet manifest not found" in result.output


class TestReportAndHistory:
    def test_report_after_run(self, project: Path, runner: CliRunner):
        runner.invoke(cli, ["distill"])
        runner.invoke(cli, ["run"])

        result = runner.invoke(cli, ["report", API, "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["target"] == API

        history = runner.invoke(cli, ["history", API, "--json"])
        [entry] = json.loads(history.output)
        assert entry["state"] == "complete"

    def test_report_without_run(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["report", API])
        assert result.exit_code == 1
        assert "No report" in result.output

    def test_history_without_run(self, project: Path, runner: CliRunner):
        result = runner.invoke(cli, ["history", API])
        assert result.exit_code == 0
        assert "No history" in result.output
