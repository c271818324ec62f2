"""Integration test: distill -> diagnose -> repair -> learn -> re-gate."""

from __future__ import annotations

from pathlib import Path

import pytest

from ruleforge import FactSnapshot, Pattern, RuleForge, TargetRef
from ruleforge.core.config import RuleForgeConfig
from ruleforge.core.models import ActionResult, FixAction, OutcomeStatus, PipelineStage
from ruleforge.sources.local import FleetManifest
from ruleforge.sources.memory import MemoryPatternSource, RecordingActionPort, StaticObservationSource

TARGETS = [TargetRef("github", "acme", name) for name in ("api", "web", "cli", "docs")]


def _security_pattern(pattern_id: str = "p-1", confidence: float = 0.97) -> Pattern:
    return Pattern(
        pattern_id,
        frozenset({"is-public", "missing-security-policy"}),
        "unreported-vulnerability",
        confidence,
        origin="fleet-miner",
    )


def _flaky_port() -> RecordingActionPort:
    """Repairs succeed on api and cli, fail elsewhere."""

    def handler(target: TargetRef, action) -> ActionResult:
        if target.name in ("api", "cli"):
            return ActionResult.applied("created SECURITY.md")
        return ActionResult.failed("branch is protected")

    return RecordingActionPort(handler=handler)


@pytest.fixture()
def observations() -> StaticObservationSource:
    return StaticObservationSource(
        FactSnapshot(t.id, frozenset({"is-public", "has-tests"})) for t in TARGETS
    )


def _forge(observations, port, patterns, project_path: Path | None = None, persist: bool = False) -> RuleForge:
    return RuleForge(
        project_path=project_path,
        config=RuleForgeConfig(),
        observations=observations,
        actions=port,
        patterns=patterns,
        fleet=FleetManifest(),
        persist=persist,
    )


class TestDistillRunLearn:
    def test_failures_demote_rule_to_alert_only(self, observations):
        patterns = MemoryPatternSource([_security_pattern()])
        port = _flaky_port()
        forge = _forge(observations, port, patterns)

        summary = forge.distill_cycle()
        assert [r.rule.id for r in summary.accepted] == ["needs-security-policy"]

        first = forge.trigger_pass(TARGETS)
        assert all(r.state == PipelineStage.COMPLETE for r in first)
        assert [r.decisions[0].action for r in first] == [FixAction.AUTO_APPLY] * 4
        assert [r.outcomes[0].status for r in first] == [
            OutcomeStatus.APPLIED,
            OutcomeStatus.FAILED,
            OutcomeStatus.APPLIED,
            OutcomeStatus.FAILED,
        ]

        rule = forge.get_rule("needs-security-policy")
        assert (rule.applied_count, rule.success_count) == (4, 2)
        assert [(f.target_id, f.succeeded) for f in patterns.received] == [
            (t.id, t.name in ("api", "cli")) for t in TARGETS
        ]
        assert all(f.pattern_ids == ["p-1"] for f in patterns.received)

        second = forge.trigger_pass(TARGETS)
        assert [r.decisions[0].action for r in second] == [FixAction.ALERT_ONLY] * 4
        assert all(r.outcomes == [] for r in second)
        assert len(port.calls) == 4

        # unresolved warning costs 5 points
        assert {r.health_score for r in second} == {95}
        assert forge.latest_report("github:acme/web") is second[1]
        forge.close()

    def test_low_confidence_pattern_only_proposes(self, observations):
        port = RecordingActionPort()
        forge = _forge(observations, port, MemoryPatternSource([_security_pattern(confidence=0.9)]))
        forge.distill_cycle()

        reports = forge.trigger_pass(TARGETS)

        assert {r.decisions[0].action for r in reports} == {FixAction.PROPOSE}
        assert port.calls == []

    def test_merged_pattern_keeps_one_rule(self, observations):
        patterns = MemoryPatternSource([_security_pattern("p-1", 0.9)])
        forge = _forge(observations, RecordingActionPort(), patterns)
        forge.distill_cycle()
        patterns.add(_security_pattern("p-2", 0.98))
        summary = forge.distill_cycle()

        assert [r.rule.id for r in summary.merged] == ["needs-security-policy"]
        assert len(forge.list_rules()) == 1
        assert forge.get_rule("needs-security-policy").provenance.confidence == 0.98

    def test_unobservable_target_fails_alone(self, observations):
        observations.fail("github:acme/docs", "forge timeout")
        forge = _forge(observations, RecordingActionPort(), MemoryPatternSource([_security_pattern()]))
        forge.distill_cycle()

        reports = forge.trigger_pass(TARGETS)

        assert [r.state for r in reports] == [PipelineStage.COMPLETE] * 3 + [PipelineStage.FAILED]
        assert reports[-1].error_code == "observation-unavailable"


class TestPersistence:
    def test_rules_stats_and_reports_survive_restart(self, tmp_path: Path, observations):
        forge = _forge(observations, _flaky_port(), MemoryPatternSource([_security_pattern()]), tmp_path, True)
        forge.distill_cycle()
        forge.trigger_pass(TARGETS)
        forge.close()

        restarted = _forge(observations, _flaky_port(), MemoryPatternSource(), tmp_path, True)
        rule = restarted.get_rule("needs-security-policy")
        assert (rule.applied_count, rule.success_count) == (4, 2)
        assert restarted.latest_report("github:acme/api").state == PipelineStage.COMPLETE
        assert [e.state for e in restarted.history_trend("github:acme/api")] == ["complete"]
        assert (tmp_path / ".ruleforge" / "repair.log").exists()
        restarted.close()
