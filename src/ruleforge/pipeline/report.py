"""Diagnostic report serialization and export."""

from __future__ import annotations

import html
from datetime import datetime
from typing import Any

from ruleforge.core.models import (
    DiagnosticReport,
    FixAction,
    FixDecision,
    Match,
    Outcome,
    OutcomeStatus,
    PipelineStage,
    RuleCategory,
    Severity,
)


def _match_to_dict(m: Match) -> dict[str, Any]:
    return {
        "rule_id": m.rule_id,
        "target_id": m.target_id,
        "matched": m.matched,
        "bindings": {k: v for k, v in m.bindings.items()},
        "category": m.category.value,
        "severity": m.severity.value,
    }


def _match_from_dict(d: dict[str, Any]) -> Match:
    return Match(
        rule_id=d["rule_id"],
        target_id=d["target_id"],
        matched=d["matched"],
        bindings=dict(d.get("bindings", {})),
        category=RuleCategory(d["category"]),
        severity=Severity(d["severity"]),
    )


def report_to_dict(report: DiagnosticReport) -> dict[str, Any]:
    """Convert a DiagnosticReport to a JSON-serializable dict."""
    return {
        "target": report.target_id,
        "timestamp": report.timestamp.isoformat(),
        "state": report.state.value,
        "health_score": report.health_score,
        "facts_digest": report.facts_digest,
        "error_code": report.error_code,
        "error": report.error,
        "findings": [_match_to_dict(m) for m in report.findings],
        "decisions": [
            {
                "match": _match_to_dict(d.match),
                "action": d.action.value,
                "confidence": d.confidence,
                "reason": d.reason,
            }
            for d in report.decisions
        ],
        "outcomes": [
            {
                "rule_id": o.rule_id,
                "target_id": o.target_id,
                "status": o.status.value,
                "reason": o.reason,
                "duration_ms": round(o.duration_ms, 1),
                "finished_at": o.finished_at.isoformat(),
            }
            for o in report.outcomes
        ],
    }


def report_from_dict(data: dict[str, Any]) -> DiagnosticReport:
    return DiagnosticReport(
        target_id=data["target"],
        state=PipelineStage(data["state"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        health_score=data["health_score"],
        facts_digest=data.get("facts_digest", ""),
        error_code=data.get("error_code", ""),
        error=data.get("error", ""),
        findings=[_match_from_dict(m) for m in data.get("findings", [])],
        decisions=[
            FixDecision(
                match=_match_from_dict(d["match"]),
                action=FixAction(d["action"]),
                confidence=d["confidence"],
                reason=d["reason"],
            )
            for d in data.get("decisions", [])
        ],
        outcomes=[
            Outcome(
                rule_id=o["rule_id"],
                target_id=o["target_id"],
                status=OutcomeStatus(o["status"]),
                reason=o.get("reason", ""),
                duration_ms=o.get("duration_ms", 0.0),
                finished_at=datetime.fromisoformat(o["finished_at"]),
            )
            for o in data.get("outcomes", [])
        ],
    )


def reports_to_html(reports: list[DiagnosticReport]) -> str:
    """Generate a simple HTML fleet report."""
    rows = ""
    for report in reports:
        color = "#2ecc71" if report.health_score >= 80 else "#f39c12" if report.health_score >= 60 else "#e74c3c"
        issues = "".join(
            f"<li>{html.escape(m.rule_id)} ({m.severity.value})</li>" for m in report.findings
        ) + "".join(
            f"<li>{html.escape(d.match.rule_id)}: {d.action.value}</li>" for d in report.decisions
        )
        rows += f"""
        <tr>
            <td>{html.escape(report.target_id)}</td>
            <td style="color:{color}">{report.health_score}</td>
            <td>{report.state.value}{' (' + html.escape(report.error_code) + ')' if report.error_code else ''}</td>
            <td><ul>{issues}</ul></td>
        </tr>"""

    return f"""<!DOCTYPE html>
<html><head><title>RuleForge Fleet Report</title>
<style>
body {{ font-family: -apple-system, sans-serif; margin: 40px; background: #1a1a2e; color: #eee; }}
h1 {{ color: #00d4ff; }}
table {{ border-collapse: collapse; width: 100%; margin-top: 20px; }}
th, td {{ padding: 12px; text-align: left; border-bottom: 1px solid #333; vertical-align: top; }}
th {{ background: #16213e; }}
</style></head>
<body>
<h1>RuleForge Fleet Report</h1>
<p>{len(reports)} targets</p>
<table>
<tr><th>Target</th><th>Health</th><th>State</th><th>Findings and decisions</th></tr>
{rows}
</table>
</body></html>"""
