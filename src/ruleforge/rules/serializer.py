"""Conversion of rules to and from plain dicts.

The dict form is what the SQLite repository stores, what ``ruleforge rules
show --json`` prints, and what manually authored TOML rule files contain.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ruleforge.core.errors import InvalidRule
from ruleforge.core.models import (
    ActionSpec,
    Condition,
    ConditionOp,
    Conclusion,
    Provenance,
    ProvenanceKind,
    Requirement,
    Rule,
    RuleCategory,
    RuleRevision,
    Severity,
)


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "name": rule.name,
        "category": rule.category.value,
        "description": rule.description,
        "conditions": [
            {"fact": c.fact, "op": c.op.value, **({"value": c.value} if c.value is not None else {})}
            for c in rule.conditions
        ],
        "conclusion": {"fact": rule.conclusion.fact, "requirement": rule.conclusion.requirement.value},
        "severity": rule.severity.value,
        "action": (
            {"kind": rule.action.kind, "params": dict(rule.action.params)} if rule.action else None
        ),
        "provenance": {
            "kind": rule.provenance.kind.value,
            "pattern_ids": list(rule.provenance.pattern_ids),
            "confidence": rule.provenance.confidence,
            "author": rule.provenance.author,
            "origin": rule.provenance.origin,
            "mapping_version": rule.provenance.mapping_version,
        },
        "applied_count": rule.applied_count,
        "success_count": rule.success_count,
        "enabled": rule.enabled,
        "created_at": rule.created_at.isoformat(),
        "last_applied_at": rule.last_applied_at.isoformat() if rule.last_applied_at else None,
        "revisions": [
            {
                "number": r.number,
                "message": r.message,
                "author": r.author,
                "timestamp": r.timestamp.isoformat(),
            }
            for r in rule.revisions
        ],
        "tags": list(rule.tags),
    }


def rule_from_dict(data: dict[str, Any], *, default_author: str = "") -> Rule:
    """Build a :class:`Rule` from its dict form.

    Missing optional keys fall back to manual-authoring defaults, so a TOML
    rule file only needs ``id``, ``category``, ``conditions`` and
    ``conclusion``.
    """
    try:
        rule_id = data["id"]
        category = RuleCategory(data["category"])
        conditions = tuple(
            Condition(c["fact"], ConditionOp(c.get("op", "present")), c.get("value"))
            for c in data.get("conditions", [])
        )
        concl = data["conclusion"]
        conclusion = Conclusion(concl["fact"], Requirement(concl.get("requirement", "required")))
        severity = Severity(data.get("severity", "warning"))
    except KeyError as exc:
        raise InvalidRule(f"Rule definition is missing {exc.args[0]!r}") from exc
    except ValueError as exc:
        raise InvalidRule(f"Rule {data.get('id', '?')}: {exc}") from exc

    action = None
    if data.get("action"):
        act = data["action"]
        action = ActionSpec(act["kind"], dict(act.get("params", {})))

    prov = data.get("provenance", {})
    provenance = Provenance(
        kind=ProvenanceKind(prov.get("kind", "manual")),
        pattern_ids=list(prov.get("pattern_ids", [])),
        confidence=float(prov.get("confidence", data.get("confidence", 0.9))),
        author=prov.get("author", data.get("author", default_author)),
        origin=prov.get("origin", ""),
        mapping_version=prov.get("mapping_version", ""),
    )

    rule = Rule(
        id=rule_id,
        name=data.get("name", rule_id),
        category=category,
        conditions=conditions,
        conclusion=conclusion,
        severity=severity,
        action=action,
        provenance=provenance,
        applied_count=int(data.get("applied_count", 0)),
        success_count=int(data.get("success_count", 0)),
        enabled=bool(data.get("enabled", True)),
        tags=list(data.get("tags", [])),
        description=data.get("description", ""),
        revisions=[
            RuleRevision(
                number=r["number"],
                message=r["message"],
                author=r.get("author", ""),
                timestamp=datetime.fromisoformat(r["timestamp"]),
            )
            for r in data.get("revisions", [])
        ],
    )
    if "created_at" in data:
        created = data["created_at"]
        # TOML files may hold a native datetime rather than a string.
        rule.created_at = created if isinstance(created, datetime) else datetime.fromisoformat(created)
    if data.get("last_applied_at"):
        applied = data["last_applied_at"]
        rule.last_applied_at = applied if isinstance(applied, datetime) else datetime.fromisoformat(applied)
    return rule
