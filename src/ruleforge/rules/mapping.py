"""Pattern-to-predicate mapping table.

The table is closed and versioned: a pattern is translated only when its
exact feature set is a known shape *and* its outcome label is one the shape
explains. Anything else is rejected as unmapped; nothing is guessed.

Bump :data:`MAPPING_VERSION` whenever a shape is added or changed so that
distilled rules record which table produced them.
"""

from __future__ import annotations

from dataclasses import dataclass

from ruleforge.core.models import (
    ActionSpec,
    Condition,
    ConditionOp,
    Conclusion,
    Pattern,
    Requirement,
    RuleCategory,
    Severity,
)

MAPPING_VERSION = "2026.10.1"


@dataclass(frozen=True)
class PatternShape:
    """A known pattern shape and the rule it compiles to."""

    name: str
    features: frozenset[str]
    outcomes: frozenset[str]
    category: RuleCategory
    conditions: tuple[Condition, ...]
    conclusion: Conclusion
    severity: Severity = Severity.WARNING
    action: ActionSpec | None = None
    description: str = ""


def _has(fact: str) -> Condition:
    return Condition(fact, ConditionOp.PRESENT)


def _lacks(fact: str) -> Condition:
    return Condition(fact, ConditionOp.ABSENT)


DEPENDABOT_CONFIG = """\
version: 2
updates:
  - package-ecosystem: "github-actions"
    directory: "/"
    schedule:
      interval: "daily"
    open-pull-requests-limit: 10
"""

SECURITY_POLICY = """\
# Security Policy

## Reporting a Vulnerability

Please report vulnerabilities privately through the forge's security
advisory feature rather than a public issue.
"""

CONTRIBUTING_GUIDE = """\
# Contributing

1. Fork the repository and create a topic branch.
2. Keep changes focused and covered by tests.
3. Open a pull request describing the motivation for the change.
"""

CODEOWNERS = """\
# Default owners for everything in the repository.
* @{owner}
"""

README_STUB = """\
# {name}

Project maintained by {owner}.
"""


_SHAPES: tuple[PatternShape, ...] = (
    PatternShape(
        name="needs-dependency-bot",
        features=frozenset({"has-dependency-manager", "no-dependency-bot"}),
        outcomes=frozenset({"outdated-deps", "vulnerable-deps"}),
        category=RuleCategory.PREVENTIVE,
        conditions=(_has("has-dependency-manager"), _lacks("has-dependency-bot")),
        conclusion=Conclusion("has-dependency-bot"),
        severity=Severity.WARNING,
        description="Repositories with a dependency manager need automated dependency updates.",
    ),
    PatternShape(
        name="needs-secret-scanning",
        features=frozenset({"is-public", "secret-scanning-disabled"}),
        outcomes=frozenset({"leaked-credentials"}),
        category=RuleCategory.PREVENTIVE,
        conditions=(_has("is-public"), _lacks("secret-scanning")),
        conclusion=Conclusion("secret-scanning"),
        severity=Severity.CRITICAL,
        description="Public repositories must scan pushes for secrets.",
    ),
    PatternShape(
        name="forbid-env-file",
        features=frozenset({"is-public", "has-file:.env"}),
        outcomes=frozenset({"leaked-credentials"}),
        category=RuleCategory.DECLARATIVE,
        conditions=(_has("is-public"), _has("has-file:.env")),
        conclusion=Conclusion("has-file:.env", Requirement.FORBIDDEN),
        severity=Severity.CRITICAL,
        description="Public repositories must not commit .env files.",
    ),
    PatternShape(
        name="needs-branch-protection",
        features=frozenset({"is-public", "unprotected-default-branch"}),
        outcomes=frozenset({"force-push-incident", "broken-main"}),
        category=RuleCategory.DECLARATIVE,
        conditions=(_has("is-public"), _lacks("branch-protected")),
        conclusion=Conclusion("branch-protected"),
        severity=Severity.WARNING,
        description="Public default branches must be protected.",
    ),
    PatternShape(
        name="needs-ci",
        features=frozenset({"has-tests", "missing-ci"}),
        outcomes=frozenset({"broken-main"}),
        category=RuleCategory.DECLARATIVE,
        conditions=(_has("has-tests"), _lacks("has-ci")),
        conclusion=Conclusion("has-ci"),
        severity=Severity.INFO,
        description="Repositories with tests should run them in CI.",
    ),
    PatternShape(
        name="needs-license",
        features=frozenset({"is-public", "missing-license"}),
        outcomes=frozenset({"license-violation", "adoption-blocked"}),
        category=RuleCategory.CURATIVE,
        conditions=(_has("is-public"), _lacks("has-file:LICENSE")),
        conclusion=Conclusion("has-file:LICENSE"),
        severity=Severity.CRITICAL,
        action=ActionSpec("open-proposal", {
            "title": "Add a LICENSE",
            "body": "This public repository has no LICENSE file; pick a license and add it.",
        }),
        description="Public repositories need a license.",
    ),
    PatternShape(
        name="needs-security-policy",
        features=frozenset({"is-public", "missing-security-policy"}),
        outcomes=frozenset({"unreported-vulnerability"}),
        category=RuleCategory.CURATIVE,
        conditions=(_has("is-public"), _lacks("has-file:SECURITY.md")),
        conclusion=Conclusion("has-file:SECURITY.md"),
        severity=Severity.WARNING,
        action=ActionSpec("inject-file", {"path": "SECURITY.md", "content": SECURITY_POLICY}),
        description="Public repositories need a vulnerability disclosure policy.",
    ),
    PatternShape(
        name="inject-dependency-bot",
        features=frozenset({"has-dependency-manager", "no-dependency-bot", "has-ci"}),
        outcomes=frozenset({"outdated-deps"}),
        category=RuleCategory.CURATIVE,
        conditions=(_has("has-dependency-manager"), _has("has-ci"), _lacks("has-dependency-bot")),
        conclusion=Conclusion("has-dependency-bot"),
        severity=Severity.WARNING,
        action=ActionSpec("inject-file", {"path": ".github/dependabot.yml", "content": DEPENDABOT_CONFIG}),
        description="Inject a dependency bot configuration where CI can act on its updates.",
    ),
    PatternShape(
        name="needs-contributing-guide",
        features=frozenset({"is-public", "missing-contributing"}),
        outcomes=frozenset({"low-contribution"}),
        category=RuleCategory.CURATIVE,
        conditions=(_has("is-public"), _lacks("has-file:CONTRIBUTING.md")),
        conclusion=Conclusion("has-file:CONTRIBUTING.md"),
        severity=Severity.INFO,
        action=ActionSpec("inject-file", {"path": "CONTRIBUTING.md", "content": CONTRIBUTING_GUIDE}),
        description="Public repositories should explain how to contribute.",
    ),
    PatternShape(
        name="needs-codeowners",
        features=frozenset({"has-multiple-maintainers", "missing-codeowners"}),
        outcomes=frozenset({"review-bottleneck"}),
        category=RuleCategory.CURATIVE,
        conditions=(_has("has-multiple-maintainers"), _lacks("has-file:.github/CODEOWNERS")),
        conclusion=Conclusion("has-file:.github/CODEOWNERS"),
        severity=Severity.INFO,
        action=ActionSpec("inject-file", {"path": ".github/CODEOWNERS", "content": CODEOWNERS}),
        description="Shared repositories route reviews through CODEOWNERS.",
    ),
    PatternShape(
        name="needs-readme",
        features=frozenset({"missing-readme"}),
        outcomes=frozenset({"onboarding-failure"}),
        category=RuleCategory.CURATIVE,
        conditions=(_lacks("has-file:README.md"),),
        conclusion=Conclusion("has-file:README.md"),
        severity=Severity.WARNING,
        action=ActionSpec("inject-file", {"path": "README.md", "content": README_STUB}),
        description="Every repository needs a README.",
    ),
    PatternShape(
        name="enable-secret-scanning",
        features=frozenset({"is-public", "secret-scanning-disabled", "has-dependency-manager"}),
        outcomes=frozenset({"leaked-credentials"}),
        category=RuleCategory.CURATIVE,
        conditions=(_has("is-public"), _has("has-dependency-manager"), _lacks("secret-scanning")),
        conclusion=Conclusion("secret-scanning"),
        severity=Severity.CRITICAL,
        action=ActionSpec("modify-setting", {"setting": "secret-scanning", "value": True}),
        description="Turn on secret scanning for public repositories.",
    ),
)

PATTERN_TABLE: dict[frozenset[str], PatternShape] = {shape.features: shape for shape in _SHAPES}


def lookup(pattern: Pattern) -> PatternShape | None:
    """Return the shape that explains *pattern*, or ``None`` if unmapped."""
    shape = PATTERN_TABLE.get(pattern.features)
    if shape is None or pattern.outcome not in shape.outcomes:
        return None
    return shape


def known_shapes() -> list[PatternShape]:
    return list(_SHAPES)
