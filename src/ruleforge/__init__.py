"""RuleForge - self-improving rule engine for repository fleets."""

from ruleforge._version import __version__
from ruleforge.core.models import (
    FactSnapshot,
    Pattern,
    Rule,
    RuleCategory,
    TargetRef,
)
from ruleforge.service import RuleForge

__all__ = [
    "__version__",
    "FactSnapshot",
    "Pattern",
    "Rule",
    "RuleCategory",
    "RuleForge",
    "TargetRef",
]
