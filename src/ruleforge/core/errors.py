"""Error taxonomy for RuleForge.

Every error carries a stable ``code`` so that rejections and failures can be
reported in diagnostic reports and audit logs without depending on message
wording.
"""

from __future__ import annotations


class RuleForgeError(Exception):
    """Base class for all RuleForge errors."""

    code: str = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


# ---------------------------------------------------------------------------
# Stage-local errors (never abort a batch pass)
# ---------------------------------------------------------------------------

class ObservationUnavailable(RuleForgeError):
    """Facts for a target could not be retrieved."""

    code = "observation-unavailable"

    def __init__(self, target_id: str, reason: str = "") -> None:
        self.target_id = target_id
        self.reason = reason
        detail = f"Facts unavailable for {target_id}"
        if reason:
            detail += f": {reason}"
        super().__init__(detail)


class LockBusy(RuleForgeError):
    """A repair lock is already held for the requested key."""

    code = "lock-busy"

    def __init__(self, key: tuple[str, str], holder: str = "") -> None:
        self.key = key
        self.holder = holder
        super().__init__(f"Lock {key[0]}/{key[1]} is held by {holder or 'another executor'}")


class ActionFailed(RuleForgeError):
    """The Action Port reported a failed repair."""

    code = "action-failed"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


# ---------------------------------------------------------------------------
# Rule errors
# ---------------------------------------------------------------------------

class RuleNotFound(RuleForgeError):
    code = "rule-not-found"

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"No rule with id {rule_id!r}")


class DuplicateRule(RuleForgeError):
    code = "duplicate-rule"

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id!r} already exists")


class InvalidRule(RuleForgeError):
    code = "invalid-rule"


class RuleConflict(RuleForgeError):
    """A rule contradicts an enabled rule of the same category."""

    def __init__(self, rule_id: str, conflicting_id: str) -> None:
        self.rule_id = rule_id
        self.conflicting_id = conflicting_id
        super().__init__(f"Rule {rule_id!r} conflicts with enabled rule {conflicting_id!r}")

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"conflicts-with:{self.conflicting_id}"


# ---------------------------------------------------------------------------
# Fatal infrastructure errors (abort the whole pass)
# ---------------------------------------------------------------------------

class InfrastructureError(RuleForgeError):
    code = "infrastructure-unavailable"


class StoreUnavailable(InfrastructureError):
    code = "store-unavailable"


class LockManagerUnavailable(InfrastructureError):
    code = "lock-manager-unavailable"


class ConfigError(RuleForgeError):
    code = "invalid-config"
