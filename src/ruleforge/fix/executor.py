"""Fix Executor: applies auto-apply decisions through the Action Port."""

from __future__ import annotations

import asyncio
import logging
import os
import time

from ruleforge.core.audit import RepairLog
from ruleforge.core.errors import ActionFailed, LockBusy
from ruleforge.core.models import (
    ActionResult,
    ActionStatus,
    FixAction,
    FixDecision,
    Outcome,
    OutcomeStatus,
    TargetRef,
)
from ruleforge.rules.store import RuleStore
from ruleforge.runtime.locks import DEFAULT_LOCK_TTL, LockManager
from ruleforge.sources.base import ActionPort

logger = logging.getLogger(__name__)

DEFAULT_ACTION_TIMEOUT = 30.0
LOCK_TTL_MARGIN = 5.0


class FixExecutor:
    """Runs repairs under a per-(target, category) lock.

    Repairs never wait for a lock: a busy key yields a ``lock-busy``
    outcome and the repair is retried on the next pass. The lock is
    released on every exit path, including cancellation.
    """

    def __init__(
        self,
        store: RuleStore,
        port: ActionPort,
        locks: LockManager,
        action_timeout: float = DEFAULT_ACTION_TIMEOUT,
        lock_ttl: float = DEFAULT_LOCK_TTL,
        repair_log: RepairLog | None = None,
        holder: str | None = None,
    ) -> None:
        self.store = store
        self.port = port
        self.locks = locks
        self.action_timeout = action_timeout
        # the lock must outlive the slowest permitted repair
        self.lock_ttl = max(lock_ttl, action_timeout + LOCK_TTL_MARGIN)
        self.repair_log = repair_log
        self.holder = holder or f"executor-{os.getpid()}"

    async def execute(self, decision: FixDecision, target: TargetRef) -> Outcome | None:
        """Carry out *decision* against *target*.

        Returns ``None`` for ``propose`` and ``alert-only`` decisions, which
        only ever reach the diagnostic report.
        """
        if decision.action != FixAction.AUTO_APPLY:
            return None

        rule = self.store.get_rule(decision.match.rule_id)
        if rule.action is None:
            return self._finish(rule.id, target, OutcomeStatus.FAILED, "rule has no repair action", 0.0)

        key = (target.id, rule.category.value)
        started = time.monotonic()
        try:
            token = self.locks.acquire(key, ttl=self.lock_ttl, holder=self.holder)
        except LockBusy as exc:
            logger.info("Repair %s on %s deferred: %s", rule.id, target.id, exc.message)
            return self._finish(rule.id, target, OutcomeStatus.LOCK_BUSY, exc.code, 0.0, rule.action.kind)

        try:
            try:
                result = await asyncio.wait_for(
                    self.port.apply(target, rule.action),
                    timeout=self.action_timeout,
                )
            except asyncio.TimeoutError:
                result = ActionResult.failed(f"timeout after {self.action_timeout:g}s")
            except asyncio.CancelledError:
                elapsed = (time.monotonic() - started) * 1000
                logger.warning("Repair %s on %s cancelled in flight", rule.id, target.id)
                self._log(rule.id, target, rule.action.kind, OutcomeStatus.CANCELLED, "cancelled", elapsed)
                raise
            except ActionFailed as exc:
                result = ActionResult.failed(exc.reason)
            except Exception as exc:
                logger.warning("Action port raised while repairing %s on %s", rule.id, target.id, exc_info=True)
                result = ActionResult.failed(f"{type(exc).__name__}: {exc}")

            succeeded = result.status != ActionStatus.FAILED
            self.store.record_outcome(rule.id, succeeded)
            elapsed = (time.monotonic() - started) * 1000
            return self._finish(
                rule.id, target, OutcomeStatus(result.status.value), result.reason, elapsed, rule.action.kind
            )
        finally:
            self.locks.release(token)

    def _finish(
        self,
        rule_id: str,
        target: TargetRef,
        status: OutcomeStatus,
        reason: str,
        duration_ms: float,
        action: str = "",
    ) -> Outcome:
        if status == OutcomeStatus.FAILED:
            logger.warning("Repair %s on %s failed: %s", rule_id, target.id, reason)
        else:
            logger.info("Repair %s on %s: %s", rule_id, target.id, status.value)
        self._log(rule_id, target, action, status, reason, duration_ms)
        return Outcome(
            rule_id=rule_id,
            target_id=target.id,
            status=status,
            reason=reason,
            duration_ms=duration_ms,
        )

    def _log(
        self,
        rule_id: str,
        target: TargetRef,
        action: str,
        status: OutcomeStatus,
        reason: str,
        duration_ms: float,
    ) -> None:
        if self.repair_log is not None:
            self.repair_log.record(
                target=target.id,
                rule=rule_id,
                action=action,
                status=status.value,
                reason=reason,
                duration_ms=duration_ms,
            )
