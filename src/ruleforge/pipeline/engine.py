"""Diagnostic pipeline: detect, analyze, diagnose, repair and learn per target."""

from __future__ import annotations

import asyncio
import logging
import time

from ruleforge.core.errors import InfrastructureError, ObservationUnavailable
from ruleforge.core.models import (
    DiagnosticReport,
    FactSnapshot,
    FeedbackRecord,
    FixAction,
    Outcome,
    OutcomeStatus,
    PipelineStage,
    RuleCategory,
    Severity,
    TargetRef,
)
from ruleforge.fix.executor import FixExecutor
from ruleforge.fix.gate import ConfidenceGate
from ruleforge.pipeline.history import ReportHistory
from ruleforge.pipeline.scoring import compute_health_score
from ruleforge.rules.evaluator import RuleEvaluator
from ruleforge.rules.store import RuleStore
from ruleforge.runtime.cache import ResultCache
from ruleforge.sources.base import ObservationSource, PatternSource

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL_TARGETS = 8

_FINDING_CATEGORIES = (RuleCategory.DECLARATIVE, RuleCategory.PREVENTIVE)


class DiagnosticPipeline:
    """Drives every target through one diagnostic pass.

    Targets run concurrently up to ``max_parallel_targets``; the stages of a
    single target run strictly in order. Stage-local failures end in a
    ``failed`` report for that target only. Infrastructure errors cancel the
    remaining targets and propagate out of :meth:`run_pass`.
    """

    def __init__(
        self,
        store: RuleStore,
        evaluator: RuleEvaluator,
        gate: ConfidenceGate,
        executor: FixExecutor,
        observations: ObservationSource,
        patterns: PatternSource | None = None,
        history: ReportHistory | None = None,
        cache: ResultCache | None = None,
        max_parallel_targets: int = DEFAULT_MAX_PARALLEL_TARGETS,
        deductions: dict[Severity, int] | None = None,
    ) -> None:
        self.store = store
        self.evaluator = evaluator
        self.gate = gate
        self.executor = executor
        self.observations = observations
        self.patterns = patterns
        self.history = history
        self.cache = cache if cache is not None else evaluator.cache
        self.max_parallel_targets = max(1, max_parallel_targets)
        self.deductions = deductions
        self.latest_reports: dict[str, DiagnosticReport] = {}

    async def run_pass(
        self,
        targets: list[TargetRef],
        cancel_event: asyncio.Event | None = None,
    ) -> list[DiagnosticReport]:
        """Run one pass over *targets*; reports come back in target order."""
        if not targets:
            return []

        semaphore = asyncio.Semaphore(self.max_parallel_targets)
        started = time.monotonic()

        async def bounded(target: TargetRef) -> DiagnosticReport:
            async with semaphore:
                return await self.run_target(target, cancel_event)

        tasks = [asyncio.create_task(bounded(t), name=f"diagnose:{t.id}") for t in targets]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await _cancel_all(tasks)
            raise

        failure = next(
            (t.exception() for t in tasks if t in done and not t.cancelled() and t.exception()),
            None,
        )
        if failure is not None:
            await _cancel_all(list(pending))
            if isinstance(failure, InfrastructureError):
                logger.error("Pass aborted: %s", failure)
            raise failure

        reports = [t.result() for t in tasks]
        logger.info(
            "Pass over %d targets finished in %.0fms",
            len(reports),
            (time.monotonic() - started) * 1000,
        )
        return reports

    async def run_target(
        self,
        target: TargetRef,
        cancel_event: asyncio.Event | None = None,
    ) -> DiagnosticReport:
        report = DiagnosticReport(target_id=target.id)
        try:
            await self._stages(target, report, cancel_event)
        except (InfrastructureError, asyncio.CancelledError):
            raise
        except Exception as exc:
            logger.exception("Diagnosis of %s failed in %s", target.id, report.state.value)
            report.state = PipelineStage.FAILED
            report.error_code = "internal-error"
            report.error = f"{type(exc).__name__}: {exc}"
            self._finalise(report)
        return report

    async def _stages(
        self,
        target: TargetRef,
        report: DiagnosticReport,
        cancel_event: asyncio.Event | None,
    ) -> None:
        # Detect
        try:
            facts = await self.observations.facts(target)
        except ObservationUnavailable as exc:
            logger.warning("%s", exc.message)
            report.state = PipelineStage.FAILED
            report.error_code = exc.code
            report.error = exc.message
            self._finalise(report)
            return
        report.facts_digest = facts.digest()
        if self._cancelled(report, cancel_event):
            return

        # Analyze
        report.state = PipelineStage.ANALYZE
        matches = self._analyze(facts, report.facts_digest)
        if self._cancelled(report, cancel_event):
            return

        # Diagnose
        report.state = PipelineStage.DIAGNOSE
        for category in _FINDING_CATEGORIES:
            report.findings.extend(matches[category])
        for match in matches[RuleCategory.CURATIVE]:
            rule = self.store.get_rule(match.rule_id)
            report.decisions.append(self.gate.decide(match, rule))
        if self._cancelled(report, cancel_event):
            return

        # Repair
        report.state = PipelineStage.REPAIR
        for decision in report.decisions:
            if decision.action != FixAction.AUTO_APPLY:
                continue
            if self._cancelled(report, cancel_event):
                return
            try:
                outcome = await self.executor.execute(decision, target)
            except asyncio.CancelledError:
                report.outcomes.append(Outcome(
                    rule_id=decision.match.rule_id,
                    target_id=target.id,
                    status=OutcomeStatus.CANCELLED,
                    reason="cancelled",
                ))
                report.state = PipelineStage.CANCELLED
                self._finalise(report)
                raise
            if outcome is not None:
                report.outcomes.append(outcome)
        if self._cancelled(report, cancel_event):
            return

        # Learn
        report.state = PipelineStage.LEARN
        self._learn(report)

        report.state = PipelineStage.COMPLETE
        self._finalise(report)

    def _analyze(self, facts: FactSnapshot, digest: str) -> dict[RuleCategory, list]:
        if self.cache is not None and self.cache.observe(facts.target_id, digest):
            logger.debug("Facts for %s changed; cached results dropped", facts.target_id)
        return {category: self.evaluator.evaluate(category, facts) for category in RuleCategory}

    def _learn(self, report: DiagnosticReport) -> None:
        if self.patterns is None:
            return
        for outcome in report.outcomes:
            rule = self.store.get_rule(outcome.rule_id)
            record = FeedbackRecord(
                target_id=outcome.target_id,
                rule_id=outcome.rule_id,
                status=outcome.status.value,
                succeeded=outcome.succeeded,
                pattern_ids=list(rule.provenance.pattern_ids),
                pattern_confidence=rule.provenance.confidence,
                success_rate=rule.success_rate,
            )
            try:
                self.patterns.feedback(record)
            except Exception:
                logger.warning(
                    "Feedback for %s on %s was not delivered",
                    outcome.rule_id,
                    outcome.target_id,
                    exc_info=True,
                )

    def _cancelled(self, report: DiagnosticReport, cancel_event: asyncio.Event | None) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        logger.info("Diagnosis of %s cancelled before %s finished", report.target_id, report.state.value)
        report.state = PipelineStage.CANCELLED
        self._finalise(report)
        return True

    def _finalise(self, report: DiagnosticReport) -> None:
        report.health_score, _ = compute_health_score(
            report.findings, report.decisions, report.outcomes, self.deductions
        )
        self.latest_reports[report.target_id] = report
        if self.history is not None:
            self.history.record(report)
        logger.info(
            "%s: %s, health %d (%d findings, %d decisions, %d outcomes)",
            report.target_id,
            report.state.value,
            report.health_score,
            len(report.findings),
            len(report.decisions),
            len(report.outcomes),
        )


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
