"""RuleForge facade: wires the engine together and answers queries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from ruleforge.core.audit import DistillationLog, RepairLog
from ruleforge.core.config import (
    RuleForgeConfig,
    ensure_gitignore,
    get_state_dir,
    load_config,
    read_toml,
)
from ruleforge.core.errors import ConfigError, DuplicateRule, InvalidRule, RuleConflict
from ruleforge.core.models import DiagnosticReport, Rule, RuleCategory, Severity, TargetRef
from ruleforge.fix.executor import FixExecutor
from ruleforge.fix.gate import ConfidenceGate
from ruleforge.pipeline.engine import DiagnosticPipeline
from ruleforge.pipeline.history import HistoryEntry, RegressionAlert, ReportHistory
from ruleforge.rules.conflicts import ConflictPair
from ruleforge.rules.distiller import DistillationSummary, RuleDistiller
from ruleforge.rules.evaluator import RuleEvaluator
from ruleforge.rules.health import HealthAssessment, assess_health
from ruleforge.rules.repository import RuleRepository
from ruleforge.rules.serializer import rule_from_dict
from ruleforge.rules.store import RuleStore
from ruleforge.runtime.cache import ResultCache
from ruleforge.runtime.locks import LockManager
from ruleforge.sources.base import ActionPort, ObservationSource, PatternSource
from ruleforge.sources.local import (
    DirectoryObservationSource,
    FileSystemActionPort,
    FleetManifest,
    JsonlPatternSource,
    load_fleet,
)

logger = logging.getLogger(__name__)


@dataclass
class RuleLoadResult:
    """Outcome of loading one rule from a rules file."""

    rule_id: str
    error_code: str = ""
    error: str = ""

    @property
    def loaded(self) -> bool:
        return not self.error_code


class RuleForge:
    """Single entry point for the CLI and for embedding.

    With ``persist=True`` rules and reports live under the project's state
    directory; otherwise everything is held in memory. Sources default to
    the local adapters driven by ``fleet.toml`` and ``patterns.jsonl``.
    """

    def __init__(
        self,
        project_path: Path | None = None,
        config: RuleForgeConfig | None = None,
        observations: ObservationSource | None = None,
        actions: ActionPort | None = None,
        patterns: PatternSource | None = None,
        fleet: FleetManifest | None = None,
        persist: bool = True,
    ) -> None:
        self.project_path = (project_path or Path.cwd()).resolve()
        self.config = config or load_config(self.project_path)
        self.persist = persist

        self.state_dir: Path | None = None
        repository = None
        self.history: ReportHistory | None = None
        distill_log = repair_log = None
        if persist:
            self.state_dir = get_state_dir(self.project_path, self.config)
            ensure_gitignore(self.project_path, self.config.state_dir.rstrip("/") + "/")
            repository = RuleRepository(self.state_dir / "rules.db")
            self.history = ReportHistory(self.state_dir / "reports.db")
            distill_log = DistillationLog(self.state_dir)
            repair_log = RepairLog(self.state_dir)

        self.store = RuleStore(repository)
        self.cache = ResultCache(ttl=self.config.cache.ttl, shards=self.config.cache.shards)
        self.locks = LockManager(default_ttl=self.config.executor.lock_ttl)
        self.evaluator = RuleEvaluator(self.store, self.cache)
        self.gate = ConfidenceGate(
            auto_apply_threshold=self.config.gate.auto_apply_threshold,
            propose_threshold=self.config.gate.propose_threshold,
        )
        self.distiller = RuleDistiller(
            self.store,
            min_confidence=self.config.distill.min_confidence,
            log=distill_log,
        )
        self.repair_log = repair_log
        self.distill_log = distill_log

        self._fleet = fleet
        self._observations = observations
        self._actions = actions
        self._patterns = patterns
        self._pipeline: DiagnosticPipeline | None = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @property
    def fleet(self) -> FleetManifest:
        if self._fleet is None:
            self._fleet = load_fleet(self.project_path / self.config.fleet_manifest)
        return self._fleet

    @property
    def patterns(self) -> PatternSource:
        if self._patterns is None:
            feedback = cursor = None
            if self.state_dir is not None:
                feedback = self.state_dir / "feedback.jsonl"
                cursor = self.state_dir / "patterns.cursor"
            self._patterns = JsonlPatternSource(
                self.project_path / self.config.patterns_file,
                feedback_path=feedback,
                cursor_path=cursor,
            )
        return self._patterns

    @property
    def pipeline(self) -> DiagnosticPipeline:
        if self._pipeline is None:
            observations = self._observations or DirectoryObservationSource(self.fleet)
            actions = self._actions or FileSystemActionPort(self.fleet)
            executor = FixExecutor(
                self.store,
                actions,
                self.locks,
                action_timeout=self.config.executor.action_timeout,
                lock_ttl=self.config.executor.lock_ttl,
                repair_log=self.repair_log,
            )
            scoring = self.config.scoring
            self._pipeline = DiagnosticPipeline(
                store=self.store,
                evaluator=self.evaluator,
                gate=self.gate,
                executor=executor,
                observations=observations,
                patterns=self.patterns,
                history=self.history,
                cache=self.cache,
                max_parallel_targets=self.config.pipeline.max_parallel_targets,
                deductions={
                    Severity.CRITICAL: scoring.critical,
                    Severity.WARNING: scoring.warning,
                    Severity.INFO: scoring.info,
                },
            )
        return self._pipeline

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def list_rules(self, category: RuleCategory | None = None, include_disabled: bool = False) -> list[Rule]:
        return self.store.list_rules(category, include_disabled=include_disabled)

    def get_rule(self, rule_id: str) -> Rule:
        return self.store.get_rule(rule_id)

    def enable_rule(self, rule_id: str, author: str = "cli") -> Rule:
        return self.store.enable(rule_id, author=author)

    def disable_rule(self, rule_id: str, author: str = "cli", reason: str = "") -> Rule:
        return self.store.disable(rule_id, author=author, reason=reason)

    def rule_health(self, rule_id: str) -> HealthAssessment:
        return assess_health(self.store.get_rule(rule_id))

    def check_conflicts(self) -> list[ConflictPair]:
        return self.store.conflict_pairs()

    def load_rules_file(self, path: Path, author: str = "cli") -> list[RuleLoadResult]:
        """Insert manually authored rules from a TOML file of ``[[rules]]`` tables.

        Each rule is inserted independently; one bad rule does not stop the
        others from loading.
        """
        if not path.exists():
            raise ConfigError(f"Rules file not found: {path}")
        data = read_toml(path)

        results: list[RuleLoadResult] = []
        for entry in data.get("rules", []):
            rule_id = str(entry.get("id", "?"))
            try:
                rule = rule_from_dict(entry, default_author=author)
                self.store.insert(rule, author=author)
            except (InvalidRule, DuplicateRule, RuleConflict) as exc:
                logger.warning("Rule %s not loaded: %s", rule_id, exc.message)
                results.append(RuleLoadResult(rule_id, exc.code, exc.message))
            else:
                results.append(RuleLoadResult(rule.id))
        return results

    # ------------------------------------------------------------------
    # Distillation
    # ------------------------------------------------------------------

    def distill_cycle(self, limit: int | None = None) -> DistillationSummary:
        return self.distiller.drain(self.patterns, limit=limit)

    # ------------------------------------------------------------------
    # Diagnostic passes
    # ------------------------------------------------------------------

    def targets(self) -> list[TargetRef]:
        return self.fleet.refs()

    async def run_pass(
        self,
        targets: list[TargetRef] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[DiagnosticReport]:
        if targets is None:
            targets = self.targets()
        return await self.pipeline.run_pass(targets, cancel_event)

    def trigger_pass(self, targets: list[TargetRef] | None = None) -> list[DiagnosticReport]:
        """Run an on-demand pass synchronously."""
        return asyncio.run(self.run_pass(targets))

    def latest_report(self, target_id: str) -> DiagnosticReport | None:
        if self._pipeline is not None and target_id in self._pipeline.latest_reports:
            return self._pipeline.latest_reports[target_id]
        if self.history is not None:
            return self.history.latest(target_id)
        return None

    def history_trend(self, target_id: str, days: int = 90) -> list[HistoryEntry]:
        if self.history is None:
            return []
        return self.history.trend(target_id, days=days)

    def regression_alerts(self, target_id: str, days: int = 30) -> list[RegressionAlert]:
        if self.history is None:
            return []
        return self.history.regression_alerts(target_id, days=days)

    def close(self) -> None:
        self.locks.close()
