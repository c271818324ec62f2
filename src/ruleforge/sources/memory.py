"""In-memory sources for embedding RuleForge and for tests."""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Iterator

from ruleforge.core.errors import ObservationUnavailable
from ruleforge.core.models import (
    ActionResult,
    ActionSpec,
    FactSnapshot,
    FeedbackRecord,
    Pattern,
    TargetRef,
)
from ruleforge.sources.base import ActionPort, ObservationSource, PatternSource


class StaticObservationSource(ObservationSource):
    """Serves fact snapshots registered per target id."""

    def __init__(self, snapshots: Iterable[FactSnapshot] = ()) -> None:
        self.snapshots: dict[str, FactSnapshot] = {s.target_id: s for s in snapshots}
        self.unavailable: dict[str, str] = {}
        self.calls = 0

    def set(self, snapshot: FactSnapshot) -> None:
        self.snapshots[snapshot.target_id] = snapshot
        self.unavailable.pop(snapshot.target_id, None)

    def fail(self, target_id: str, reason: str = "unreachable") -> None:
        self.unavailable[target_id] = reason

    async def facts(self, target: TargetRef) -> FactSnapshot:
        self.calls += 1
        if target.id in self.unavailable:
            raise ObservationUnavailable(target.id, self.unavailable[target.id])
        try:
            return self.snapshots[target.id]
        except KeyError:
            raise ObservationUnavailable(target.id, "no facts registered") from None


class MemoryPatternSource(PatternSource):
    """Queue of patterns; collects the feedback it receives."""

    def __init__(self, patterns: Iterable[Pattern] = ()) -> None:
        self.pending: list[Pattern] = list(patterns)
        self.received: list[FeedbackRecord] = []

    def add(self, *patterns: Pattern) -> None:
        self.pending.extend(patterns)

    def next_patterns(self) -> Iterator[Pattern]:
        while self.pending:
            yield self.pending.pop(0)

    def feedback(self, record: FeedbackRecord) -> None:
        self.received.append(record)


ActionHandler = Callable[[TargetRef, ActionSpec], ActionResult]


class RecordingActionPort(ActionPort):
    """Records every applied action.

    Without a handler, the first application of an action to a target is
    ``applied`` and repeats are ``unchanged``. ``delay`` holds each call open
    for that many seconds, which makes lock contention and timeouts easy to
    provoke.
    """

    def __init__(self, handler: ActionHandler | None = None, delay: float = 0.0) -> None:
        self.handler = handler
        self.delay = delay
        self.calls: list[tuple[str, ActionSpec]] = []
        self._applied: set[tuple[str, str]] = set()

    async def apply(self, target: TargetRef, action: ActionSpec) -> ActionResult:
        self.calls.append((target.id, action))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.handler is not None:
            return self.handler(target, action)
        key = (target.id, action.describe())
        if key in self._applied:
            return ActionResult.unchanged("already applied")
        self._applied.add(key)
        return ActionResult.applied(action.describe())
