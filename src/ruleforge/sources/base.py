"""Ports to the engine's external collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from ruleforge.core.models import (
    ActionResult,
    ActionSpec,
    FactSnapshot,
    FeedbackRecord,
    Pattern,
    TargetRef,
)


class ObservationSource(ABC):
    """Supplies the current fact snapshot of a target."""

    @abstractmethod
    async def facts(self, target: TargetRef) -> FactSnapshot:
        """Return the target's facts.

        Raise :class:`~ruleforge.core.errors.ObservationUnavailable` when the
        target cannot be observed.
        """
        ...


class ActionPort(ABC):
    """Performs repairs against whatever forge API is in play.

    Implementations must be idempotent: applying an action whose goal the
    target already satisfies returns ``unchanged``, not an error.
    """

    @abstractmethod
    async def apply(self, target: TargetRef, action: ActionSpec) -> ActionResult:
        ...


class PatternSource(ABC):
    """Upstream producer of candidate patterns, consumer of feedback."""

    @abstractmethod
    def next_patterns(self) -> Iterator[Pattern]:
        """Lazily yield the patterns available right now."""
        ...

    @abstractmethod
    def feedback(self, record: FeedbackRecord) -> None:
        """Fire-and-forget learning signal."""
        ...
