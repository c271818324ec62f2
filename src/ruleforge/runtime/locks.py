"""Advisory, TTL-bounded repair locks.

Locks serialize repairs per ``(target_id, category)`` key. Acquisition never
waits: a held key raises :class:`LockBusy` immediately and the repair is
retried on the next scheduled pass. Every lock expires after its TTL so a
crashed executor cannot strand a target.

State is sharded by key so that unrelated targets never contend on one
mutex.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
import zlib
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from ruleforge.core.errors import LockBusy, LockManagerUnavailable

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = 60.0

LockKey = tuple[str, str]


@dataclass(frozen=True)
class LockToken:
    key: LockKey
    token: str
    holder: str
    expires_at: float


class _Shard:
    __slots__ = ("lock", "held")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.held: dict[LockKey, LockToken] = {}


class LockManager:
    """Non-blocking lock table keyed by ``(target_id, category)``."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_LOCK_TTL,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._shards = [_Shard() for _ in range(max(1, shards))]
        self._closed = False

    def acquire(self, key: LockKey, ttl: float | None = None, holder: str = "") -> LockToken:
        """Take the lock for *key* or raise :class:`LockBusy` at once."""
        if self._closed:
            raise LockManagerUnavailable("Lock manager has been shut down")
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            current = shard.held.get(key)
            if current is not None:
                if current.expires_at > now:
                    raise LockBusy(key, current.holder)
                logger.warning(
                    "Lock %s/%s held by %s expired; reclaiming", key[0], key[1], current.holder or "?"
                )
            token = LockToken(
                key=key,
                token=uuid.uuid4().hex,
                holder=holder,
                expires_at=now + (self.default_ttl if ttl is None else ttl),
            )
            shard.held[key] = token
        return token

    def release(self, token: LockToken) -> bool:
        """Release *token*. Stale tokens (expired and re-acquired) are ignored."""
        shard = self._shard(token.key)
        with shard.lock:
            current = shard.held.get(token.key)
            if current is None or current.token != token.token:
                logger.debug("Ignoring release of stale lock token for %s/%s", *token.key)
                return False
            del shard.held[token.key]
            return True

    def is_locked(self, key: LockKey) -> bool:
        shard = self._shard(key)
        with shard.lock:
            current = shard.held.get(key)
            return current is not None and current.expires_at > self._clock()

    @contextmanager
    def hold(self, key: LockKey, ttl: float | None = None, holder: str = "") -> Iterator[LockToken]:
        token = self.acquire(key, ttl=ttl, holder=holder)
        try:
            yield token
        finally:
            self.release(token)

    def close(self) -> None:
        """Refuse further acquisitions; in-flight holders may still release."""
        self._closed = True

    def _shard(self, key: LockKey) -> _Shard:
        raw = f"{key[0]}\x00{key[1]}".encode("utf-8")
        return self._shards[zlib.crc32(raw) % len(self._shards)]
