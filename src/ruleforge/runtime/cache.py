"""Result cache for rule evaluations.

Entries are keyed by ``(rule_id, target_id, facts_digest)``, so a changed
fact snapshot can never hit a stale entry. Invalidation is coarse: when a
target's facts change, every entry of that target is dropped regardless of
rule. Expired entries are evicted lazily on lookup.

The cache is sharded by target id; each shard has its own mutex.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600.0


@dataclass(frozen=True)
class CacheKey:
    rule_id: str
    target_id: str
    facts_digest: str

    @property
    def digest(self) -> str:
        raw = f"{self.rule_id}\x00{self.target_id}\x00{self.facts_digest}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    key: CacheKey
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class _Shard:
    __slots__ = ("lock", "entries", "digests", "hits", "misses")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, dict[CacheKey, CacheEntry]] = {}
        self.digests: dict[str, str] = {}
        self.hits = 0
        self.misses = 0


class ResultCache:
    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._shards = [_Shard() for _ in range(max(1, shards))]

    def get(self, key: CacheKey) -> CacheEntry | None:
        """Return the live entry for *key*, or ``None`` on a miss."""
        shard = self._shard(key.target_id)
        with shard.lock:
            bucket = shard.entries.get(key.target_id)
            entry = bucket.get(key) if bucket else None
            if entry is not None and entry.expires_at <= self._clock():
                del bucket[key]
                entry = None
            if entry is None:
                shard.misses += 1
            else:
                shard.hits += 1
            return entry

    def put(self, key: CacheKey, value: Any, ttl: float | None = None) -> CacheEntry:
        entry = CacheEntry(key, value, self._clock() + (self.ttl if ttl is None else ttl))
        shard = self._shard(key.target_id)
        with shard.lock:
            shard.entries.setdefault(key.target_id, {})[key] = entry
        return entry

    def invalidate(self, target_id: str) -> int:
        """Drop every entry of *target_id*. Returns how many were removed."""
        shard = self._shard(target_id)
        with shard.lock:
            removed = shard.entries.pop(target_id, {})
            shard.digests.pop(target_id, None)
        if removed:
            logger.debug("Invalidated %d cached result(s) for %s", len(removed), target_id)
        return len(removed)

    def observe(self, target_id: str, facts_digest: str) -> bool:
        """Note the latest fact digest of a target.

        Returns ``True`` when the digest changed and the target's entries
        were invalidated.
        """
        shard = self._shard(target_id)
        with shard.lock:
            previous = shard.digests.get(target_id)
            shard.digests[target_id] = facts_digest
            if previous is None or previous == facts_digest:
                return False
            removed = shard.entries.pop(target_id, {})
        logger.debug("Facts of %s changed; dropped %d cached result(s)", target_id, len(removed))
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        purged = 0
        for shard in self._shards:
            with shard.lock:
                for bucket in shard.entries.values():
                    stale = [k for k, e in bucket.items() if e.expires_at <= now]
                    for k in stale:
                        del bucket[k]
                    purged += len(stale)
        return purged

    def stats(self) -> CacheStats:
        stats = CacheStats()
        for shard in self._shards:
            with shard.lock:
                stats.hits += shard.hits
                stats.misses += shard.misses
                stats.size += sum(len(b) for b in shard.entries.values())
        return stats

    def __len__(self) -> int:
        return self.stats().size

    def _shard(self, target_id: str) -> _Shard:
        return self._shards[zlib.crc32(target_id.encode("utf-8")) % len(self._shards)]
