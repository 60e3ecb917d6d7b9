"""Time-bounded memo of rule evaluation results."""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable, Hashable

from .schema import EventAction, SimulationContext

DEFAULT_TTL_SECONDS = 60.0

CacheKey = tuple[Hashable, int, int, int, int]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    stored_at: float
    actions: tuple[EventAction, ...]


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def cache_key(rule: Hashable, context: SimulationContext) -> CacheKey:
    """Key on the rule and the context fields that shape its outcome.

    Cash is bucketed to $1,000 and income to $100 so that small drifts between
    periods still hit.
    """
    return (
        rule,
        context.current_month,
        int(context.cash_balance // 1000),
        int(context.monthly_income // 100),
        context.current_age,
    )


class ResultCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @ttl_seconds.setter
    def ttl_seconds(self, value: float) -> None:
        with self._lock:
            self._ttl = value

    def get(self, key: CacheKey) -> tuple[EventAction, ...] | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry.stored_at >= self._ttl:
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.actions

    def put(self, key: CacheKey, actions: tuple[EventAction, ...]) -> None:
        entry = CacheEntry(self._clock(), tuple(actions))
        with self._lock:
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(len(self._entries), self._hits, self._misses)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
