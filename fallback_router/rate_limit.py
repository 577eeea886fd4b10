"""Tiered, per-caller admission control in front of the router."""

import asyncio
import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Mapping

import aiosqlite
from loguru import logger

from fallback_router.models import Admission, TierQuota

CounterKey = tuple[str, ...]


def window_index(now: float, window_s: float) -> int:
    return int(now // window_s)


def retry_after(now: float, window_s: float) -> float:
    """Seconds until the current fixed window rolls over."""
    return (window_index(now, window_s) + 1) * window_s - now


class CounterStore(ABC):
    """Fixed-window counters. ``check_and_increment`` must be atomic.

    Keys are tuples such as ``(caller_id, tier)``, so no part can bleed into another.
    """

    @abstractmethod
    async def check_and_increment(self, key: CounterKey, window_s: float, limit: int) -> Admission:
        ...

    async def close(self) -> None:
        return None


class InMemoryCounterStore(CounterStore):
    """Process-local counters: key -> [window_s, window index, count].

    Whenever a window length rolls over to a new index, every entry whose
    window has ended is swept, so callers that never return do not linger.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[CounterKey, list] = {}
        self._current: dict[float, int] = {}  # window_s -> latest window index seen

    def _sweep(self, now: float) -> None:
        expired = [
            key for key, (window_s, window, _) in self._counters.items()
            if window < window_index(now, window_s)
        ]
        for key in expired:
            del self._counters[key]
        if expired:
            logger.debug(f"RateLimiter: pruned {len(expired)} expired counter(s)")

    async def check_and_increment(self, key: CounterKey, window_s: float, limit: int) -> Admission:
        now = self._clock()
        window = window_index(now, window_s)
        with self._lock:
            if self._current.get(window_s) != window:
                self._current[window_s] = window
                self._sweep(now)
            state = self._counters.get(key)
            if state is None or state[1] != window:
                # Window rollover resets the count.
                state = [window_s, window, 0]
                self._counters[key] = state
            if state[2] >= limit:
                return Admission.deny(retry_after(now, window_s))
            state[2] += 1
        return Admission.allow()

    def count(self, key: CounterKey) -> int:
        with self._lock:
            state = self._counters.get(key)
            return state[2] if state else 0

    def size(self) -> int:
        with self._lock:
            return len(self._counters)


class SqliteCounterStore(CounterStore):
    """Counters in a SQLite file, shareable between processes on one host.

    The admission decision is a single conditional UPDATE inside an
    IMMEDIATE transaction, so concurrent writers cannot both pass the check.
    Keys are stored JSON-encoded; rows whose window has ended are deleted
    on every call.
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self._clock = clock
        self._ready = False
        self._init_lock = asyncio.Lock()

    async def _init(self) -> None:
        async with self._init_lock:
            if self._ready:
                return
            async with aiosqlite.connect(self.db_path, timeout=30) as db:
                await db.execute(
                    """CREATE TABLE IF NOT EXISTS rate_counters (
                           key TEXT NOT NULL,
                           window INTEGER NOT NULL,
                           expires_at REAL NOT NULL,
                           count INTEGER NOT NULL DEFAULT 0,
                           PRIMARY KEY (key, window)
                       )"""
                )
                await db.execute(
                    "CREATE INDEX IF NOT EXISTS rate_counters_expiry ON rate_counters (expires_at)"
                )
                await db.commit()
            self._ready = True

    async def check_and_increment(self, key: CounterKey, window_s: float, limit: int) -> Admission:
        await self._init()
        now = self._clock()
        window = window_index(now, window_s)
        encoded = json.dumps(list(key))
        async with aiosqlite.connect(self.db_path, timeout=30, isolation_level=None) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute("DELETE FROM rate_counters WHERE expires_at <= ?", (now,))
                await db.execute(
                    """INSERT OR IGNORE INTO rate_counters (key, window, expires_at, count)
                       VALUES (?, ?, ?, 0)""",
                    (encoded, window, (window + 1) * window_s),
                )
                cur = await db.execute(
                    """UPDATE rate_counters SET count = count + 1
                       WHERE key = ? AND window = ? AND count < ?""",
                    (encoded, window, limit),
                )
                admitted = cur.rowcount == 1
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise
        if admitted:
            return Admission.allow()
        return Admission.deny(retry_after(now, window_s))

    async def row_count(self) -> int:
        await self._init()
        async with aiosqlite.connect(self.db_path, timeout=30) as db:
            cur = await db.execute("SELECT COUNT(*) FROM rate_counters")
            (n,) = await cur.fetchone()
            return n


class RateLimiter:
    """Per-caller quotas by tier. Unlimited tiers never touch the store."""

    def __init__(
        self,
        quotas: Mapping[str, TierQuota],
        store: CounterStore | None = None,
        default_tier: str = "free",
    ):
        if default_tier not in quotas:
            raise ValueError(f"default_tier {default_tier!r} has no quota")
        self._quotas = dict(quotas)
        self._store = store or InMemoryCounterStore()
        self._default_tier = default_tier

    def quota_for(self, tier: str) -> tuple[str, TierQuota]:
        if tier in self._quotas:
            return tier, self._quotas[tier]
        logger.warning(f"RateLimiter: unknown tier {tier!r}, using {self._default_tier!r}")
        return self._default_tier, self._quotas[self._default_tier]

    async def admit(self, caller_id: str, tier: str) -> Admission:
        tier, quota = self.quota_for(tier)
        if quota.unlimited:
            return Admission.allow()
        admission = await self._store.check_and_increment(
            (caller_id, tier), quota.window_s, quota.limit,
        )
        if not admission.allowed:
            logger.info(
                f"RateLimiter: denied {caller_id} ({tier}, {quota.limit}/{quota.window_s:.0f}s), "
                f"retry in {admission.retry_after:.0f}s"
            )
        return admission
