"""Usage and cost tracking for routing attempts."""

from dataclasses import dataclass
from typing import Iterable

import aiosqlite
from loguru import logger

from fallback_router.models import (
    AttemptOutcome,
    AttemptRecord,
    NormalizedResponse,
    ProviderConfig,
    RequestContext,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    correlation_id TEXT NOT NULL,
    caller_id TEXT NOT NULL,
    tier TEXT NOT NULL,
    provider TEXT NOT NULL,
    priority INTEGER NOT NULL,
    outcome TEXT NOT NULL,
    started_at REAL NOT NULL,
    ended_at REAL NOT NULL,
    latency_ms INTEGER NOT NULL,
    cost REAL NOT NULL DEFAULT 0,
    error TEXT
)
"""


def calculate_cost(provider: ProviderConfig, response: NormalizedResponse) -> float:
    """Estimated cost units for one response at the provider's per-1k-token rate."""
    return response.total_tokens / 1000 * provider.cost_per_1k_tokens


@dataclass
class ProviderUsage:
    attempts: int = 0
    successes: int = 0
    refusals: int = 0
    errors: int = 0
    timeouts: int = 0
    total_latency_ms: int = 0
    total_cost: float = 0.0

    def add(self, record: AttemptRecord) -> None:
        self.attempts += 1
        self.total_latency_ms += record.latency_ms
        self.total_cost += record.cost
        if record.outcome is AttemptOutcome.SUCCESS:
            self.successes += 1
        elif record.outcome is AttemptOutcome.REFUSAL:
            self.refusals += 1
        elif record.outcome is AttemptOutcome.TIMEOUT:
            self.timeouts += 1
        else:
            self.errors += 1

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.attempts if self.attempts else 0.0


class UsageTracker:
    """Aggregates attempt records in memory and optionally appends them to SQLite."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path
        self._usage: dict[str, ProviderUsage] = {}
        self._calls = 0
        self._db_ready = False

    async def init_db(self) -> None:
        if not self.db_path or self._db_ready:
            return
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(_SCHEMA)
            await db.commit()
        self._db_ready = True

    async def record(self, context: RequestContext, attempts: Iterable[AttemptRecord]) -> None:
        attempts = list(attempts)
        self._calls += 1
        for a in attempts:
            self._usage.setdefault(a.provider, ProviderUsage()).add(a)

        if not self.db_path or not attempts:
            return
        await self.init_db()
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                """INSERT INTO attempts
                   (correlation_id, caller_id, tier, provider, priority, outcome,
                    started_at, ended_at, latency_ms, cost, error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        context.correlation_id, context.caller_id, context.tier,
                        a.provider, a.priority, a.outcome.value,
                        a.started_at, a.ended_at, a.latency_ms, a.cost, a.error,
                    )
                    for a in attempts
                ],
            )
            await db.commit()
        logger.debug(f"Usage: stored {len(attempts)} attempt(s) for {context.correlation_id}")

    def summary(self) -> dict[str, dict]:
        """Per-provider stats, for status output and cost analysis."""
        return {
            name: {
                "attempts": u.attempts,
                "successes": u.successes,
                "refusals": u.refusals,
                "errors": u.errors,
                "timeouts": u.timeouts,
                "avg_latency_ms": round(u.avg_latency_ms, 1),
                "total_cost": round(u.total_cost, 6),
            }
            for name, u in sorted(self._usage.items())
        }

    @property
    def calls_recorded(self) -> int:
        return self._calls

    async def stored_attempts(self, correlation_id: str | None = None) -> list[tuple]:
        """Read back persisted rows as (provider, outcome, cost) tuples, oldest first."""
        if not self.db_path:
            return []
        await self.init_db()
        query = "SELECT provider, outcome, cost FROM attempts"
        params: tuple = ()
        if correlation_id:
            query += " WHERE correlation_id = ?"
            params = (correlation_id,)
        async with aiosqlite.connect(self.db_path) as db:
            cur = await db.execute(query + " ORDER BY id", params)
            return [tuple(row) for row in await cur.fetchall()]
