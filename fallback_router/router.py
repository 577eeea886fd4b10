"""Router — the inbound pipeline: admission, fallback, usage tracking."""

import asyncio
import time
from typing import Callable, Mapping

from loguru import logger

from fallback_router.config import RouterConfig, Settings, configure_logging, load_config
from fallback_router.cost import UsageTracker
from fallback_router.failover import FallbackEngine
from fallback_router.http_provider import build_adapters
from fallback_router.models import (
    AttemptRecord,
    RequestContext,
    RouteOutcome,
    RoutingResult,
)
from fallback_router.providers import ProviderAdapter
from fallback_router.rate_limit import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    SqliteCounterStore,
)
from fallback_router.refusal import RefusalClassifier


class Router:
    """Routes each call through the rate limiter, then the fallback engine.

    Composition is explicit: ``route`` admits the caller, runs the engine on
    a snapshot of the current configuration, and hands the attempt records
    to the usage tracker in the background. Terminal outcomes come back as
    RoutingResult values.

    ``reload`` swaps the configuration for subsequent calls only; calls
    already running keep the engine they started with.
    """

    def __init__(
        self,
        config: RouterConfig,
        adapters: Mapping[str, ProviderAdapter],
        *,
        tracker: UsageTracker | None = None,
        store: CounterStore | None = None,
        classifier: RefusalClassifier | None = None,
        clock: Callable[[], float] = time.time,
        default_deadline_s: float = 60.0,
    ):
        self._adapters = dict(adapters)
        self._clock = clock
        self._tracker = tracker or UsageTracker()
        self._store = store or InMemoryCounterStore(clock)
        self._classifier = classifier
        self._default_deadline_s = default_deadline_s
        self._pending: set[asyncio.Task] = set()
        self._install(config)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Router":
        """Build a router with HTTP adapters from env settings and the JSON config file."""
        settings = settings or Settings()
        configure_logging(settings.log_level)
        config = load_config(settings.config_path)
        store = SqliteCounterStore(settings.counter_db_path) if settings.counter_db_path else None
        return cls(
            config,
            build_adapters(config.providers),
            tracker=UsageTracker(settings.usage_db_path),
            store=store,
            default_deadline_s=settings.default_deadline_s,
        )

    def _install(self, config: RouterConfig) -> None:
        classifier = self._classifier or RefusalClassifier(config.refusal_signatures)
        engine = FallbackEngine(config.providers, self._adapters, classifier, self._clock)
        limiter = RateLimiter(config.quotas, self._store, config.default_tier)
        # One assignment so a concurrent call never sees a half-updated pair.
        self._snapshot = (config, engine, limiter)

    @property
    def config(self) -> RouterConfig:
        return self._snapshot[0]

    @property
    def tracker(self) -> UsageTracker:
        return self._tracker

    def reload(
        self, config: RouterConfig, adapters: Mapping[str, ProviderAdapter] | None = None,
    ) -> None:
        """Hot-swap the routing table. In-flight calls are unaffected."""
        if adapters is not None:
            self._adapters = {**self._adapters, **adapters}
        self._install(config)
        logger.info(
            f"Router: config reloaded, order="
            f"{[p.name for p in self._snapshot[1].chain]}"
        )

    async def route(
        self,
        prompt: str,
        caller_id: str,
        tier: str,
        deadline: float | None = None,
    ) -> RoutingResult:
        if deadline is None:
            deadline = self._clock() + self._default_deadline_s
        context = RequestContext(caller_id=caller_id, tier=tier, prompt=prompt, deadline=deadline)
        return await self.route_context(context)

    async def route_context(self, context: RequestContext) -> RoutingResult:
        _, engine, limiter = self._snapshot

        admission = await limiter.admit(context.caller_id, context.tier)
        if not admission.allowed:
            return RoutingResult(
                outcome=RouteOutcome.RATE_LIMITED,
                retry_after=admission.retry_after,
                correlation_id=context.correlation_id,
            )

        logger.info(
            f"Route {context.correlation_id}: {context.caller_id} ({context.tier}) "
            f"→ {[p.name for p in engine.chain]}"
        )
        result = await engine.run(context)
        self._track(context, result.attempts)
        return result

    # --- Usage tracking (fire-and-forget) ---

    def _track(self, context: RequestContext, attempts: tuple[AttemptRecord, ...]) -> None:
        task = asyncio.create_task(self._record_usage(context, attempts))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record_usage(
        self, context: RequestContext, attempts: tuple[AttemptRecord, ...],
    ) -> None:
        try:
            await self._tracker.record(context, attempts)
        except Exception as e:
            logger.error(f"Usage tracking failed for {context.correlation_id}: {e}")

    async def drain(self) -> None:
        """Wait for outstanding usage records to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for adapter in self._adapters.values():
            await adapter.aclose()
        await self._store.close()
