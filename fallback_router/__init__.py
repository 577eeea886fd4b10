"""fallback-router: priority-ordered LLM provider fallback with refusal detection and tiered rate limits."""

from fallback_router.config import ConfigError, RouterConfig, Settings, load_config
from fallback_router.cost import UsageTracker
from fallback_router.failover import FallbackEngine, RouteState
from fallback_router.models import (
    Admission,
    AttemptOutcome,
    AttemptRecord,
    NormalizedResponse,
    ProviderConfig,
    RequestContext,
    RouteOutcome,
    RoutingResult,
    TierQuota,
    Verdict,
)
from fallback_router.providers import (
    CallableProvider,
    ProviderAdapter,
    ProviderError,
    ProviderMalformedResponse,
    ProviderTimeout,
    ProviderUnavailable,
)
from fallback_router.rate_limit import InMemoryCounterStore, RateLimiter, SqliteCounterStore
from fallback_router.refusal import RefusalClassifier
from fallback_router.router import Router

__all__ = [
    "Admission",
    "AttemptOutcome",
    "AttemptRecord",
    "CallableProvider",
    "ConfigError",
    "FallbackEngine",
    "InMemoryCounterStore",
    "NormalizedResponse",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderError",
    "ProviderMalformedResponse",
    "ProviderTimeout",
    "ProviderUnavailable",
    "RateLimiter",
    "RefusalClassifier",
    "RequestContext",
    "RouteOutcome",
    "RouteState",
    "Router",
    "RouterConfig",
    "RoutingResult",
    "Settings",
    "SqliteCounterStore",
    "TierQuota",
    "UsageTracker",
    "Verdict",
    "load_config",
]
