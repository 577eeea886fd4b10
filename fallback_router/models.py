"""Core data models for fallback-router."""

import uuid
from dataclasses import dataclass, field
from enum import Enum


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    REFUSAL = "refusal"
    ERROR = "error"
    TIMEOUT = "timeout"


class RouteOutcome(str, Enum):
    ANSWERED = "answered"
    ALL_REFUSED = "all_refused"
    ALL_FAILED = "all_failed"
    RATE_LIMITED = "rate_limited"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class Verdict(str, Enum):
    ACCEPTED = "accepted"
    REFUSED = "refused"


@dataclass(frozen=True)
class ProviderConfig:
    """One upstream provider in the priority table."""

    name: str
    priority: int                  # lower = tried first
    endpoint: str = ""
    credential_env: str | None = None  # env var holding the API key, never the key itself
    model: str = ""
    timeout_s: float = 30.0
    max_attempts: int = 1
    cost_per_1k_tokens: float = 0.0


@dataclass(frozen=True)
class RequestContext:
    """A single inbound routing call."""

    caller_id: str
    tier: str
    prompt: str
    deadline: float  # absolute, epoch seconds
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt must be non-empty")
        if not self.caller_id:
            raise ValueError("caller_id must be non-empty")


@dataclass
class NormalizedResponse:
    """Response from a provider adapter, normalized to one shape."""

    text: str
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        if "total_tokens" in self.usage:
            return self.usage["total_tokens"]
        return self.usage.get("prompt_tokens", 0) + self.usage.get("completion_tokens", 0)


@dataclass(frozen=True)
class AttemptRecord:
    """One invocation of one provider within a routing call."""

    provider: str
    priority: int
    started_at: float
    ended_at: float
    outcome: AttemptOutcome
    error: str | None = None
    cost: float = 0.0
    elapsed_s: float | None = None  # monotonic duration; timestamps above are wall clock

    @property
    def latency_ms(self) -> int:
        if self.elapsed_s is not None:
            return int(self.elapsed_s * 1000)
        return int((self.ended_at - self.started_at) * 1000)


@dataclass(frozen=True)
class RoutingResult:
    """What the caller gets back. Terminal outcomes are values, never exceptions."""

    outcome: RouteOutcome
    response: NormalizedResponse | None = None
    attempts: tuple[AttemptRecord, ...] = ()
    provider: str | None = None
    skipped: tuple[str, ...] = ()  # not attempted because the deadline ran out
    retry_after: float | None = None
    correlation_id: str = ""

    @property
    def answered(self) -> bool:
        return self.outcome is RouteOutcome.ANSWERED


@dataclass(frozen=True)
class Admission:
    """Rate limiter verdict: allowed, or denied with a retry hint."""

    allowed: bool
    retry_after: float | None = None

    @classmethod
    def allow(cls) -> "Admission":
        return cls(allowed=True)

    @classmethod
    def deny(cls, retry_after: float) -> "Admission":
        return cls(allowed=False, retry_after=max(0.0, retry_after))


@dataclass(frozen=True)
class TierQuota:
    """Requests allowed per window. ``limit=None`` means unlimited (no check at all)."""

    limit: int | None
    window_s: float = 86400.0

    @property
    def unlimited(self) -> bool:
        return self.limit is None
