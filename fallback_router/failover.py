"""Fallback engine: try providers in priority order until one answers."""

import asyncio
import time
from enum import Enum
from typing import Callable, Iterable, Mapping

from loguru import logger

from fallback_router.config import ConfigError
from fallback_router.cost import calculate_cost
from fallback_router.models import (
    AttemptOutcome,
    AttemptRecord,
    NormalizedResponse,
    ProviderConfig,
    RequestContext,
    RouteOutcome,
    RoutingResult,
    Verdict,
)
from fallback_router.providers import ProviderAdapter, ProviderError, ProviderTimeout
from fallback_router.refusal import RefusalClassifier


class RouteState(str, Enum):
    PENDING = "pending"
    TRYING = "trying"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


_HARD_FAILURES = (AttemptOutcome.ERROR, AttemptOutcome.TIMEOUT)


def sort_by_priority(providers: Iterable[ProviderConfig]) -> list[ProviderConfig]:
    """Ascending rank; ties keep configuration order (sorted() is stable)."""
    return sorted(providers, key=lambda p: p.priority)


def exhausted_outcome(attempts: Iterable[AttemptRecord]) -> RouteOutcome:
    """Any hard failure dominates refusals."""
    if any(a.outcome in _HARD_FAILURES for a in attempts):
        return RouteOutcome.ALL_FAILED
    return RouteOutcome.ALL_REFUSED


class FallbackEngine:
    """Sequential per-call fallback over a fixed provider snapshot.

    Each provider is attempted at most once per call, and every attempt
    yields exactly one AttemptRecord. Provider failures never escape
    ``run``; the caller always gets a RoutingResult. Cancelling the task
    running ``run`` cancels the in-flight adapter call and records nothing
    further.
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        adapters: Mapping[str, ProviderAdapter],
        classifier: RefusalClassifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = tuple(sort_by_priority(providers))
        if not self._chain:
            raise ConfigError("at least one provider must be configured")
        missing = [p.name for p in self._chain if p.name not in adapters]
        if missing:
            raise ConfigError(f"no adapter for provider(s): {', '.join(missing)}")
        self._adapters = dict(adapters)
        self._classifier = classifier or RefusalClassifier()
        self._clock = clock

    @property
    def chain(self) -> tuple[ProviderConfig, ...]:
        return self._chain

    async def run(self, context: RequestContext) -> RoutingResult:
        state = RouteState.PENDING
        if context.deadline <= self._clock():
            logger.info(f"Route {context.correlation_id}: deadline passed before first attempt")
            return RoutingResult(
                outcome=RouteOutcome.DEADLINE_EXCEEDED,
                skipped=tuple(p.name for p in self._chain),
                correlation_id=context.correlation_id,
            )

        attempts: list[AttemptRecord] = []
        skipped: tuple[str, ...] = ()

        for idx, provider in enumerate(self._chain):
            remaining = context.deadline - self._clock()
            if remaining <= 0:
                skipped = tuple(p.name for p in self._chain[idx:])
                logger.warning(
                    f"Route {context.correlation_id}: deadline exhausted, "
                    f"skipping {', '.join(skipped)}"
                )
                break

            state = RouteState.TRYING
            logger.debug(f"Route {context.correlation_id}: {state.value} {provider.name} (rank {provider.priority})")
            deadline_bound = remaining <= provider.timeout_s
            record, response, expired = await self._attempt(
                provider, context.prompt, min(provider.timeout_s, remaining)
            )
            attempts.append(record)

            if record.outcome is AttemptOutcome.TIMEOUT and deadline_bound and (
                expired or self._clock() >= context.deadline
            ):
                # The call's own deadline cut this attempt short: no new attempts.
                skipped = tuple(p.name for p in self._chain[idx + 1:])
                if skipped:
                    logger.warning(
                        f"Route {context.correlation_id}: deadline reached during "
                        f"{provider.name}, skipping {', '.join(skipped)}"
                    )
                break

            if record.outcome is AttemptOutcome.SUCCESS:
                state = RouteState.ACCEPTED
                logger.info(
                    f"Route {context.correlation_id}: {state.value} via {provider.name} "
                    f"after {len(attempts)} attempt(s)"
                )
                return RoutingResult(
                    outcome=RouteOutcome.ANSWERED,
                    response=response,
                    attempts=tuple(attempts),
                    provider=provider.name,
                    correlation_id=context.correlation_id,
                )

        state = RouteState.EXHAUSTED
        if not attempts:
            outcome = RouteOutcome.DEADLINE_EXCEEDED
        else:
            outcome = exhausted_outcome(attempts)
        logger.warning(
            f"Route {context.correlation_id}: {state.value} -> {outcome.value} "
            f"({len(attempts)} attempt(s), {len(skipped)} skipped)"
        )
        return RoutingResult(
            outcome=outcome,
            attempts=tuple(attempts),
            skipped=skipped,
            correlation_id=context.correlation_id,
        )

    async def _attempt(
        self, provider: ProviderConfig, prompt: str, budget: float,
    ) -> tuple[AttemptRecord, NormalizedResponse | None, bool]:
        """Invoke one provider once and classify the outcome.

        The third element is True when the budget itself ran out (the call was
        cancelled by ``wait_for``), as opposed to the adapter reporting a timeout.
        """
        adapter = self._adapters[provider.name]
        started = self._clock()
        t0 = time.monotonic()

        def _record(outcome: AttemptOutcome, error: str | None = None, cost: float = 0.0) -> AttemptRecord:
            return AttemptRecord(
                provider=provider.name,
                priority=provider.priority,
                started_at=started,
                ended_at=self._clock(),
                outcome=outcome,
                error=error,
                cost=cost,
                elapsed_s=time.monotonic() - t0,
            )

        try:
            response = await asyncio.wait_for(adapter.invoke(prompt, budget), timeout=budget)
        except ProviderTimeout as e:
            record = _record(AttemptOutcome.TIMEOUT, str(e))
            logger.warning(f"Provider {provider.name} timed out in {record.latency_ms}ms: {e}")
            return record, None, False
        except asyncio.TimeoutError:
            record = _record(AttemptOutcome.TIMEOUT, f"no response within {budget:.2f}s")
            logger.warning(f"Provider {provider.name} cancelled after {record.latency_ms}ms budget")
            return record, None, True
        except ProviderError as e:
            record = _record(AttemptOutcome.ERROR, f"{type(e).__name__}: {e}")
            logger.warning(f"Provider {provider.name} failed in {record.latency_ms}ms: {record.error}")
            return record, None, False
        except Exception as e:
            # Adapter bugs are still a provider-level failure, never the caller's.
            record = _record(AttemptOutcome.ERROR, f"{type(e).__name__}: {e}")
            logger.exception(f"Provider {provider.name} raised unexpectedly in {record.latency_ms}ms")
            return record, None, False

        cost = calculate_cost(provider, response)

        # Some upstreams report failure in-band rather than raising.
        if response.finish_reason == "error":
            record = _record(AttemptOutcome.ERROR, (response.text or "Unknown error")[:200], cost)
            logger.warning(f"Provider {provider.name} returned error ({record.latency_ms}ms): {record.error}")
            return record, None, False

        if self._classifier.classify(response) is Verdict.REFUSED:
            record = _record(AttemptOutcome.REFUSAL, cost=cost)
            logger.warning(f"Provider {provider.name} refused in {record.latency_ms}ms, falling back")
            return record, None, False

        return _record(AttemptOutcome.SUCCESS, cost=cost), response, False
