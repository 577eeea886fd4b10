"""Shared fixtures: scripted provider adapters and small config builders."""

from __future__ import annotations

import asyncio
import time

import pytest

from fallback_router.config import RouterConfig
from fallback_router.models import NormalizedResponse, ProviderConfig, TierQuota
from fallback_router.providers import (
    ProviderAdapter,
    ProviderMalformedResponse,
    ProviderTimeout,
    ProviderUnavailable,
)

REFUSAL_TEXT = "I'm sorry, but I can't help with that request."


class ScriptedProvider(ProviderAdapter):
    """Fake adapter whose behaviour is fixed up front.

    ``behavior`` is one of: ok, refuse, timeout, unavailable, malformed,
    error_reason, crash, hang, slow_ok. ``on_call`` runs at the start of
    every call, before the behaviour.
    """

    def __init__(self, name: str, behavior: str = "ok", call_log: list | None = None,
                 text: str | None = None, delay: float = 0.05, on_call=None):
        super().__init__(name)
        self.behavior = behavior
        self.calls = 0
        self.cancelled = False
        self.timeouts_seen: list[float] = []
        self._log = call_log if call_log is not None else []
        self._text = text
        self._delay = delay
        self._on_call = on_call

    async def _invoke(self, prompt: str, timeout: float) -> NormalizedResponse:
        self.calls += 1
        self.timeouts_seen.append(timeout)
        self._log.append(self.name)
        if self._on_call is not None:
            self._on_call()
        b = self.behavior
        if b == "ok":
            return NormalizedResponse(
                text=self._text or f"answer from {self.name}",
                usage={"prompt_tokens": 100, "completion_tokens": 400},
            )
        if b == "refuse":
            return NormalizedResponse(text=self._text or REFUSAL_TEXT)
        if b == "timeout":
            raise ProviderTimeout("upstream timed out", self.name)
        if b == "unavailable":
            raise ProviderUnavailable("HTTP 429", self.name)
        if b == "malformed":
            raise ProviderMalformedResponse("missing choices", self.name)
        if b == "error_reason":
            return NormalizedResponse(text="Error calling LLM: boom", finish_reason="error")
        if b == "crash":
            raise RuntimeError("adapter bug")
        if b == "slow_ok":
            await asyncio.sleep(self._delay)
            return NormalizedResponse(text=f"slow answer from {self.name}")
        if b == "hang":
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        raise AssertionError(f"unknown behavior {b}")


def provider_config(name: str, priority: int, timeout_s: float = 5.0, **kw) -> ProviderConfig:
    return ProviderConfig(name=name, priority=priority, timeout_s=timeout_s, **kw)


def router_config(*providers: ProviderConfig, quotas: dict | None = None) -> RouterConfig:
    return RouterConfig(
        providers=tuple(providers),
        quotas=quotas or {"free": TierQuota(limit=10, window_s=86400.0), "pro": TierQuota(limit=None)},
    )


def future_deadline(seconds: float = 5.0) -> float:
    return time.time() + seconds


@pytest.fixture
def call_log() -> list:
    return []
