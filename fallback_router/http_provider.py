"""HttpProvider — generic JSON chat-completions adapter over httpx."""

import os
from typing import Any

import httpx
from loguru import logger

from fallback_router.models import NormalizedResponse, ProviderConfig
from fallback_router.providers import (
    ProviderAdapter,
    ProviderMalformedResponse,
    ProviderTimeout,
    ProviderUnavailable,
)

# The upstream gave up waiting. Every other error status means the provider
# cannot serve this call; only a 2xx with an unreadable body is malformed.
_TIMEOUT_STATUSES = {408, 504}


class HttpProvider(ProviderAdapter):
    """POSTs ``{"model", "messages"}`` to ``config.endpoint`` and reads
    ``choices[0].message.content`` from the reply.
    """

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None):
        super().__init__(config.name)
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.credential_env:
            api_key = os.getenv(self.config.credential_env)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            else:
                logger.warning(
                    f"HttpProvider {self.name}: {self.config.credential_env} is not set"
                )
        return headers

    async def _invoke(self, prompt: str, timeout: float) -> NormalizedResponse:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            resp = await self._client.post(
                self.config.endpoint,
                json=payload,
                headers=self._headers(),
                timeout=httpx.Timeout(timeout),
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"no response within {timeout:.2f}s: {e}", self.name) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"transport error: {e}", self.name) from e

        if resp.status_code in _TIMEOUT_STATUSES:
            raise ProviderTimeout(
                f"HTTP {resp.status_code}: {resp.text[:200]}", self.name
            )
        if resp.status_code >= 400:
            raise ProviderUnavailable(
                f"HTTP {resp.status_code}: {resp.text[:200]}", self.name
            )
        return self._normalize(resp)

    def _normalize(self, resp: httpx.Response) -> NormalizedResponse:
        try:
            data = resp.json()
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderMalformedResponse(
                f"cannot normalize payload: {e!r}", self.name
            ) from e
        if not isinstance(text, str):
            raise ProviderMalformedResponse("content is not a string", self.name)

        usage = data.get("usage") or {}
        return NormalizedResponse(
            text=text,
            finish_reason=choice.get("finish_reason") or "stop",
            usage={k: int(v) for k, v in usage.items() if isinstance(v, (int, float))},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_adapters(
    providers: tuple[ProviderConfig, ...] | list[ProviderConfig],
    client: httpx.AsyncClient | None = None,
) -> dict[str, ProviderAdapter]:
    """One HttpProvider per configured provider, keyed by name."""
    return {p.name: HttpProvider(p, client=client) for p in providers}
