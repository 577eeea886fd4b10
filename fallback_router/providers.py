"""Provider adapter contract and transport-level errors."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from fallback_router.models import NormalizedResponse


class ProviderError(Exception):
    """Base for transport-level failures of a single provider."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ProviderTimeout(ProviderError):
    """Upstream did not respond within the allotted timeout."""


class ProviderUnavailable(ProviderError):
    """Connection, auth or upstream rate-limit failure."""


class ProviderMalformedResponse(ProviderError):
    """Upstream answered but the payload could not be normalized."""


class ProviderAdapter(ABC):
    """Uniform wrapper around one upstream text-generation provider.

    Adapters make exactly one outbound call per ``invoke``. They never retry;
    the router owns retry policy so its attempt accounting stays exact.
    """

    def __init__(self, name: str):
        self.name = name

    async def invoke(self, prompt: str, timeout: float) -> NormalizedResponse:
        if not prompt:
            raise ValueError("prompt must be non-empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        return await self._invoke(prompt, timeout)

    @abstractmethod
    async def _invoke(self, prompt: str, timeout: float) -> NormalizedResponse:
        """Send one request upstream and normalize the reply."""
        ...

    async def aclose(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class CallableProvider(ProviderAdapter):
    """Adapter over an async callable ``fn(prompt, timeout)``.

    The callable may return a ``NormalizedResponse`` or a bare string.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[str, float], Awaitable[NormalizedResponse | str]],
    ):
        super().__init__(name)
        self._fn = fn

    async def _invoke(self, prompt: str, timeout: float) -> NormalizedResponse:
        result = await self._fn(prompt, timeout)
        if isinstance(result, NormalizedResponse):
            return result
        if isinstance(result, str):
            return NormalizedResponse(text=result)
        raise ProviderMalformedResponse(
            f"unexpected result type {type(result).__name__}", self.name
        )
