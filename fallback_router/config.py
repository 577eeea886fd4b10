"""Configuration: process settings from the environment, routing table from JSON.

Settings (paths, log level, default deadline) come from ``FALLBACK_ROUTER_*``
environment variables or a ``.env`` file. The routing table (providers,
refusal signatures, tier quotas) is loaded once from a JSON file into an
immutable ``RouterConfig`` that is handed to the Router explicitly.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

from fallback_router.models import ProviderConfig, TierQuota
from fallback_router.refusal import DEFAULT_REFUSAL_SIGNATURES, load_signatures


class ConfigError(ValueError):
    """Invalid routing configuration."""


class Settings(BaseSettings):
    """Process-level settings loaded from environment variables."""

    config_path: str = "router.json"
    usage_db_path: str | None = None      # None = in-memory usage stats only
    counter_db_path: str | None = None    # None = in-process rate-limit counters
    log_level: str = "INFO"
    default_deadline_s: float = 60.0

    model_config = SettingsConfigDict(
        env_prefix="FALLBACK_ROUTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


DEFAULT_QUOTAS: dict[str, TierQuota] = {
    "free": TierQuota(limit=10, window_s=86400.0),
    "pro": TierQuota(limit=None),
}


@dataclass(frozen=True)
class RouterConfig:
    """Immutable routing table. Swap the whole object to reload."""

    providers: tuple[ProviderConfig, ...]
    refusal_signatures: tuple[str, ...] = DEFAULT_REFUSAL_SIGNATURES
    quotas: Mapping[str, TierQuota] = field(default_factory=lambda: dict(DEFAULT_QUOTAS))
    default_tier: str = "free"

    def __post_init__(self) -> None:
        validate(self)


def validate(config: RouterConfig) -> None:
    if not config.providers:
        raise ConfigError("at least one provider must be configured")
    seen: set[str] = set()
    for p in config.providers:
        if not p.name:
            raise ConfigError("provider name must be non-empty")
        if p.name in seen:
            raise ConfigError(f"duplicate provider name: {p.name}")
        seen.add(p.name)
        if p.timeout_s <= 0:
            raise ConfigError(f"{p.name}: timeout_s must be > 0")
        # Each provider is attempted at most once per call.
        if p.max_attempts != 1:
            raise ConfigError(f"{p.name}: max_attempts must be 1 (per-provider retry is not supported)")
        if p.cost_per_1k_tokens < 0:
            raise ConfigError(f"{p.name}: cost_per_1k_tokens must be >= 0")
    for tier, quota in config.quotas.items():
        if quota.limit is not None and quota.limit < 0:
            raise ConfigError(f"tier {tier}: limit must be >= 0 or null")
        if quota.window_s <= 0:
            raise ConfigError(f"tier {tier}: window_s must be > 0")
    if config.default_tier not in config.quotas:
        raise ConfigError(f"default_tier {config.default_tier!r} has no quota")


def _provider(raw: Mapping[str, Any]) -> ProviderConfig:
    try:
        return ProviderConfig(
            name=str(raw["name"]),
            priority=int(raw["priority"]),
            endpoint=raw.get("endpoint", ""),
            credential_env=raw.get("credential_env"),
            model=raw.get("model", ""),
            timeout_s=float(raw.get("timeout_s", 30.0)),
            max_attempts=int(raw.get("max_attempts", 1)),
            cost_per_1k_tokens=float(raw.get("cost_per_1k_tokens", 0.0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid provider entry {raw!r}: {e}") from e


def _quotas(raw: Mapping[str, Any]) -> dict[str, TierQuota]:
    if not isinstance(raw, Mapping):
        raise ConfigError("'quotas' must be an object")
    quotas = {}
    for tier, q in raw.items():
        if not isinstance(q, Mapping):
            raise ConfigError(f"tier {tier}: expected an object, got {q!r}")
        limit = q.get("limit")
        try:
            quotas[tier] = TierQuota(
                limit=None if limit is None else int(limit),
                window_s=float(q.get("window_s", 86400.0)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"tier {tier}: {e}") from e
    return quotas


def _string_list(data: Mapping[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """A JSON list of strings. A bare string would otherwise split into characters."""
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings, got {value!r}")
    return tuple(value)


def parse_config(data: Mapping[str, Any], base_dir: Path | None = None) -> RouterConfig:
    """Build a RouterConfig from an already-decoded JSON object."""
    providers = data.get("providers")
    if not isinstance(providers, list):
        raise ConfigError("'providers' must be a list")

    signatures = _string_list(data, "refusal_signatures", DEFAULT_REFUSAL_SIGNATURES)
    sig_file = data.get("refusal_signatures_file")
    if sig_file:
        path = Path(sig_file)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        try:
            signatures = load_signatures(path)
        except OSError as e:
            raise ConfigError(f"cannot read refusal signatures from {path}: {e}") from e
    signatures = signatures + _string_list(data, "extra_refusal_signatures", ())

    return RouterConfig(
        providers=tuple(_provider(p) for p in providers),
        refusal_signatures=signatures,
        quotas=_quotas(data["quotas"]) if "quotas" in data else dict(DEFAULT_QUOTAS),
        default_tier=data.get("default_tier", "free"),
    )


def load_config(path: str | Path) -> RouterConfig:
    """Load and validate the routing table from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be an object")

    config = parse_config(data, base_dir=path.parent)
    logger.info(
        f"Config loaded from {path}: {len(config.providers)} providers, "
        f"{len(config.refusal_signatures)} refusal signatures, tiers={sorted(config.quotas)}"
    )
    return config


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
