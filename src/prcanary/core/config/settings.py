"""
Centralized settings for prcanary.

Manifesto:
    One validated, cached settings object replaces ad-hoc environment
    parsing in each module. Every timing knob (poll interval, backoff
    bounds, call deadlines) is configurable; the control loop is correct
    for any positive finite value, so the validators only enforce that.

All fields can be set via ``PRCANARY_*`` environment variables (e.g.
``PRCANARY_MAX_WORKERS=16``) or a ``.env`` file. List fields such as
``stable_routes`` take JSON.

Tags:
    prcanary, configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prcanary.model.tags import DEFAULT_TAG_HEADER, Protocol


class RegistryBackend(str, Enum):
    """Where the environment registry keeps its entries."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class StableRoute(BaseModel):
    """Stable destination for one ``(protocol, target)`` pair.

    Each entry becomes the fallback routing rule for that pair.
    """

    protocol: Protocol
    target: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)


def _default_stable_routes() -> list[StableRoute]:
    return [
        StableRoute(protocol=Protocol.HTTP, target="frontend", destination="stable"),
        StableRoute(protocol=Protocol.GRPC, target="backend", destination="stable"),
    ]


class CanarySettings(BaseSettings):
    """prcanary configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PRCANARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Tag ──────────────────────────────────────────────────────
    tag_header: str = Field(default=DEFAULT_TAG_HEADER, min_length=1)
    tag_max_length: int = Field(default=18, ge=1, le=64)

    # ── Routing ──────────────────────────────────────────────────
    stable_routes: list[StableRoute] = Field(default_factory=_default_stable_routes)
    canary_destination: str = Field(
        default="ns-{id}",
        description="Destination pattern for canary rules; supports {id} and {target}",
    )
    canary_priority: int = Field(default=100, ge=1)
    route_sink_url: str | None = Field(
        default=None, description="Data-plane endpoint that receives each published rule set"
    )

    # ── Signals ──────────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=30.0, gt=0, allow_inf_nan=False)
    dedupe_window: int = Field(default=4096, ge=1)

    # ── Controller ───────────────────────────────────────────────
    max_workers: int = Field(default=8, ge=1)
    resync_interval_seconds: float = Field(default=300.0, gt=0, allow_inf_nan=False)
    call_timeout_seconds: float = Field(default=10.0, gt=0, allow_inf_nan=False)
    backoff_base_seconds: float = Field(default=1.0, gt=0, allow_inf_nan=False)
    backoff_max_seconds: float = Field(default=120.0, gt=0, allow_inf_nan=False)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, allow_inf_nan=False)
    backoff_jitter: float = Field(default=0.25, ge=0.0, lt=1.0)
    degraded_after_failures: int = Field(default=1, ge=1)
    prune_confirm_attempts: int = Field(default=5, ge=1)
    prune_confirm_interval_seconds: float = Field(default=1.0, gt=0, allow_inf_nan=False)

    # ── Registry ─────────────────────────────────────────────────
    registry_backend: RegistryBackend = Field(default=RegistryBackend.MEMORY)
    registry_path: str = Field(default="data/prcanary.db")

    # ── Template ─────────────────────────────────────────────────
    template_path: str | None = Field(default=None)

    # ── GitHub ───────────────────────────────────────────────────
    github_api_url: str = Field(default="https://api.github.com")
    github_repo: str | None = Field(default=None, description="owner/name")
    github_token: str | None = Field(default=None)
    github_label: str | None = Field(default=None, description="Only PRs carrying this label")
    webhook_secret: str | None = Field(default=None)

    # ── Applier ──────────────────────────────────────────────────
    applier_url: str | None = Field(
        default=None, description="GitOps gateway base URL; in-memory applier when unset"
    )
    applier_token: str | None = Field(default=None)

    # ── API / Logging ────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    debug: bool = Field(default=False)

    @model_validator(mode="after")
    def _validate_routes(self) -> CanarySettings:
        """Exactly one stable route per (protocol, target)."""
        seen: set[tuple[Protocol, str]] = set()
        for route in self.stable_routes:
            key = (route.protocol, route.target)
            if key in seen:
                raise ValueError(
                    f"duplicate stable route for {route.protocol.value}/{route.target}"
                )
            seen.add(key)
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self


@lru_cache(maxsize=1)
def get_settings() -> CanarySettings:
    """Cached settings, loaded once per process."""
    return CanarySettings()
