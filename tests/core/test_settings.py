"""Tests for settings loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from prcanary.core.config import CanarySettings, RegistryBackend, get_settings
from prcanary.model.tags import Protocol


def test_defaults():
    settings = CanarySettings(_env_file=None)

    assert settings.tag_header == "x-canary-id"
    assert settings.tag_max_length == 18
    assert settings.canary_destination == "ns-{id}"
    assert settings.canary_priority == 100
    assert settings.registry_backend == RegistryBackend.MEMORY
    assert {(r.protocol, r.target) for r in settings.stable_routes} == {
        (Protocol.HTTP, "frontend"),
        (Protocol.GRPC, "backend"),
    }


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PRCANARY_MAX_WORKERS", "16")
    monkeypatch.setenv(
        "PRCANARY_STABLE_ROUTES",
        '[{"protocol": "http", "target": "web", "destination": "web-stable"}]',
    )

    settings = get_settings()

    assert settings.max_workers == 16
    assert settings.stable_routes[0].destination == "web-stable"
    assert get_settings() is settings


def test_duplicate_stable_routes_rejected():
    route = {"protocol": "http", "target": "web", "destination": "a"}
    with pytest.raises(PydanticValidationError):
        CanarySettings(_env_file=None, stable_routes=[route, {**route, "destination": "b"}])


@pytest.mark.parametrize(
    "overrides",
    [
        {"poll_interval_seconds": 0},
        {"poll_interval_seconds": float("inf")},
        {"backoff_jitter": 1.0},
        {"backoff_base_seconds": 10, "backoff_max_seconds": 1},
        {"max_workers": 0},
    ],
)
def test_invalid_timing(overrides):
    with pytest.raises(PydanticValidationError):
        CanarySettings(_env_file=None, **overrides)
