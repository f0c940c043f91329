"""Builders for lifecycle events and control-plane components in tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from prcanary.applier.memory import InMemoryResourceApplier
from prcanary.core.config import CanarySettings
from prcanary.core.events import InMemoryEventBus
from prcanary.execution.retry import ExponentialBackoff
from prcanary.model.environments import LifecycleState
from prcanary.model.tags import CanaryID
from prcanary.model.template import EnvironmentTemplate
from prcanary.reconcile.controller import ReconciliationController
from prcanary.registry.registry import EnvironmentRegistry
from prcanary.routing.publisher import RuleSetPublisher
from prcanary.signals.base import SignalEvent

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def signal(cid: str, revision: str, state: str = "open", t: float = 0, source: str = "test") -> SignalEvent:
    return SignalEvent(CanaryID(cid), revision, LifecycleState(state), at(t), source)


def fast_settings(**overrides) -> CanarySettings:
    values = dict(
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.05,
        backoff_jitter=0.0,
        call_timeout_seconds=1.0,
        prune_confirm_attempts=3,
        prune_confirm_interval_seconds=0.001,
        poll_interval_seconds=0.05,
        resync_interval_seconds=60.0,
        log_format="console",
    )
    values.update(overrides)
    return CanarySettings(_env_file=None, **values)


def build_controller(
    registry: EnvironmentRegistry | None = None,
    applier: InMemoryResourceApplier | None = None,
    template: EnvironmentTemplate | None = None,
    bus: InMemoryEventBus | None = None,
    **kwargs,
) -> tuple[ReconciliationController, EnvironmentRegistry, InMemoryResourceApplier, RuleSetPublisher]:
    settings = fast_settings()
    registry = EnvironmentRegistry() if registry is None else registry
    applier = applier or InMemoryResourceApplier()
    publisher = RuleSetPublisher(stable_routes=settings.stable_routes, bus=bus)
    options = dict(
        backoff=ExponentialBackoff(base_delay=0.01, max_delay=0.05, jitter_range=0.0),
        call_timeout=1.0,
        prune_confirm_attempts=3,
        prune_confirm_interval=0.001,
    )
    options.update(kwargs)
    controller = ReconciliationController(
        registry=registry,
        applier=applier,
        publisher=publisher,
        template=template,
        bus=bus,
        **options,
    )
    return controller, registry, applier, publisher
