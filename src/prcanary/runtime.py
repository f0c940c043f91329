"""Composition root: wires signals, registry, controller and routing.

::

    PollingSignalSource ─┐
                         ├─► ControlPlane.handle_signal ─► registry.upsert_desired
    PushSignalSource ────┘                                   └─► controller.notify(id)

    controller ─► applier            (cluster)
               ─► publisher          (rule set) ─► DecisionEngine / GET /routes / sinks
               ─► event bus          (transitions, plans)

    resync loop ─► controller.resync() every ``resync_interval_seconds``
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from prcanary.applier.base import ResourceApplier
from prcanary.applier.http import HttpResourceApplier
from prcanary.applier.memory import InMemoryResourceApplier
from prcanary.core.config import CanarySettings, RegistryBackend, get_settings
from prcanary.core.errors import StaleEvent
from prcanary.core.events import EventBus, InMemoryEventBus
from prcanary.core.logging import get_logger
from prcanary.model.environments import DesiredEnvironment
from prcanary.model.template import EnvironmentTemplate
from prcanary.reconcile.controller import ReconciliationController
from prcanary.registry.registry import EnvironmentRegistry
from prcanary.registry.store import MemoryRegistryStore, RegistryStore, SqliteRegistryStore
from prcanary.routing.engine import DecisionEngine
from prcanary.routing.publisher import HttpRuleSink, RuleSetPublisher
from prcanary.signals.base import SignalEvent
from prcanary.signals.github import GitHubPullRequestLister
from prcanary.signals.polling import OpenReference, PollingSignalSource, ReferenceLister
from prcanary.signals.push import PushSignalSource

logger = get_logger(__name__)


class ControlPlane:
    """Owns every long-lived component and the background tasks."""

    def __init__(
        self,
        settings: CanarySettings,
        registry: EnvironmentRegistry,
        applier: ResourceApplier,
        template: EnvironmentTemplate,
        lister: ReferenceLister | None = None,
        bus: EventBus | None = None,
        publisher: RuleSetPublisher | None = None,
    ):
        self.settings = settings
        self.registry = registry
        self.applier = applier
        self.template = template
        self.bus = bus or InMemoryEventBus(history_size=256)
        self.publisher = publisher or RuleSetPublisher(
            stable_routes=settings.stable_routes,
            destination_pattern=settings.canary_destination,
            canary_priority=settings.canary_priority,
            routed_targets=template.spec.routed_targets,
            bus=self.bus,
        )
        self.controller = ReconciliationController.from_settings(
            settings,
            registry=registry,
            applier=applier,
            publisher=self.publisher,
            template=template,
            bus=self.bus,
        )
        self.engine = DecisionEngine(self.publisher.current, max_tag_length=settings.tag_max_length)
        self.push = PushSignalSource(dedupe_window=settings.dedupe_window)
        self.push.on_event(self.handle_signal)
        self.lister = lister
        self.poller: PollingSignalSource | None = None
        if lister is not None:
            self.poller = PollingSignalSource(
                lister,
                interval=settings.poll_interval_seconds,
                dedupe_window=settings.dedupe_window,
                max_tag_length=settings.tag_max_length,
            )
            self.poller.on_event(self.handle_signal)
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[Any]] = []

    @classmethod
    def from_settings(
        cls,
        settings: CanarySettings | None = None,
        applier: ResourceApplier | None = None,
        lister: ReferenceLister | None = None,
    ) -> ControlPlane:
        """Build a control plane from configuration.

        Explicit *applier* / *lister* arguments override what the settings
        would construct.
        """
        settings = settings or get_settings()
        template = (
            EnvironmentTemplate.from_yaml_file(settings.template_path)
            if settings.template_path
            else EnvironmentTemplate.default()
        )
        store: RegistryStore
        if settings.registry_backend == RegistryBackend.SQLITE:
            store = SqliteRegistryStore(settings.registry_path)
        else:
            store = MemoryRegistryStore()

        if applier is None:
            if settings.applier_url:
                applier = HttpResourceApplier(
                    settings.applier_url,
                    token=settings.applier_token,
                    timeout=settings.call_timeout_seconds,
                )
            else:
                logger.warning("applier_in_memory", reason="applier_url not configured")
                applier = InMemoryResourceApplier()

        if lister is None and settings.github_repo:
            lister = GitHubPullRequestLister(
                settings.github_repo,
                token=settings.github_token,
                api_url=settings.github_api_url,
                label=settings.github_label,
                timeout=settings.call_timeout_seconds,
            )

        plane = cls(settings, EnvironmentRegistry(store), applier, template, lister=lister)
        if settings.route_sink_url:
            plane.publisher.add_sink(HttpRuleSink(settings.route_sink_url, timeout=settings.call_timeout_seconds))
        return plane

    # ── Signals ──────────────────────────────────────────────────

    async def handle_signal(self, event: SignalEvent) -> DesiredEnvironment | None:
        """Record *event* as desired state and wake the controller.

        Stale events are logged and dropped.
        """
        try:
            desired = self.registry.upsert_desired(event)
        except StaleEvent as e:
            logger.info("stale_event_ignored", source=event.source, **e.to_dict())
            return None
        self.controller.notify(event.canary_id)
        return desired

    def _open_references(self) -> list[OpenReference]:
        refs = []
        for entry in self.registry.snapshot().values():
            desired = entry.desired
            if desired is not None and not desired.closed:
                refs.append(OpenReference(desired.canary_id, desired.revision, desired.requested_at))
        return refs

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Publish the initial rule set and start background loops."""
        if self._tasks:
            return
        self._stop.clear()
        await self.publisher.publish(self.registry.applied_snapshot())
        loop = asyncio.get_running_loop()
        if self.poller is not None:
            self.poller.seed(self._open_references())
            self._tasks.append(loop.create_task(self.poller.run(self._stop), name="poller"))
        self._tasks.append(loop.create_task(self.push.run(self._stop), name="push-consumer"))
        self._tasks.append(loop.create_task(self._resync_loop(), name="resync"))
        self.controller.resync()
        logger.info(
            "control_plane_started",
            polling=self.poller is not None,
            entries=len(self.registry),
            applier=type(self.applier).__name__,
        )

    async def _resync_loop(self) -> None:
        interval = self.settings.resync_interval_seconds
        while not self._stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            if not self._stop.is_set():
                self.controller.resync()

    def request_stop(self) -> None:
        """Signal-handler safe: makes :meth:`wait` return."""
        self._stop.set()

    async def wait(self) -> None:
        """Block until :meth:`stop` is called."""
        await self._stop.wait()

    async def stop(self) -> None:
        """Stop loops, cancel in-flight work and release clients."""
        self._stop.set()
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.controller.close()
        for resource in (self.applier, self.lister):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()
        await self.bus.close()
        logger.info("control_plane_stopped")
