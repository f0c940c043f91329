"""Copy-on-write publication of the routing rule set.

WHY
───
Many readers (every request through the decision engine) and one writer
(the controller, whenever an environment enters or leaves Ready). The
writer builds a complete new :class:`RuleSet` and swaps a single reference;
readers grab the reference once per decision. Nobody ever mutates a rule
set in place, so nobody can observe a partial update.

ARCHITECTURE
────────────
::

    controller ──publish(applied)──► RuleSetPublisher
                                        ├── build_rule_set(version+1)
                                        ├── swap self._current      (atomic)
                                        ├── notify sinks            (best effort)
                                        └── emit routes.published   (event bus)

    DecisionEngine(publisher.current) ──► reads one snapshot per request
    GET /routes                        ──► routing layer polls as fallback
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

import httpx

from prcanary.core.events import ROUTES_PUBLISHED, Event, EventBus
from prcanary.core.logging import get_logger
from prcanary.model.environments import AppliedEnvironment
from prcanary.routing.rules import RuleSet, build_rule_set

logger = get_logger(__name__)

RuleSink = Callable[[RuleSet], Awaitable[None]]


class RuleSetPublisher:
    """Single owner of the current rule set."""

    def __init__(
        self,
        stable_routes: Sequence[Any],
        destination_pattern: str = "ns-{id}",
        canary_priority: int = 100,
        routed_targets: Iterable[str] = (),
        sinks: Iterable[RuleSink] = (),
        bus: EventBus | None = None,
    ):
        self._stable_routes = list(stable_routes)
        self._destination_pattern = destination_pattern
        self._canary_priority = canary_priority
        self._routed_targets = tuple(routed_targets)
        self._sinks = list(sinks)
        self._bus = bus
        self._write_lock = threading.Lock()
        self._current = build_rule_set(
            version=0,
            stable_routes=self._stable_routes,
            applied=(),
            destination_pattern=destination_pattern,
            canary_priority=canary_priority,
            routed_targets=self._routed_targets,
        )

    def current(self) -> RuleSet:
        """The current snapshot. Safe to call from any thread."""
        return self._current

    @property
    def version(self) -> int:
        return self._current.version

    def add_sink(self, sink: RuleSink) -> None:
        self._sinks.append(sink)

    def rebuild(self, applied: Iterable[AppliedEnvironment]) -> RuleSet:
        """Build and swap in a new snapshot without notifying anyone."""
        with self._write_lock:
            rule_set = build_rule_set(
                version=self._current.version + 1,
                stable_routes=self._stable_routes,
                applied=applied,
                destination_pattern=self._destination_pattern,
                canary_priority=self._canary_priority,
                routed_targets=self._routed_targets,
            )
            self._current = rule_set
        return rule_set

    async def publish(self, applied: Iterable[AppliedEnvironment]) -> RuleSet:
        """Rebuild from *applied* and notify sinks.

        Sink failures are logged and swallowed; the routing layer can always
        poll the current snapshot instead.
        """
        rule_set = self.rebuild(applied)
        logger.info(
            "routes_published",
            version=rule_set.version,
            rules=len(rule_set.rules),
            ready_ids=sorted(rule_set.ready_ids),
        )
        for sink in self._sinks:
            try:
                await sink(rule_set)
            except Exception as e:
                logger.warning("route_sink_failed", version=rule_set.version, error=str(e))
        if self._bus is not None:
            await self._bus.publish(
                Event(
                    event_type=ROUTES_PUBLISHED,
                    source="routing.publisher",
                    payload={
                        "version": rule_set.version,
                        "rules": len(rule_set.rules),
                        "ready_ids": sorted(rule_set.ready_ids),
                    },
                )
            )
        return rule_set


class HttpRuleSink:
    """Pushes each new rule set to the routing layer over HTTP.

    Example::

        publisher.add_sink(HttpRuleSink("http://edge-router/internal/rules"))
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        self._url = url
        self._client = client
        self._timeout = timeout

    async def __call__(self, rule_set: RuleSet) -> None:
        payload = rule_set.to_dict()
        headers = {"X-Rule-Set-Version": str(rule_set.version)}
        if self._client is not None:
            resp = await self._client.put(self._url, json=payload, headers=headers)
            resp.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.put(self._url, json=payload, headers=headers)
            resp.raise_for_status()
