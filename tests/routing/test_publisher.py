"""Tests for rule set publication."""

from __future__ import annotations

import json

import httpx
import pytest

from prcanary.core.config import StableRoute
from prcanary.core.events import ROUTES_PUBLISHED
from prcanary.model.environments import AppliedEnvironment, ControllerState
from prcanary.model.tags import CanaryID, Protocol
from prcanary.routing.publisher import HttpRuleSink, RuleSetPublisher

STABLE = [StableRoute(protocol=Protocol.HTTP, target="frontend", destination="stable")]


def ready(cid: str) -> AppliedEnvironment:
    return AppliedEnvironment(canary_id=CanaryID(cid), state=ControllerState.READY)


@pytest.mark.asyncio
class TestRuleSetPublisher:
    async def test_publish_bumps_version_and_swaps(self):
        publisher = RuleSetPublisher(STABLE)
        before = publisher.current()

        after = await publisher.publish([ready("42")])

        assert before.version == 0
        assert before.ready_ids == frozenset()
        assert after.version == 1
        assert publisher.current() is after
        assert publisher.version == 1

    async def test_snapshots_are_not_mutated(self):
        publisher = RuleSetPublisher(STABLE)
        held = await publisher.publish([ready("42")])

        await publisher.publish([])

        assert held.ready_ids == {"42"}
        assert publisher.current().ready_ids == frozenset()

    async def test_sink_failure_is_swallowed(self):
        received = []

        async def broken(rule_set):
            raise RuntimeError("edge down")

        async def good(rule_set):
            received.append(rule_set.version)

        publisher = RuleSetPublisher(STABLE, sinks=[broken])
        publisher.add_sink(good)
        await publisher.publish([ready("1")])

        assert received == [1]

    async def test_emits_event(self, bus):
        publisher = RuleSetPublisher(STABLE, bus=bus)
        await publisher.publish([ready("42")])

        (event,) = [e for e in bus.history if e.event_type == ROUTES_PUBLISHED]
        assert event.payload == {"version": 1, "rules": 2, "ready_ids": ["42"]}


@pytest.mark.asyncio
async def test_http_rule_sink_puts_rule_set():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sink = HttpRuleSink("http://edge/internal/rules", client=client)
    publisher = RuleSetPublisher(STABLE, sinks=[sink])

    await publisher.publish([ready("42")])

    (request,) = seen
    assert request.method == "PUT"
    assert request.headers["X-Rule-Set-Version"] == "1"
    assert json.loads(request.content)["ready_ids"] == ["42"]


@pytest.mark.asyncio
async def test_http_rule_sink_raises_on_error_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    sink = HttpRuleSink("http://edge/internal/rules", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await sink(RuleSetPublisher(STABLE).current())
