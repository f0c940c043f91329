"""End-to-end tests through the control plane."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from prcanary.applier.http import HttpResourceApplier
from prcanary.applier.memory import InMemoryResourceApplier
from prcanary.model.environments import ControllerState
from prcanary.model.tags import CanaryID
from prcanary.model.template import EnvironmentTemplate
from prcanary.registry.registry import EnvironmentRegistry
from prcanary.runtime import ControlPlane
from prcanary.signals.github import GitHubPullRequestLister
from prcanary.signals.polling import OpenReference
from tests._support.builders import at, fast_settings, signal


class _Lister:
    def __init__(self):
        self.open: list[OpenReference] = []

    async def list_open_references(self):
        return list(self.open)


def _plane(lister=None) -> tuple[ControlPlane, InMemoryResourceApplier]:
    applier = InMemoryResourceApplier()
    plane = ControlPlane(
        fast_settings(),
        EnvironmentRegistry(),
        applier,
        EnvironmentTemplate.default(),
        lister=lister,
    )
    return plane, applier


@pytest.mark.asyncio
class TestScenario:
    async def test_open_route_close(self):
        lister = _Lister()
        plane, applier = _plane(lister)

        lister.open = [OpenReference(CanaryID("42"), "a1", at(0))]
        await plane.poller.poll_once()
        await plane.controller.drain()

        assert plane.registry.get_applied("42").state == ControllerState.READY
        assert plane.engine.resolve("42", "http", "frontend").destination == "ns-42"
        assert plane.engine.resolve("7", "http", "frontend").destination == "stable"
        assert plane.engine.resolve("42", "grpc", "backend").destination == "ns-42"

        lister.open = [OpenReference(CanaryID("42"), "a2", at(10))]
        await plane.poller.poll_once()
        await plane.controller.drain()

        assert plane.registry.get_applied("42").last_applied_revision == "a2"
        assert applier.operations("update") == ["Deployment/ns-42/deploy-42"]

        lister.open = []
        await plane.poller.poll_once()
        await plane.controller.drain()

        assert plane.registry.get("42") is None
        assert applier.objects == {}
        assert plane.engine.resolve("42", "http", "frontend").destination == "stable"
        await plane.stop()

    async def test_handle_signal_wakes_controller(self):
        plane, _ = _plane()
        with patch.object(plane.controller, "notify") as notify:
            desired = await plane.handle_signal(signal("42", "a1"))

        notify.assert_called_once_with("42")
        assert desired.revision == "a1"
        await plane.stop()

    async def test_stale_signal_is_dropped(self):
        plane, _ = _plane()
        assert await plane.handle_signal(signal("42", "a2", t=5)) is not None
        assert await plane.handle_signal(signal("42", "a1", "updated", t=1)) is None
        await plane.controller.drain()

        assert plane.registry.get_applied("42").last_applied_revision == "a2"
        await plane.stop()

    async def test_start_seeds_poller_and_publishes(self):
        lister = _Lister()
        plane, _ = _plane(lister)
        await plane.handle_signal(signal("5", "a1"))
        await plane.controller.drain()
        lister.open = [OpenReference(CanaryID("5"), "a1", at(0))]

        await plane.start()
        try:
            assert plane.running
            assert plane.poller.known_ids == ["5"]
            assert plane.publisher.current().ready_ids == {"5"}
        finally:
            await plane.stop()
        assert not plane.running


@pytest.mark.asyncio
async def test_from_settings_builds_configured_components(tmp_path):
    settings = fast_settings(
        registry_backend="sqlite",
        registry_path=str(tmp_path / "registry.db"),
        applier_url="http://gateway.local",
        github_repo="acme/shop",
        route_sink_url="http://edge.local/rules",
    )

    plane = ControlPlane.from_settings(settings)

    assert isinstance(plane.applier, HttpResourceApplier)
    assert isinstance(plane.lister, GitHubPullRequestLister)
    assert plane.poller is not None
    assert (tmp_path / "registry.db").exists()
    await plane.stop()


@pytest.mark.asyncio
async def test_from_settings_defaults_to_in_memory(tmp_path):
    template = tmp_path / "template.yaml"
    template.write_text(
        """
spec:
  resources:
    - kind: Namespace
      name: pr-{id}
"""
    )
    plane = ControlPlane.from_settings(fast_settings(template_path=str(template)))

    assert isinstance(plane.applier, InMemoryResourceApplier)
    assert plane.poller is None
    assert [r.name for r in plane.template.render(CanaryID("3"), "a1")] == ["pr-3"]
    await plane.stop()
