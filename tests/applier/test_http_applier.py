"""Tests for the HTTP applier against a mocked gateway."""

from __future__ import annotations

import json

import httpx
import pytest

from prcanary.applier.http import HttpResourceApplier
from prcanary.core.errors import (
    ConflictError,
    InvalidResourceError,
    NotFoundError,
    UnavailableError,
)
from prcanary.model.tags import CanaryID
from prcanary.model.template import EnvironmentTemplate


@pytest.fixture
def resources():
    return EnvironmentTemplate.default().render(CanaryID("42"), "a1")


def _applier(handler) -> tuple[HttpResourceApplier, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record), base_url="http://gateway")
    return HttpResourceApplier("http://gateway", token="t0k", client=client), seen


class TestPaths:
    def test_namespaced(self, resources):
        assert HttpResourceApplier.path_for(resources[1]) == "/namespaces/ns-42/resources/Deployment/deploy-42"

    def test_cluster_scoped(self, resources):
        assert HttpResourceApplier.path_for(resources[0]) == "/resources/Namespace/ns-42"


@pytest.mark.asyncio
class TestOperations:
    async def test_create_sends_conditional_put(self, resources):
        applier, seen = _applier(lambda r: httpx.Response(201))

        await applier.create(resources[1])

        request = seen[0]
        assert request.method == "PUT"
        assert request.headers["If-None-Match"] == "*"
        assert request.headers["Authorization"] == "Bearer t0k"
        assert json.loads(request.content)["spec_hash"] == resources[1].spec_hash

    async def test_create_of_existing_object_updates(self, resources):
        def handler(request):
            return httpx.Response(412 if "If-None-Match" in request.headers else 200)

        applier, seen = _applier(handler)
        await applier.create(resources[1])

        assert [r.headers.get("If-Match") for r in seen] == [None, "*"]

    async def test_update_precondition_failure_is_not_found(self, resources):
        applier, _ = _applier(lambda r: httpx.Response(412))
        with pytest.raises(NotFoundError):
            await applier.update(resources[1])

    async def test_exists(self, resources):
        applier, _ = _applier(lambda r: httpx.Response(404))
        assert await applier.exists(resources[0]) is False

        applier, _ = _applier(lambda r: httpx.Response(200, json={}))
        assert await applier.exists(resources[0]) is True

    async def test_delete(self, resources):
        applier, seen = _applier(lambda r: httpx.Response(204))
        await applier.delete(resources[2])
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/namespaces/ns-42/resources/Route/route-42"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_type",
    [
        (409, ConflictError),
        (404, NotFoundError),
        (400, InvalidResourceError),
        (422, InvalidResourceError),
        (429, UnavailableError),
        (503, UnavailableError),
    ],
)
async def test_status_mapping(resources, status, error_type):
    applier, _ = _applier(lambda r: httpx.Response(status, text="nope"))

    with pytest.raises(error_type) as exc_info:
        await applier.update(resources[1])

    assert exc_info.value.context.http_status == status
    assert exc_info.value.context.operation == "update"


@pytest.mark.asyncio
async def test_retry_after_header_is_kept(resources):
    applier, _ = _applier(lambda r: httpx.Response(503, headers={"Retry-After": "12"}))
    with pytest.raises(UnavailableError) as exc_info:
        await applier.delete(resources[0])
    assert exc_info.value.retry_after == 12.0


@pytest.mark.asyncio
async def test_transport_error_is_unavailable(resources):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    applier, _ = _applier(handler)
    with pytest.raises(UnavailableError) as exc_info:
        await applier.create(resources[0])
    assert exc_info.value.retryable
