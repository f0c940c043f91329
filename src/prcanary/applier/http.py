"""HTTP applier for a GitOps / cluster REST gateway.

Wire protocol (JSON bodies are :meth:`ResourceObject.to_dict`)::

    PUT    {base}/namespaces/{ns}/resources/{kind}/{name}   If-None-Match: *   create
    PUT    {base}/namespaces/{ns}/resources/{kind}/{name}   If-Match: *        update
    DELETE {base}/namespaces/{ns}/resources/{kind}/{name}                      delete
    GET    {base}/namespaces/{ns}/resources/{kind}/{name}                      exists

Cluster-scoped resources (empty namespace) drop the ``/namespaces/{ns}``
prefix.

Status mapping:

=============  ========================
status         error
=============  ========================
409            ConflictError
404, 412*      NotFoundError
400, 422       InvalidResourceError
429, 5xx       UnavailableError
transport      UnavailableError
=============  ========================

(*) 412 on update means the object is gone. 412 on create means it already
exists, in which case create turns into an update.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx

from prcanary.core.errors import (
    ApplierError,
    ConflictError,
    InvalidResourceError,
    NotFoundError,
    UnavailableError,
)
from prcanary.core.logging import get_logger
from prcanary.model.environments import ResourceObject

logger = get_logger(__name__)


class HttpResourceApplier:
    """httpx-based :class:`~prcanary.applier.base.ResourceApplier`.

    Args:
        base_url: Gateway base URL
        token: Bearer token (optional)
        client: Injected ``httpx.AsyncClient``
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def path_for(resource: ResourceObject) -> str:
        tail = f"/resources/{quote(resource.kind, safe='')}/{quote(resource.name, safe='')}"
        if resource.namespace:
            return f"/namespaces/{quote(resource.namespace, safe='')}{tail}"
        return tail

    async def create(self, resource: ResourceObject) -> None:
        resp = await self._send(
            "PUT", resource, "create", json=resource.to_dict(), extra={"If-None-Match": "*"}
        )
        if resp.status_code == 412:
            logger.debug("create_exists_updating", resource=resource.ref)
            await self.update(resource)
            return
        self._raise_for_status(resp, resource, "create")

    async def update(self, resource: ResourceObject) -> None:
        resp = await self._send(
            "PUT", resource, "update", json=resource.to_dict(), extra={"If-Match": "*"}
        )
        if resp.status_code == 412:
            raise NotFoundError(f"{resource.ref} not found").with_context(
                resource=resource.ref, operation="update", http_status=412
            )
        self._raise_for_status(resp, resource, "update")

    async def delete(self, resource: ResourceObject) -> None:
        resp = await self._send("DELETE", resource, "delete")
        self._raise_for_status(resp, resource, "delete")

    async def exists(self, resource: ResourceObject) -> bool:
        resp = await self._send("GET", resource, "exists")
        if resp.status_code == 404:
            return False
        self._raise_for_status(resp, resource, "exists")
        return True

    async def _send(
        self,
        method: str,
        resource: ResourceObject,
        operation: str,
        json: dict | None = None,
        extra: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if extra:
            headers.update(extra)
        try:
            return await self._client.request(
                method, self.path_for(resource), json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            raise UnavailableError(f"{operation} {resource.ref} timed out", cause=e).with_context(
                resource=resource.ref, operation=operation
            ) from e
        except httpx.HTTPError as e:
            raise UnavailableError(f"{operation} {resource.ref} failed: {e}", cause=e).with_context(
                resource=resource.ref, operation=operation
            ) from e

    @staticmethod
    def _raise_for_status(resp: httpx.Response, resource: ResourceObject, operation: str) -> None:
        status = resp.status_code
        if status < 400:
            return
        message = f"{operation} {resource.ref} returned {status}"
        error: ApplierError
        if status == 409:
            error = ConflictError(message)
        elif status == 404:
            error = NotFoundError(message)
        elif status in (400, 422):
            error = InvalidResourceError(f"{message}: {resp.text[:200]}")
        elif status == 429 or status >= 500:
            retry_after = resp.headers.get("retry-after")
            error = UnavailableError(
                message,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        else:
            error = ApplierError(message)
        raise error.with_context(
            resource=resource.ref,
            operation=operation,
            http_status=status,
            url=str(resp.request.url),
        )
