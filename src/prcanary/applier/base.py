"""Resource applier interface.

The controller talks to the cluster only through this protocol. All four
operations must be idempotent and safe to retry:

- ``create`` on an existing object with the same spec is success
- ``update`` raises ``NotFoundError`` if the object is missing
- ``delete`` raises ``NotFoundError`` if the object is missing (callers
  treat that as success)
- ``exists`` confirms deletion during pruning

Failures are reported with the applier taxonomy from
:mod:`prcanary.core.errors`: ``ConflictError``, ``NotFoundError``,
``InvalidResourceError``, ``UnavailableError``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from prcanary.model.environments import ResourceObject


@runtime_checkable
class ResourceApplier(Protocol):
    """CRUD plus existence check over managed cluster objects."""

    async def create(self, resource: ResourceObject) -> None:
        ...

    async def update(self, resource: ResourceObject) -> None:
        ...

    async def delete(self, resource: ResourceObject) -> None:
        ...

    async def exists(self, resource: ResourceObject) -> bool:
        ...
