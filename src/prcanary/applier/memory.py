"""In-process cluster model for tests and dry runs.

Besides storing objects, :class:`InMemoryResourceApplier` instruments the
calls it receives:

- ``calls``: ordered ``(operation, ref)`` log
- ``max_overlap``: highest number of concurrent calls seen per canary id
- ``fail_next(...)``: queue errors for upcoming calls
- ``latency``: artificial delay per call
- ``deletion_lag``: number of ``exists`` checks a deleted object keeps
  reporting True before it disappears
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable

from prcanary.core.errors import CanaryError, NotFoundError
from prcanary.model.environments import ResourceObject

Key = tuple[str, str, str]


class InMemoryResourceApplier:
    """Dict-backed :class:`~prcanary.applier.base.ResourceApplier`."""

    def __init__(self, latency: float = 0.0, deletion_lag: int = 0):
        self.latency = latency
        self.deletion_lag = deletion_lag
        self.objects: dict[Key, ResourceObject] = {}
        self.calls: list[tuple[str, str]] = []
        self.max_overlap: dict[str, int] = defaultdict(int)
        self._active: dict[str, int] = defaultdict(int)
        self._terminating: dict[Key, int] = {}
        self._faults: deque[tuple[str | None, Callable[[ResourceObject], bool] | None, CanaryError]] = deque()

    # ── Fault injection ──────────────────────────────────────────

    def fail_next(
        self,
        error: CanaryError,
        operation: str | None = None,
        match: Callable[[ResourceObject], bool] | None = None,
        times: int = 1,
    ) -> None:
        """Raise *error* on the next *times* matching calls."""
        for _ in range(times):
            self._faults.append((operation, match, error))

    def _take_fault(self, operation: str, resource: ResourceObject) -> CanaryError | None:
        for fault in self._faults:
            op, match, error = fault
            if (op is None or op == operation) and (match is None or match(resource)):
                self._faults.remove(fault)
                return error
        return None

    # ── Inspection ───────────────────────────────────────────────

    def resources_for(self, canary_id: str) -> list[ResourceObject]:
        return [r for r in self.objects.values() if r.canary_id == canary_id]

    def operations(self, operation: str | None = None) -> list[str]:
        return [ref for op, ref in self.calls if operation is None or op == operation]

    # ── ResourceApplier ──────────────────────────────────────────

    async def _call(self, operation: str, resource: ResourceObject) -> None:
        cid = resource.canary_id
        self._active[cid] += 1
        self.max_overlap[cid] = max(self.max_overlap[cid], self._active[cid])
        try:
            self.calls.append((operation, resource.ref))
            if self.latency:
                await asyncio.sleep(self.latency)
            error = self._take_fault(operation, resource)
            if error is not None:
                raise error
        finally:
            self._active[cid] -= 1

    async def create(self, resource: ResourceObject) -> None:
        await self._call("create", resource)
        self._terminating.pop(resource.key, None)
        self.objects[resource.key] = resource

    async def update(self, resource: ResourceObject) -> None:
        await self._call("update", resource)
        if resource.key not in self.objects:
            raise NotFoundError(f"{resource.ref} not found").with_context(
                resource=resource.ref, operation="update"
            )
        self.objects[resource.key] = resource

    async def delete(self, resource: ResourceObject) -> None:
        await self._call("delete", resource)
        if resource.key not in self.objects:
            raise NotFoundError(f"{resource.ref} not found").with_context(
                resource=resource.ref, operation="delete"
            )
        del self.objects[resource.key]
        if self.deletion_lag:
            self._terminating[resource.key] = self.deletion_lag

    async def exists(self, resource: ResourceObject) -> bool:
        await self._call("exists", resource)
        if resource.key in self.objects:
            return True
        remaining = self._terminating.get(resource.key, 0)
        if remaining > 0:
            self._terminating[resource.key] = remaining - 1
            return True
        self._terminating.pop(resource.key, None)
        return False
