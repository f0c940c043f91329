"""Desired and applied environment records.

WHY
───
Intent and reality are tracked separately. ``DesiredEnvironment`` is what
the lifecycle feed asks for; ``AppliedEnvironment`` is what the controller
has actually materialized. Only the controller writes applied records, and
both are immutable values replaced wholesale, so a snapshot of the registry
never observes a half-updated record.

ARCHITECTURE
────────────
::

    DesiredEnvironment (from signals)      AppliedEnvironment (controller only)
      ├── canary_id                          ├── canary_id
      ├── revision                           ├── last_applied_revision
      ├── requested_at  (ordering key)       ├── resource_set: tuple[ResourceObject]
      └── state: open|updated|closed         ├── state: ControllerState
                                             ├── failures / last_error
                                             └── blocked_revision

Controller state graph::

    ABSENT   → CREATING | PRUNING
    CREATING → READY | DEGRADED | PRUNING
    READY    → UPDATING | PRUNING
    UPDATING → READY | DEGRADED | PRUNING
    DEGRADED → CREATING | UPDATING | READY | PRUNING
    PRUNING  → ABSENT | CREATING (reopened)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from prcanary.core.errors import InvalidTransitionError
from prcanary.model.tags import CanaryID


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class LifecycleState(str, Enum):
    """Lifecycle intent carried by a signal."""

    OPEN = "open"
    UPDATED = "updated"
    CLOSED = "closed"


class EnvironmentStatus(str, Enum):
    """Externally visible status of an applied environment."""

    PENDING = "pending"
    READY = "ready"
    DEGRADED = "degraded"
    PRUNING = "pruning"
    ABSENT = "absent"


class ControllerState(str, Enum):
    """Per-environment reconciliation state machine."""

    ABSENT = "absent"
    CREATING = "creating"
    READY = "ready"
    UPDATING = "updating"
    DEGRADED = "degraded"
    PRUNING = "pruning"

    @property
    def status(self) -> EnvironmentStatus:
        if self in (ControllerState.CREATING, ControllerState.UPDATING):
            return EnvironmentStatus.PENDING
        return EnvironmentStatus(self.value)


VALID_TRANSITIONS: dict[ControllerState, frozenset[ControllerState]] = {
    ControllerState.ABSENT: frozenset({
        ControllerState.CREATING,
        ControllerState.PRUNING,
    }),
    ControllerState.CREATING: frozenset({
        ControllerState.READY,
        ControllerState.DEGRADED,
        ControllerState.PRUNING,
    }),
    ControllerState.READY: frozenset({
        ControllerState.UPDATING,
        ControllerState.PRUNING,
    }),
    ControllerState.UPDATING: frozenset({
        ControllerState.READY,
        ControllerState.DEGRADED,
        ControllerState.PRUNING,
    }),
    ControllerState.DEGRADED: frozenset({
        ControllerState.CREATING,
        ControllerState.UPDATING,
        ControllerState.READY,
        ControllerState.PRUNING,
    }),
    ControllerState.PRUNING: frozenset({
        ControllerState.ABSENT,
        ControllerState.CREATING,
    }),
}


def validate_transition(current: ControllerState, target: ControllerState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_transition(ControllerState.CREATING, ControllerState.READY)
        >>> validate_transition(ControllerState.ABSENT, ControllerState.READY)
        Traceback (most recent call last):
        InvalidTransitionError: Invalid ControllerState transition: absent → ready
    """
    if target not in VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "ControllerState")


class ResourcePhase(int, Enum):
    """Application order: scoping resources first, routing resources last."""

    SCOPE = 0
    WORKLOAD = 1
    ROUTING = 2


_PHASE_BY_KIND = {
    "Namespace": ResourcePhase.SCOPE,
    "ResourceQuota": ResourcePhase.SCOPE,
    "ServiceAccount": ResourcePhase.SCOPE,
    "Route": ResourcePhase.ROUTING,
    "HTTPRoute": ResourcePhase.ROUTING,
    "GRPCRoute": ResourcePhase.ROUTING,
    "VirtualService": ResourcePhase.ROUTING,
    "DestinationRule": ResourcePhase.ROUTING,
    "Ingress": ResourcePhase.ROUTING,
}


def phase_for_kind(kind: str) -> ResourcePhase:
    """Default phase of a resource kind; unknown kinds are workloads."""
    return _PHASE_BY_KIND.get(kind, ResourcePhase.WORKLOAD)


@dataclass(frozen=True)
class ResourceObject:
    """One cluster object managed for a canary environment.

    Identity is ``(kind, namespace, name)``; ``spec_hash`` decides whether an
    existing object needs an update. The rendered ``body`` travels with the
    object for the applier but does not take part in equality.
    """

    kind: str
    name: str
    namespace: str
    spec_hash: str
    canary_id: CanaryID
    phase: ResourcePhase = field(default=ResourcePhase.WORKLOAD, compare=False)
    body: dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.kind, self.namespace, self.name)

    @property
    def ref(self) -> str:
        """Human-readable reference, ``Kind/namespace/name``."""
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
            "spec_hash": self.spec_hash,
            "canary_id": self.canary_id,
            "phase": self.phase.value,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceObject:
        return cls(
            kind=data["kind"],
            name=data["name"],
            namespace=data.get("namespace", ""),
            spec_hash=data["spec_hash"],
            canary_id=CanaryID(data["canary_id"]),
            phase=ResourcePhase(data.get("phase", ResourcePhase.WORKLOAD.value)),
            body=data.get("body", {}),
        )


@dataclass(frozen=True)
class DesiredEnvironment:
    """Lifecycle intent for one environment. Never cluster truth."""

    canary_id: CanaryID
    revision: str
    requested_at: datetime
    state: LifecycleState

    @property
    def closed(self) -> bool:
        return self.state == LifecycleState.CLOSED

    def to_dict(self) -> dict[str, Any]:
        return {
            "canary_id": self.canary_id,
            "revision": self.revision,
            "requested_at": self.requested_at.isoformat(),
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DesiredEnvironment:
        return cls(
            canary_id=CanaryID(data["canary_id"]),
            revision=data["revision"],
            requested_at=datetime.fromisoformat(data["requested_at"]),
            state=LifecycleState(data["state"]),
        )


@dataclass(frozen=True)
class AppliedEnvironment:
    """What the controller has materialized for one environment."""

    canary_id: CanaryID
    state: ControllerState = ControllerState.ABSENT
    last_applied_revision: str | None = None
    resource_set: tuple[ResourceObject, ...] = ()
    failures: int = 0
    last_error: str | None = None
    blocked_revision: str | None = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def status(self) -> EnvironmentStatus:
        return self.state.status

    @property
    def ready(self) -> bool:
        return self.state == ControllerState.READY

    @classmethod
    def absent(cls, canary_id: CanaryID) -> AppliedEnvironment:
        return cls(canary_id=canary_id)

    def transition(self, target: ControllerState, **changes: Any) -> AppliedEnvironment:
        """Return a copy moved to *target*; same-state updates skip validation."""
        if target != self.state:
            validate_transition(self.state, target)
        return replace(self, state=target, updated_at=utcnow(), **changes)

    def update(self, **changes: Any) -> AppliedEnvironment:
        return replace(self, updated_at=utcnow(), **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "canary_id": self.canary_id,
            "state": self.state.value,
            "status": self.status.value,
            "last_applied_revision": self.last_applied_revision,
            "resource_set": [r.to_dict() for r in self.resource_set],
            "failures": self.failures,
            "last_error": self.last_error,
            "blocked_revision": self.blocked_revision,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppliedEnvironment:
        return cls(
            canary_id=CanaryID(data["canary_id"]),
            state=ControllerState(data["state"]),
            last_applied_revision=data.get("last_applied_revision"),
            resource_set=tuple(ResourceObject.from_dict(r) for r in data.get("resource_set", [])),
            failures=data.get("failures", 0),
            last_error=data.get("last_error"),
            blocked_revision=data.get("blocked_revision"),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else utcnow(),
        )
