"""Reconciliation plans: the diff between desired and applied resources.

Planning is a pure function. Given the rendered desired resource set (or
``None`` when the environment is closed) and the applied resource set, it
yields the ordered operations that close the gap:

- Create: desired, not applied
- Update: both, ``spec_hash`` differs
- Delete: applied, not desired (everything when closed)

Creates and updates run in phase order (scope, workload, routing); deletes
run afterwards in reverse phase order. Because the applied set is recorded
after every successful operation, replanning after a partial failure yields
exactly the remainder.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from prcanary.model.environments import ResourceObject


class PlanAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PlanOperation:
    action: PlanAction
    resource: ResourceObject

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "resource": self.resource.ref,
            "phase": self.resource.phase.name.lower(),
            "spec_hash": self.resource.spec_hash,
        }


@dataclass(frozen=True)
class ReconciliationPlan:
    """Ordered operations for one environment."""

    canary_id: str
    revision: str | None
    operations: tuple[PlanOperation, ...] = ()
    pruning: bool = False

    @property
    def is_noop(self) -> bool:
        return not self.operations

    def of(self, action: PlanAction) -> list[ResourceObject]:
        return [op.resource for op in self.operations if op.action == action]

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[PlanOperation]:
        return iter(self.operations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "canary_id": self.canary_id,
            "revision": self.revision,
            "pruning": self.pruning,
            "operations": [op.to_dict() for op in self.operations],
        }


def compute_plan(
    canary_id: str,
    revision: str | None,
    desired: Sequence[ResourceObject] | None,
    applied: Sequence[ResourceObject],
) -> ReconciliationPlan:
    """Diff *desired* against *applied*.

    Args:
        canary_id: Environment being planned
        revision: Desired revision (informational)
        desired: Rendered desired resources, or None to prune everything
        applied: Resources currently recorded as applied
    """
    pruning = desired is None
    desired_by_key = {} if desired is None else {r.key: r for r in desired}
    applied_by_key = {r.key: r for r in applied}

    forward: list[PlanOperation] = []
    for key, resource in desired_by_key.items():
        current = applied_by_key.get(key)
        if current is None:
            forward.append(PlanOperation(PlanAction.CREATE, resource))
        elif current.spec_hash != resource.spec_hash:
            forward.append(PlanOperation(PlanAction.UPDATE, resource))

    deletes = [
        PlanOperation(PlanAction.DELETE, resource)
        for key, resource in applied_by_key.items()
        if key not in desired_by_key
    ]

    forward.sort(key=lambda op: op.resource.phase)
    # Reverse phase, and reverse creation order within a phase.
    deletes.reverse()
    deletes.sort(key=lambda op: op.resource.phase, reverse=True)

    return ReconciliationPlan(
        canary_id=canary_id,
        revision=revision,
        operations=tuple(forward + deletes),
        pruning=pruning,
    )
