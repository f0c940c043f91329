"""Environment status endpoints.

``GET  /environments``                  every id still tracked
``GET  /environments/{id}``             desired + applied
``GET  /environments/{id}/plan``        next plan (dry run)
``POST /environments/{id}/reconcile``   enqueue a tick
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status

from prcanary.api.deps import Plane
from prcanary.api.schemas import EnvironmentView
from prcanary.core.errors import NotFoundError
from prcanary.model.environments import EnvironmentStatus
from prcanary.registry.store import RegistryEntry

router = APIRouter(prefix="/environments", tags=["environments"])


def _view(cid: str, entry: RegistryEntry) -> EnvironmentView:
    return EnvironmentView(
        canary_id=cid,
        status=entry.applied.status.value if entry.applied else EnvironmentStatus.ABSENT.value,
        desired=entry.desired.to_dict() if entry.desired else None,
        applied=entry.applied.to_dict() if entry.applied else None,
    )


def _entry(plane, canary_id: str) -> RegistryEntry:
    entry = plane.registry.get(canary_id)
    if entry is None:
        raise NotFoundError(f"environment {canary_id} not found").with_context(canary_id=canary_id)
    return entry


@router.get("", response_model=list[EnvironmentView])
def list_environments(plane: Plane) -> list[EnvironmentView]:
    snapshot = plane.registry.snapshot()
    return [_view(cid, snapshot[cid]) for cid in sorted(snapshot)]


@router.get("/{canary_id}", response_model=EnvironmentView)
def get_environment(canary_id: str, plane: Plane) -> EnvironmentView:
    return _view(canary_id, _entry(plane, canary_id))


@router.get("/{canary_id}/plan")
def get_plan(canary_id: str, plane: Plane) -> dict[str, Any]:
    _entry(plane, canary_id)
    return plane.controller.plan_for(canary_id).to_dict()


@router.post("/{canary_id}/reconcile", status_code=status.HTTP_202_ACCEPTED)
async def reconcile_environment(canary_id: str, plane: Plane) -> dict[str, Any]:
    _entry(plane, canary_id)
    plane.controller.notify(canary_id)
    return {"canary_id": canary_id, "queued": True}
