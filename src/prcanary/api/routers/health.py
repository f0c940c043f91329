"""Health endpoints: ``/health``, ``/health/ready``, ``/health/live``."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from prcanary import __version__
from prcanary.api.deps import Plane
from prcanary.api.schemas import HealthResponse
from prcanary.model.environments import ControllerState

router = APIRouter(prefix="/health", tags=["health"])


def _health(plane) -> HealthResponse:
    applied = plane.registry.applied_snapshot()
    degraded = any(env.state == ControllerState.DEGRADED for env in applied)
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        version=__version__,
        running=plane.running,
        environments=len(plane.registry),
        rule_set_version=plane.publisher.version,
    )


@router.get("", response_model=HealthResponse)
def health(plane: Plane) -> HealthResponse:
    return _health(plane)


@router.get("/ready", response_model=HealthResponse)
def ready(plane: Plane, response: Response) -> HealthResponse:
    """503 until the control loops are running."""
    result = _health(plane)
    if not plane.running:
        result.status = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@router.get("/live")
def live() -> dict[str, str]:
    return {"status": "alive"}
