"""
FastAPI dependency injection.

The control plane and settings live on ``app.state``; routers receive them
through the annotated aliases below instead of importing globals.

Usage in routers::

    from prcanary.api.deps import Plane

    @router.get("/things")
    def list_things(plane: Plane):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from prcanary.core.config import CanarySettings
from prcanary.runtime import ControlPlane


def get_control_plane(request: Request) -> ControlPlane:
    return request.app.state.plane


def get_app_settings(request: Request) -> CanarySettings:
    return request.app.state.settings


Plane = Annotated[ControlPlane, Depends(get_control_plane)]
Settings = Annotated[CanarySettings, Depends(get_app_settings)]
