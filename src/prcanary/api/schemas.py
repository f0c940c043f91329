"""Request and response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from prcanary.model.environments import LifecycleState


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error Codes:
        - ``VALIDATION_FAILED`` (400): Invalid input data
        - ``UNAUTHORIZED`` (401): Webhook signature mismatch
        - ``NOT_FOUND`` (404): Environment does not exist
        - ``STALE`` (409): Event does not advance desired state
        - ``UNAVAILABLE`` (503): Backend or queue unavailable
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    code: str | None = None


class SignalIn(BaseModel):
    """Canonical lifecycle event posted by any feed."""

    canary_id: str = Field(..., min_length=1, max_length=64)
    revision: str = Field(..., min_length=1, max_length=128)
    state: LifecycleState
    requested_at: datetime | None = None
    source: str = "api"


class SignalAccepted(BaseModel):
    accepted: bool
    reason: str | None = None
    event: dict[str, Any] | None = None


class EnvironmentView(BaseModel):
    """Desired and applied state for one canary id."""

    canary_id: str
    status: str
    desired: dict[str, Any] | None = None
    applied: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    service: str = "prcanary"
    version: str = ""
    running: bool = False
    environments: int = 0
    rule_set_version: int = 0
