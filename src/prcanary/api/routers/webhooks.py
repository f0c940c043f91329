"""Lifecycle ingestion endpoints.

Endpoints
---------
``POST /webhooks/github``   GitHub ``pull_request`` webhook (HMAC verified)
``POST /signals``           canonical ``{canary_id, revision, state}`` event

Both hand accepted events to the push signal source; the response returns
as soon as the event is queued.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, Header, Request, status

from prcanary.api.deps import Plane, Settings
from prcanary.api.middleware.errors import problem_response
from prcanary.api.schemas import SignalAccepted, SignalIn
from prcanary.core.errors import UnavailableError, ValidationError
from prcanary.core.logging import get_logger
from prcanary.model.tags import canary_id
from prcanary.runtime import ControlPlane
from prcanary.signals.base import SignalEvent, utcnow
from prcanary.signals.github import parse_pull_request_event, verify_signature

logger = get_logger(__name__)

router = APIRouter(tags=["signals"])


async def submit_signal(plane: ControlPlane, event: SignalEvent) -> bool:
    """Queue *event* (or dispatch inline when no consumer is running)."""
    try:
        if plane.running:
            return plane.push.accept(event)
        return await plane.push.deliver(event)
    except asyncio.QueueFull as e:
        raise UnavailableError("signal queue is full", retry_after=1.0, cause=e) from e


@router.post("/webhooks/github", response_model=SignalAccepted, status_code=status.HTTP_202_ACCEPTED)
async def github_webhook(
    request: Request,
    plane: Plane,
    settings: Settings,
    x_github_event: str | None = Header(default=None),
    x_hub_signature_256: str | None = Header(default=None),
):
    """Receive a GitHub webhook delivery.

    Non-``pull_request`` events are acknowledged and ignored.
    """
    body = await request.body()
    if settings.webhook_secret and not verify_signature(settings.webhook_secret, body, x_hub_signature_256):
        logger.warning("webhook_signature_rejected", delivery=request.headers.get("x-github-delivery"))
        return problem_response(
            status=401,
            title="Unauthorized",
            detail="signature mismatch",
            instance=str(request.url),
            code="UNAUTHORIZED",
        )

    if x_github_event != "pull_request":
        return SignalAccepted(accepted=False, reason=f"ignored event {x_github_event!r}")

    try:
        payload: dict[str, Any] = json.loads(body)
    except ValueError as e:
        raise ValidationError(f"webhook body is not JSON: {e}", cause=e) from e
    if not isinstance(payload, dict):
        raise ValidationError("webhook body must be a JSON object")

    event = parse_pull_request_event(payload, label=settings.github_label)
    if event is None:
        return SignalAccepted(accepted=False, reason=f"ignored action {payload.get('action')!r}")

    accepted = await submit_signal(plane, event)
    logger.info("webhook_received", accepted=accepted, **event.to_dict())
    return SignalAccepted(
        accepted=accepted,
        reason=None if accepted else "duplicate",
        event=event.to_dict(),
    )


@router.post("/signals", response_model=SignalAccepted, status_code=status.HTTP_202_ACCEPTED)
async def post_signal(signal: SignalIn, plane: Plane, settings: Settings) -> SignalAccepted:
    """Ingest a canonical lifecycle event from any feed."""
    event = SignalEvent(
        canary_id=canary_id(signal.canary_id, settings.tag_max_length),
        revision=signal.revision,
        state=signal.state,
        requested_at=signal.requested_at or utcnow(),
        source=signal.source,
    )
    accepted = await submit_signal(plane, event)
    return SignalAccepted(
        accepted=accepted,
        reason=None if accepted else "duplicate",
        event=event.to_dict(),
    )
