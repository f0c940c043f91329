"""Rule-set feed and decision preview.

``GET /routes`` returns the current snapshot with ``ETag`` set to its
version; routing layers poll it with ``If-None-Match`` as a fallback to
push notification. ``GET /routes/resolve`` runs the decision engine.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Query, Response, status

from prcanary.api.deps import Plane
from prcanary.model.tags import Protocol

router = APIRouter(prefix="/routes", tags=["routes"])


def _etag(version: int) -> str:
    return f'"{version}"'


@router.get("")
def get_routes(
    response: Response,
    plane: Plane,
    if_none_match: str | None = Header(default=None),
) -> Any:
    rule_set = plane.publisher.current()
    etag = _etag(rule_set.version)
    if if_none_match == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})
    response.headers["ETag"] = etag
    return rule_set.to_dict()


@router.get("/resolve")
def resolve_route(
    plane: Plane,
    target: str = Query(..., min_length=1),
    protocol: Protocol = Query(default=Protocol.HTTP),
    tag: str | None = Query(default=None),
) -> dict[str, Any]:
    """Where a request with *tag* for *target* would go right now."""
    return plane.engine.resolve(tag, protocol, target).to_dict()
