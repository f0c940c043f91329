"""Protocol bridge: carry the canary tag from an HTTP hop into an RPC hop.

Inbound (edge HTTP): read the tag header, validate it, and treat anything
malformed as absent. The request is never rejected for a bad tag; it just
routes to stable.

Outbound (internal RPC): attach the validated tag as metadata under the
same field name. RPC metadata keys are lowercase, so the well-known name
is lowercase on both sides and the literal value is passed through
unchanged.

Usage inside a FastAPI/Starlette service::

    app.add_middleware(CanaryTagMiddleware, header=settings.tag_header)

    @app.get("/checkout")
    async def checkout():
        metadata = outbound_metadata()          # [("x-canary-id", "42")]
        await stub.Checkout(request, metadata=metadata)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from contextvars import ContextVar, Token

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from prcanary.core.logging import LogContext, get_logger
from prcanary.model.tags import DEFAULT_MAX_LENGTH, DEFAULT_TAG_HEADER, CanaryID, parse_tag

logger = get_logger(__name__)

Metadata = Sequence[tuple[str, str]]

_current_tag: ContextVar[CanaryID | None] = ContextVar("prcanary_current_tag", default=None)


def current_tag() -> CanaryID | None:
    """The validated tag of the request being served, if any."""
    return _current_tag.get()


def set_current_tag(tag: CanaryID | None) -> Token:
    return _current_tag.set(tag)


def reset_current_tag(token: Token) -> None:
    _current_tag.reset(token)


def extract_http_tag(
    headers: Mapping[str, str],
    header: str = DEFAULT_TAG_HEADER,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> CanaryID | None:
    """Read and validate the tag from HTTP headers (case-insensitive)."""
    wanted = header.lower()
    getter = getattr(headers, "getlist", None)
    if getter is not None:
        # starlette Headers: more than one value is ambiguous, treat as absent
        values = getter(wanted)
        if len(values) != 1:
            return None
        return parse_tag(values[0], max_length)
    found = [v for k, v in headers.items() if k.lower() == wanted]
    if len(found) != 1:
        return None
    return parse_tag(found[0], max_length)


def extract_rpc_tag(
    metadata: Metadata | None,
    header: str = DEFAULT_TAG_HEADER,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> CanaryID | None:
    """Read and validate the tag from RPC metadata pairs."""
    if not metadata:
        return None
    wanted = header.lower()
    found = [v for k, v in metadata if k.lower() == wanted]
    if len(found) != 1:
        return None
    return parse_tag(found[0], max_length)


def inject_rpc_tag(
    metadata: Iterable[tuple[str, str]] | None,
    tag: str | None,
    header: str = DEFAULT_TAG_HEADER,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[tuple[str, str]]:
    """Return RPC metadata carrying *tag*.

    Any pre-existing tag entries are dropped first so a stale or forged
    value can never ride along. An invalid *tag* leaves the call untagged.
    """
    wanted = header.lower()
    result = [(k, v) for k, v in (metadata or ()) if k.lower() != wanted]
    valid = parse_tag(tag, max_length) if isinstance(tag, str) else None
    if valid is not None:
        result.append((wanted, valid))
    return result


def inject_http_tag(
    headers: Mapping[str, str] | None,
    tag: str | None,
    header: str = DEFAULT_TAG_HEADER,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> dict[str, str]:
    """Return a header dict carrying *tag*, for HTTP-to-HTTP hops."""
    wanted = header.lower()
    result = {k: v for k, v in (headers or {}).items() if k.lower() != wanted}
    valid = parse_tag(tag, max_length) if isinstance(tag, str) else None
    if valid is not None:
        result[wanted] = valid
    return result


def bridge_http_to_rpc(
    headers: Mapping[str, str],
    metadata: Iterable[tuple[str, str]] | None = None,
    header: str = DEFAULT_TAG_HEADER,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[tuple[str, str]]:
    """Full hop: validated HTTP tag into outbound RPC metadata."""
    tag = extract_http_tag(headers, header, max_length)
    return inject_rpc_tag(metadata, tag, header, max_length)


def outbound_metadata(
    metadata: Iterable[tuple[str, str]] | None = None,
    header: str = DEFAULT_TAG_HEADER,
) -> list[tuple[str, str]]:
    """RPC metadata for the current request context."""
    return inject_rpc_tag(metadata, current_tag(), header)


def outbound_headers(
    headers: Mapping[str, str] | None = None,
    header: str = DEFAULT_TAG_HEADER,
) -> dict[str, str]:
    """HTTP headers for the current request context."""
    return inject_http_tag(headers, current_tag(), header)


class CanaryTagMiddleware(BaseHTTPMiddleware):
    """Validate the inbound tag and expose it to the request's call chain.

    The validated tag lands on ``request.state.canary_id``, in the
    :func:`current_tag` context variable and in the structlog context.
    """

    def __init__(
        self,
        app: ASGIApp,
        header: str = DEFAULT_TAG_HEADER,
        max_length: int = DEFAULT_MAX_LENGTH,
    ) -> None:
        super().__init__(app)
        self._header = header.lower()
        self._max_length = max_length

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        raw = request.headers.getlist(self._header)
        tag = extract_http_tag(request.headers, self._header, self._max_length)
        if raw and tag is None:
            logger.info("canary_tag_rejected", header=self._header, values=len(raw))
        request.state.canary_id = tag
        token = set_current_tag(tag)
        try:
            if tag is None:
                return await call_next(request)
            with LogContext(canary_id=tag):
                return await call_next(request)
        finally:
            reset_current_tag(token)
