"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers and the
control-plane lifespan into a single ``FastAPI`` instance.

Manifesto:
    The app factory is the HTTP composition root. The control plane is
    built (or injected) here and started and stopped with the app, so the
    webhook, rule feed and status endpoints always talk to the same
    running registry and controller.

Tags:
    prcanary, api, app-factory, composition-root, FastAPI
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from prcanary import __version__
from prcanary.api.middleware.errors import canary_error_handler, unhandled_exception_handler
from prcanary.api.middleware.request_id import RequestIDMiddleware
from prcanary.core.config import CanarySettings, get_settings
from prcanary.core.errors import CanaryError
from prcanary.core.logging import get_logger
from prcanary.routing.bridge import CanaryTagMiddleware
from prcanary.runtime import ControlPlane

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the control plane with the app; stop it on shutdown."""
    plane: ControlPlane = app.state.plane
    logger.info("api_starting", version=app.version)
    await plane.start()
    try:
        yield
    finally:
        await plane.stop()
        logger.info("api_stopped")


def create_app(
    *,
    settings: CanarySettings | None = None,
    plane: ControlPlane | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : CanarySettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    plane : ControlPlane | None
        Pre-built control plane (tests inject one with an in-memory
        applier). Built from *settings* when ``None``.
    """
    settings = settings or (plane.settings if plane is not None else get_settings())
    plane = plane or ControlPlane.from_settings(settings)

    app = FastAPI(title="prcanary", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.plane = plane

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(
        CanaryTagMiddleware,
        header=settings.tag_header,
        max_length=settings.tag_max_length,
    )
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(CanaryError, canary_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from prcanary.api.routers import environments, health, routes, webhooks

    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(routes.router)
    app.include_router(environments.router)

    return app
