"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spacegate.config.logging import setup_logging
from spacegate.config.settings import get_settings
from spacegate.engine import AccessEngine, build_engine
from spacegate.web.errors import register_error_handlers
from spacegate.web.middleware import RateLimitMiddleware, RequestIDMiddleware
from spacegate.web.routes.audit import router as audit_router
from spacegate.web.routes.auth import router as auth_router
from spacegate.web.routes.authz import router as authz_router
from spacegate.web.routes.invitations import router as invitations_router

logger = structlog.get_logger(__name__)


def create_app(engine: AccessEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``engine`` to share one AccessEngine (and its store) with the caller,
    e.g. in tests; otherwise it is built from settings.
    """
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="SpaceGate",
        description="Membership, invitation and per-request scoping engine",
        version="0.1.0",
    )
    app.state.engine = engine or build_engine(settings)
    register_error_handlers(app)

    # Middleware: last added runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.auth_rate_limit_requests,
        window_seconds=settings.auth_rate_limit_window_seconds,
    )
    app.add_middleware(RequestIDMiddleware)

    for router in (auth_router, invitations_router, authz_router, audit_router):
        app.include_router(router)

    @app.get("/api/health")
    async def health_check() -> dict[str, object]:
        from spacegate.web.health import check_health

        return await check_health()

    logger.info("app_created")
    return app
