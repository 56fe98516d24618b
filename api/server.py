"""
Household Ledger API Server - REST API for the household spend tracker.

Run with:
    uvicorn api.server:create_app --factory
or:
    python -m api.server
"""
# ruff: noqa: S104
# S104: Development server binding (guarded by __name__ check)

import logging
import os
from collections.abc import Callable
from datetime import datetime

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from household import __version__, db
from household.config import Settings, get_settings
from household.errors import InvalidInput, LedgerError
from household.observability import (
    REGISTRY,
    CorrelationIdMiddleware,
    RequestMetricsMiddleware,
    configure_logging,
    get_request_id,
)
from household.security.secrets_config import validate_secrets
from household.services import UNSET, build_services
from household.timeutil import now_iso, utcnow

from api.categories_router import router as categories_router
from api.filters_router import router as filters_router
from api.ledger_router import router as ledger_router
from api.permissions_router import router as permissions_router
from api.remote_router import router as remote_router
from api.reports_router import router as reports_router
from api.users_router import router as users_router

logger = logging.getLogger(__name__)


def _error_response(error: LedgerError) -> JSONResponse:
    body = error.to_dict()
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id
    headers = {"WWW-Authenticate": "Bearer"} if error.status_code == 401 else None
    return JSONResponse(content=body, status_code=error.status_code, headers=headers)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.kind}")
    return _error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return _error_response(InvalidInput(problems or "Invalid request"))


def create_app(
    settings: Settings | None = None,
    verifier=UNSET,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """
    Build the API application.

    ``verifier`` and ``transport`` are injection points for tests; by default
    the identity verifier comes from settings and HTTP goes to the network.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Household Ledger API",
        description="Shared household spend tracking with budget service sync",
        version=__version__,
    )
    app.state.settings = settings
    app.state.services = build_services(settings, verifier=verifier, transport=transport, clock=clock)

    app.add_middleware(RequestMetricsMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    for router in (
        ledger_router,
        categories_router,
        filters_router,
        reports_router,
        permissions_router,
        users_router,
        remote_router,
    ):
        app.include_router(router)

    # ==== DB Startup & Migrations ====
    @app.on_event("startup")
    async def run_db_migrations_on_startup():
        """Run DB migrations and log DB info at startup."""
        logger.info("=== Household Ledger Startup ===")
        audit = validate_secrets(settings)
        for name in audit.missing:
            logger.error(f"Missing secret: {name}")
        for warning in audit.warnings:
            logger.warning(warning)
        migration_result = db.run_startup_migrations()
        if migration_result["applied"]:
            logger.info(f"Migrations applied: {migration_result['applied']}")

    # ==== Sync Scheduler ====
    @app.on_event("startup")
    async def start_sync_scheduler():
        services = app.state.services
        if services.vault is None:
            logger.warning("Sync scheduler disabled: ENCRYPTION_KEY is not set")
            return
        principal_ids = [p.id for p in services.directory.list_all()]
        services.credentials.seed_from_environment(principal_ids, os.environ)
        await services.scheduler.start()

    @app.on_event("shutdown")
    async def stop_sync_scheduler():
        await app.state.services.scheduler.stop()

    @app.get("/health")
    def health_check():
        services = app.state.services
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": now_iso(),
            "database": "postgresql" if settings.uses_postgres else "sqlite",
            "identity": "development" if services.resolver.dev_mode else "verified",
            "scheduler_running": services.scheduler.running,
        }

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics():
        """Prometheus text exposition of the in-process registry."""
        return REGISTRY.to_prometheus()

    return app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_format == "json" if settings.log_format else None)
    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("api.server:create_app", factory=True, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
