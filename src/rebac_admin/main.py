"""Main FastAPI application for the ReBAC admin backend."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from .api.responses import respond
from .api.routes import router as api_router
from .authorization.authorizer import Authorizer
from .authorization.middleware import AuthorizationMiddleware
from .config import get_settings
from .database.connection import db_manager
from .database.migrations import create_tables
from .observability.logging import configure_logging
from .openfga.client import OpenFGAClient
from .openfga.exceptions import AuthorizationEngineError
from .openfga.interfaces import AuthorizationClient
from .openfga.noop import NoopClient
from .openfga.schema import SchemaProvider
from .openfga.stores import OpenFGAStore
from .pool.worker_pool import WorkerPool
from .roles.repository import RoleRepository
from .roles.service import RoleService

logger = logging.getLogger(__name__)


def build_engine_client(settings) -> AuthorizationClient:
    if settings.authorization_enabled:
        return OpenFGAClient.from_settings(settings)
    return NoopClient()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()

    # Configure structured logging
    configure_logging(
        environment=settings.environment,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    # Initialize database
    db_manager.initialize()

    # Create tables if they don't exist
    await create_tables()

    # ReBAC engine client, injected when testing
    client = getattr(app.state, "engine_client", None) or build_engine_client(settings)
    schema = SchemaProvider()

    pool = WorkerPool(settings.openfga_workers_total)
    pool.start()

    try:
        authorizer = Authorizer(client, pool, schema)
        if settings.authorization_enabled:
            # A mismatched model is fatal
            await authorizer.validate_model()

        store = OpenFGAStore(client, pool)

        app.state.engine_client = client
        app.state.schema = schema
        app.state.worker_pool = pool
        app.state.authorizer = authorizer
        app.state.store = store
        app.state.role_service = RoleService(RoleRepository(db_manager.session), client, store)

        logger.info("%s v%s started", settings.app_name, settings.app_version)
        logger.info("Environment: %s", settings.environment)
        logger.info(
            "Authorization: %s (%d workers)",
            "enabled" if settings.authorization_enabled else "disabled",
            settings.openfga_workers_total,
        )

        yield
    finally:
        # Shutdown
        logger.info("Shutting down %s...", settings.app_name)

        await pool.stop()
        await client.close()
        logger.info("Authorization engine client closed")

        # Close database connections
        await db_manager.close()
        logger.info("Database connections closed")


def create_app(engine_client: Optional[AuthorizationClient] = None) -> FastAPI:
    """Create and configure FastAPI application.

    ``engine_client`` replaces the client built from settings.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Admin API gated by relationship-based access control",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.engine_client = engine_client

    app.add_middleware(
        AuthorizationMiddleware,
        check_timeout=settings.check_timeout_seconds,
    )

    # Include API routes
    app.include_router(api_router, prefix="/api/v0")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return respond(message=str(exc.detail), status=exc.status_code, headers=exc.headers)

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
        return respond(message="database error", status=500)

    # Health check endpoints
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/health/live")
    async def health_live():
        """Liveness probe: the process is running."""
        return {"status": "alive"}

    @app.get("/health/ready")
    async def health_ready(request: Request):
        """Readiness probe: database reachable and authorization model as expected."""
        checks = {}

        try:
            from sqlalchemy import text
            from .database.connection import get_db_context
            async with get_db_context() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"
            return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})

        if settings.authorization_enabled:
            authorizer = request.app.state.authorizer
            try:
                await authorizer.validate_model()
                checks["authorization_model"] = "ok"
            except AuthorizationEngineError as e:
                checks["authorization_model"] = f"error: {e}"
                return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})
        else:
            checks["authorization_model"] = "disabled"

        pool = request.app.state.worker_pool
        checks["worker_pool"] = f"ok (workers={pool.workers}, pending={pool.pending})"

        return {"status": "ready", "checks": checks}

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "rebac_admin.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
