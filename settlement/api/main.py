"""
Main FastAPI application.

Marketplace settlement API with:
- CORS configuration
- Typed error responses
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from settlement import __version__
from settlement.config import Settings, get_settings
from settlement.core.exceptions import SettlementError
from settlement.database.connection import close_db, create_engine, create_session_factory, init_db
from settlement.database.ledger_store import LedgerStore
from settlement.integrations.payout_gateway import PayoutGatewayClient
from settlement.monitoring.logging import setup_logging

from .routes import (
    affiliate_router,
    commission_router,
    monitoring_router,
    payment_router,
    webhook_router,
)
from .services import build_services

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStore] = None,
    gateway: Optional[PayoutGatewayClient] = None,
    redis_client: Optional[aioredis.Redis] = None,
) -> FastAPI:
    """
    Build the API application.

    Collaborators passed in are used as-is and never closed by the app.
    When the store and gateway are both supplied the services are wired
    immediately; otherwise the lifespan creates whatever is missing.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            test_mode=settings.is_test_mode,
        )

        if getattr(app.state, "services", None) is not None:
            yield
            logger.info("application_shutdown")
            return

        engine = None
        ledger = store
        if ledger is None:
            engine = create_engine(settings)
            try:
                await init_db(engine)
                logger.info("database_initialized")
            except Exception as e:
                logger.error("database_initialization_failed", error=str(e))
                raise
            ledger = LedgerStore(create_session_factory(engine))

        payout_gateway = gateway or PayoutGatewayClient(settings)
        cache = redis_client
        if cache is None and settings.redis_url:
            cache = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)

        app.state.services = build_services(settings, ledger, payout_gateway, cache)

        yield

        logger.info("application_shutdown")
        if gateway is None:
            await payout_gateway.close()
        if redis_client is None and cache is not None:
            await cache.aclose()
        if engine is not None:
            await close_db(engine)
            logger.info("database_connections_closed")

    app = FastAPI(
        title="Marketplace Settlement Service",
        description=(
            "Payment-to-commission settlement for a seller/affiliate marketplace: "
            "webhook-driven settlement, commission payouts over mobile money, "
            "affiliate withdrawals and monitoring."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    if store is not None and gateway is not None:
        app.state.services = build_services(settings, store, gateway, redis_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Add a request ID to every request and bind it to the log context."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log("request_rejected", code=exc.code, error=exc.message, status_code=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("request_validation_failed", errors=len(exc.errors()))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request body"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    app.include_router(payment_router)
    app.include_router(webhook_router)
    app.include_router(commission_router)
    app.include_router(affiliate_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "test_mode": settings.is_test_mode,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "settlement.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )
