from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from faucet.app.api.admin import router as admin_router
from faucet.app.api.claim import router as claim_router
from faucet.app.api.stats import router as stats_router
from faucet.app.core.config import settings
from faucet.app.core.http_client import init_http_client
from faucet.app.core.logging import get_log_context, get_logger, setup_logging
from faucet.app.core.store import STORE_ERRORS, get_store
from faucet.app.exceptions import FaucetException, InternalError
from faucet.app.middleware.request_id import RequestIdMiddleware
from faucet.app.services.claim import get_orchestrator, reset_orchestrator


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    # Setup logging
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Opens the shared HTTP connection pool on startup and closes it,
        together with the state store connection, on shutdown.
        """
        async with init_http_client() as http_client:
            # Rebuild so the orchestrator picks up the shared client
            reset_orchestrator()
            orchestrator = get_orchestrator()
            logger.info(
                "Application startup complete",
                extra={
                    "credential_pool_size": orchestrator.pool.size,
                    "store": orchestrator.pool.store.kind,
                    "faucet_disabled": settings.faucet_disabled,
                    "debug_mode": settings.debug,
                },
            )

            yield {"http_client": http_client}

        reset_orchestrator()
        await get_store().close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Faucet Proxy",
        description="Abuse-control proxy for the Circle testnet faucet with rate limiting and credential rotation",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )

    # Request ID middleware for tracing (innermost - closest to route)
    app.add_middleware(RequestIdMiddleware)

    # Include routers
    app.include_router(claim_router)
    app.include_router(stats_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with state store reachability and credential pool size."""
        health_status: dict[str, Any] = {
            "status": "ok",
            "faucet_enabled": not settings.faucet_disabled,
            "components": {},
        }

        store = get_store()
        try:
            reachable = await store.ping()
        except STORE_ERRORS as e:
            health_status["status"] = "degraded"
            health_status["components"]["store"] = {
                "status": "error",
                "type": store.kind,
                "error": str(e)[:100],  # Truncate for security
            }
        else:
            health_status["components"]["store"] = {
                "status": "ok" if reachable else "error",
                "type": store.kind,
            }
            if not reachable:
                health_status["status"] = "degraded"

        pool_size = len(settings.circle_api_keys)
        health_status["components"]["credentials"] = {
            "status": "ok" if pool_size else "empty",
            "pool_size": pool_size,
        }

        return health_status

    @app.exception_handler(FaucetException)
    async def faucet_exception_handler(request: Request, exc: FaucetException) -> JSONResponse:
        """Map every FaucetException onto its status code and body."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The full traceback is logged server-side and never sent to the
        client. Debug mode adds the exception message to the response.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra=get_log_context(
                request_id=request_id,
                event="internal_error",
                exception_type=type(exc).__name__,
            ),
        )

        try:
            await get_orchestrator().audit.emit(
                "internal_error",
                request_id=request_id,
                path=request.url.path,
                exception_type=type(exc).__name__,
                trace_ref=request_id,
            )
        except Exception as audit_exc:
            logger.warning(f"Could not audit internal error: {type(audit_exc).__name__}: {audit_exc}")

        error = InternalError("An unexpected error occurred. Please try again.")
        content = {**error.to_response(), "request_id": request_id}
        if settings.debug:
            content["details"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=error.status_code, content=content)

    return app


# Create the application instance
app = create_app()
