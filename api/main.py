"""
Main FastAPI application.

Kuku Yetu shop API with:
- CORS configuration
- Error envelope for domain, validation and HTTP errors
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from core.exceptions import ServiceError, StoreError
from core.verification import PaymentVerifier
from database import Database
from monitoring.logging import setup_logging
from monitoring.metrics import metrics

from .dependencies import Services, build_services
from .routes import (
    auth_router,
    catalog_router,
    dashboard_router,
    monitoring_router,
    order_router,
    payment_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Creates tables and seeds the catalog on startup, releases the verifier
    and the connection pool on shutdown.
    """
    services: Services = app.state.services
    settings = services.settings

    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        verifier=services.workflow.verifier.name,
    )

    try:
        await services.database.create_all()
        logger.info("database_initialized")
        if settings.seed_sample_products:
            await services.catalog.seed_sample_products()
    except StoreError as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    await services.close()
    logger.info("database_connections_closed")


def _validation_details(exc: RequestValidationError) -> list:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(location), "message": error.get("msg", "")})
    return details


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Translate domain errors into the error envelope."""
    if isinstance(exc, StoreError):
        logger.error(
            "store_error",
            error=exc.message,
            original_error=repr(exc.original_error),
            path=request.url.path,
        )
    else:
        logger.warning(
            "request_rejected",
            error=exc.message,
            error_code=exc.error_code,
            status_code=exc.http_status,
            path=request.url.path,
        )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies get the same envelope as domain validation errors."""
    details = _validation_details(exc)
    logger.warning("request_validation_failed", path=request.url.path, details=details)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "Invalid request",
            "code": "validation_error",
            "details": details,
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    body = {"success": False, "code": "http_error"}
    if isinstance(detail, dict):
        body.update(error=str(detail.get("status", "error")), details=[detail])
    else:
        body["error"] = str(detail)
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "An unexpected error occurred. Please try again later.",
            "code": "internal_error",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    verifier: Optional[PaymentVerifier] = None,
) -> FastAPI:
    """
    Build the application.

    Services are attached to app.state here, not in the lifespan, so the app
    is usable by transports that skip lifespan events.

    Args:
        settings: Settings (defaults to get_settings())
        database: Database handle (built from settings if not given)
        verifier: Payment verifier (built from settings if not given)
    """
    settings = settings or get_settings()
    setup_logging(settings)

    database = database or Database.from_settings(settings)
    services = build_services(database, settings, verifier)

    app = FastAPI(
        title="Kuku Yetu API",
        description=(
            "Backend for the Kuku Yetu poultry shop: product catalog, orders, "
            "payment tracking and verification, and an admin dashboard."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
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

            duration = time.time() - start_time
            metrics.record_http_request(request.method, response.status_code, duration)
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=duration,
            )

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=duration,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    for router in (
        catalog_router,
        order_router,
        payment_router,
        webhook_router,
        dashboard_router,
        auth_router,
        monitoring_router,
    ):
        app.include_router(router, prefix=settings.api_prefix)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "environment": settings.app_env,
            "docs": "/docs",
            "health": f"{settings.api_prefix}/health",
            "metrics": "/metrics",
        }

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
